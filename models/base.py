from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase

POSTGRESQL_SCHEMA = "dealroom"


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    __abstract__ = True
    __table_args__ = {"schema": POSTGRESQL_SCHEMA}
