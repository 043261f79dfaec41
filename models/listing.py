import uuid
from sqlalchemy import Column, String, Text, BigInteger, Boolean, TIMESTAMP, Uuid
from models.base import Base, POSTGRESQL_SCHEMA, utcnow


class Listing(Base):
    """Read model of a marketplace listing; the listing service owns writes."""
    __tablename__ = "listings"
    __table_args__ = {"schema": POSTGRESQL_SCHEMA}

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    seller_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    title = Column(String, nullable=False)
    body = Column(Text, nullable=False, default="")
    confidential_details = Column(Text, nullable=True)  # only shown after NDA
    price = Column(BigInteger, nullable=False, default=0)
    is_secret = Column(Boolean, nullable=False, default=False)
    requires_nda = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP, default=utcnow)
