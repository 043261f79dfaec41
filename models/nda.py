import uuid
from sqlalchemy import Column, String, ForeignKey, TIMESTAMP, Uuid, UniqueConstraint
from models.base import Base, POSTGRESQL_SCHEMA, utcnow


class NDAAcceptance(Base):
    __tablename__ = "nda_acceptances"
    __table_args__ = (
        UniqueConstraint("user_id", "listing_id", name="uq_nda_acceptances_user_listing"),
        {"schema": POSTGRESQL_SCHEMA},
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    listing_id = Column(Uuid(as_uuid=True), ForeignKey(f"{POSTGRESQL_SCHEMA}.listings.id"), nullable=False)
    document_url = Column(String, nullable=True)
    document_id = Column(Uuid(as_uuid=True), nullable=True)  # set when signed inside a thread
    signed_at = Column(TIMESTAMP, nullable=False, default=utcnow)
