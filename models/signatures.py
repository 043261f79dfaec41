import uuid
from sqlalchemy import Column, Text, ForeignKey, TIMESTAMP, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, POSTGRESQL_SCHEMA


class ContractSignature(Base):
    __tablename__ = "contract_signatures"
    __table_args__ = (
        UniqueConstraint("document_id", "party_id", name="uq_contract_signatures_document_party"),
        {"schema": POSTGRESQL_SCHEMA},
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    document_id = Column(
        Uuid(as_uuid=True), ForeignKey(f"{POSTGRESQL_SCHEMA}.contract_documents.id"), nullable=False, index=True
    )
    party_id = Column(Uuid(as_uuid=True), nullable=False)
    # A typed signature is a recorded claim, both columns stay NULL until signed.
    signed_at = Column(TIMESTAMP, nullable=True)
    signature_text = Column(Text, nullable=True)

    document = relationship("ContractDocument", back_populates="signatures")
