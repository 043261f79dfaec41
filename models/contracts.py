import uuid
import enum
from sqlalchemy import Column, String, Text, ForeignKey, TIMESTAMP, Enum, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, POSTGRESQL_SCHEMA, utcnow


class DocumentType(enum.Enum):
    NDA = "nda"
    TRANSFER = "transfer"
    TERMS = "terms"


class DocumentStatus(enum.Enum):
    PENDING = "pending"
    SIGNED = "signed"
    REJECTED = "rejected"


class ContractDocument(Base):
    __tablename__ = "contract_documents"
    __table_args__ = (
        UniqueConstraint("thread_id", "client_token", name="uq_contract_documents_thread_client_token"),
        {"schema": POSTGRESQL_SCHEMA},
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    thread_id = Column(Uuid(as_uuid=True), ForeignKey(f"{POSTGRESQL_SCHEMA}.threads.id"), nullable=False, index=True)
    type = Column(Enum(DocumentType, name="document_type", values_callable=lambda e: [m.value for m in e]), nullable=False)
    status = Column(
        Enum(DocumentStatus, name="document_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=DocumentStatus.PENDING,
    )
    proposer_id = Column(Uuid(as_uuid=True), nullable=False)
    body_text = Column(Text, nullable=False)
    client_token = Column(String(64), nullable=True)
    rejected_by = Column(Uuid(as_uuid=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    resolved_at = Column(TIMESTAMP, nullable=True)  # When signed/rejected

    # One row per required signer, created at proposal time.
    signatures = relationship(
        "ContractSignature",
        back_populates="document",
        lazy="selectin",
        order_by="ContractSignature.party_id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (DocumentStatus.SIGNED, DocumentStatus.REJECTED)

    @property
    def required_party_ids(self):
        return [s.party_id for s in self.signatures]

    @property
    def missing_party_ids(self):
        return [s.party_id for s in self.signatures if s.signed_at is None]
