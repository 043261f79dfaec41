import uuid
import enum
from sqlalchemy import (
    Column, String, Text, Integer, Boolean, ForeignKey, TIMESTAMP, Enum, Uuid, UniqueConstraint
)
from models.base import Base, POSTGRESQL_SCHEMA, utcnow


class MessageKind(enum.Enum):
    TEXT = "text"
    IMAGE = "image"
    CONTRACT_REF = "contract_ref"
    SYSTEM = "system"


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("thread_id", "seq", name="uq_messages_thread_seq"),
        UniqueConstraint("thread_id", "client_token", name="uq_messages_thread_client_token"),
        {"schema": POSTGRESQL_SCHEMA},
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    thread_id = Column(Uuid(as_uuid=True), ForeignKey(f"{POSTGRESQL_SCHEMA}.threads.id"), nullable=False, index=True)
    seq = Column(Integer, nullable=False)
    sender_id = Column(Uuid(as_uuid=True), nullable=True)  # NULL for system messages
    kind = Column(Enum(MessageKind, name="message_kind", values_callable=lambda e: [m.value for m in e]), nullable=False)
    text = Column(Text, nullable=True)
    media_path = Column(String, nullable=True)
    contract_id = Column(Uuid(as_uuid=True), ForeignKey(f"{POSTGRESQL_SCHEMA}.contract_documents.id"), nullable=True)
    system_event = Column(String, nullable=True)
    client_token = Column(String(64), nullable=True)
    # Stored content is kept for evidence; readers get a tombstone.
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)

    @property
    def is_system(self) -> bool:
        return self.kind == MessageKind.SYSTEM
