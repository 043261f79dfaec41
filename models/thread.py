import uuid
import enum
from sqlalchemy import (
    Column, String, Integer, ForeignKey, TIMESTAMP, Enum, Uuid, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from models.base import Base, POSTGRESQL_SCHEMA, utcnow


class ParticipantRole(enum.Enum):
    BUYER = "buyer"
    SELLER = "seller"


class DealClosure(enum.Enum):
    REJECTED = "rejected"
    CANCELED = "canceled"


class Thread(Base):
    __tablename__ = "threads"
    __table_args__ = (
        # Canonical (sorted) pair keeps CreateOrGetThread idempotent under races.
        UniqueConstraint("participant_low", "participant_high", "listing_key", name="uq_threads_pair_listing"),
        CheckConstraint("buyer_id <> seller_id", name="ck_threads_distinct_parties"),
        {"schema": POSTGRESQL_SCHEMA},
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    buyer_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    seller_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    participant_low = Column(Uuid(as_uuid=True), nullable=False)
    participant_high = Column(Uuid(as_uuid=True), nullable=False)
    listing_id = Column(Uuid(as_uuid=True), ForeignKey(f"{POSTGRESQL_SCHEMA}.listings.id"), nullable=True)
    listing_key = Column(String, nullable=False, default="")  # "" for ad hoc threads
    last_seq = Column(Integer, nullable=False, default=0)
    last_activity_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    closed_as = Column(Enum(DealClosure, name="deal_closure", values_callable=lambda e: [m.value for m in e]), nullable=True)
    closed_at = Column(TIMESTAMP, nullable=True)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)

    participants = relationship("ThreadParticipant", back_populates="thread", lazy="selectin")
    listing = relationship("Listing", lazy="selectin")

    @property
    def participant_ids(self):
        return (self.buyer_id, self.seller_id)

    def is_participant(self, user_id) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    def other_party(self, user_id):
        return self.seller_id if user_id == self.buyer_id else self.buyer_id


class ThreadParticipant(Base):
    __tablename__ = "thread_participants"
    __table_args__ = {"schema": POSTGRESQL_SCHEMA}

    thread_id = Column(Uuid(as_uuid=True), ForeignKey(f"{POSTGRESQL_SCHEMA}.threads.id"), primary_key=True)
    user_id = Column(Uuid(as_uuid=True), primary_key=True, index=True)
    role = Column(Enum(ParticipantRole, name="participant_role", values_callable=lambda e: [m.value for m in e]), nullable=False)
    last_read_seq = Column(Integer, nullable=False, default=0)
    unread_count = Column(Integer, nullable=False, default=0)

    thread = relationship("Thread", back_populates="participants")
