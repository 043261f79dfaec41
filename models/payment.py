import uuid
import enum
from sqlalchemy import (
    Column, String, Text, BigInteger, ForeignKey, TIMESTAMP, Enum, Uuid, Index, text
)
from models.base import Base, POSTGRESQL_SCHEMA, utcnow


class PaymentStatus(enum.Enum):
    CREATED = "created"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


ACTIVE_PAYMENT_STATUSES = (PaymentStatus.CREATED, PaymentStatus.PROCESSING)
TERMINAL_PAYMENT_STATUSES = (PaymentStatus.SUCCEEDED, PaymentStatus.FAILED, PaymentStatus.CANCELED)

_ACTIVE_WHERE = text("status IN ('created', 'processing')")


class PaymentIntent(Base):
    __tablename__ = "payment_intents"
    __table_args__ = (
        # The active intent slot: one unresolved intent per (thread, listing).
        Index(
            "uq_payment_intents_active_slot",
            "thread_id",
            "listing_id",
            unique=True,
            postgresql_where=_ACTIVE_WHERE,
            sqlite_where=_ACTIVE_WHERE,
        ),
        {"schema": POSTGRESQL_SCHEMA},
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    thread_id = Column(Uuid(as_uuid=True), ForeignKey(f"{POSTGRESQL_SCHEMA}.threads.id"), nullable=False, index=True)
    listing_id = Column(Uuid(as_uuid=True), ForeignKey(f"{POSTGRESQL_SCHEMA}.listings.id"), nullable=False)
    buyer_id = Column(Uuid(as_uuid=True), nullable=False)
    amount = Column(BigInteger, nullable=False)
    fee = Column(BigInteger, nullable=False, default=0)
    currency = Column(String(8), nullable=False)
    status = Column(
        Enum(PaymentStatus, name="payment_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=PaymentStatus.CREATED,
    )
    external_reference = Column(String, unique=True, nullable=True, index=True)
    failure_reason = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    completed_at = Column(TIMESTAMP, nullable=True)

    @property
    def seller_payout(self) -> int:
        return self.amount - self.fee

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_PAYMENT_STATUSES
