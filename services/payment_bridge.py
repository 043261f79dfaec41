"""
Payment intents for a (thread, listing) deal and their completion callbacks.

The active intent slot is the partial unique index on payment_intents over
unresolved statuses. A checkout claims it by inserting the local intent row
before the processor is called, so concurrent clicks cannot both pass.
Every status change out of an active state is a compare-and-set UPDATE,
which makes redelivered callbacks and repeated cancels no-ops.
"""
import logging
import uuid
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import Config
from models import Thread, PaymentIntent, PaymentStatus, ACTIVE_PAYMENT_STATUSES
from models.base import utcnow
from services import message_log
from services.errors import (
    IntentAlreadyActive, AlreadyTerminal, NotFound, ValidationError,
)
from utils.payments import PaymentProcessor, ProcessorEvent

logger = logging.getLogger(__name__)

MAX_AMOUNT = 10 ** 12

SYSTEM_TEXTS = {
    PaymentStatus.SUCCEEDED: ("payment_succeeded", "Payment completed"),
    PaymentStatus.FAILED: ("payment_failed", "Payment failed"),
    PaymentStatus.CANCELED: ("payment_canceled", "Payment canceled"),
}


def fee_for(amount: int) -> int:
    return amount * Config.PLATFORM_FEE_PERCENT // 100


async def active_intent(db: AsyncSession, thread_id: uuid.UUID, listing_id: uuid.UUID) -> Optional[PaymentIntent]:
    result = await db.execute(
        select(PaymentIntent).where(
            PaymentIntent.thread_id == thread_id,
            PaymentIntent.listing_id == listing_id,
            PaymentIntent.status.in_(ACTIVE_PAYMENT_STATUSES),
        )
    )
    return result.scalars().first()


async def list_payments(db: AsyncSession, thread: Thread) -> List[PaymentIntent]:
    result = await db.execute(
        select(PaymentIntent)
        .where(PaymentIntent.thread_id == thread.id)
        .order_by(PaymentIntent.created_at.asc())
    )
    return list(result.scalars().all())


async def get_intent(db: AsyncSession, intent_id: uuid.UUID) -> PaymentIntent:
    intent = await db.get(PaymentIntent, intent_id)
    if intent is None:
        raise NotFound("Payment not found")
    return intent


async def initiate_checkout(
    db: AsyncSession, processor: PaymentProcessor, thread: Thread, buyer_id: uuid.UUID, amount: int
):
    """Claim the active slot and create the processor intent. Returns (intent, client_secret)."""
    if not isinstance(amount, int) or amount <= 0 or amount > MAX_AMOUNT:
        raise ValidationError("amount must be a positive integer")
    if thread.listing_id is None:
        raise ValidationError("This thread has no listing to pay for")

    if await active_intent(db, thread.id, thread.listing_id) is not None:
        raise IntentAlreadyActive()

    fee = fee_for(amount)
    intent = PaymentIntent(
        thread_id=thread.id,
        listing_id=thread.listing_id,
        buyer_id=buyer_id,
        amount=amount,
        fee=fee,
        currency=Config.PAYMENT_CURRENCY,
        status=PaymentStatus.CREATED,
    )
    try:
        async with db.begin_nested():
            db.add(intent)
    except IntegrityError:
        logger.warning(f"Concurrent checkout refused for thread {thread.id}: active intent slot taken")
        raise IntentAlreadyActive()

    # Idempotency key bound to the local row: a processor retry cannot charge twice.
    processor_intent = await processor.create_intent(
        amount=intent.amount,
        currency=intent.currency,
        metadata={
            "thread_id": str(thread.id),
            "listing_id": str(thread.listing_id),
            "payment_intent_id": str(intent.id),
        },
        idempotency_key=f"payment_intent_{intent.id}",
    )
    intent.external_reference = processor_intent.id
    await db.flush()

    logger.info(
        f"Checkout started for thread {thread.id}: intent {intent.id} "
        f"(amount: {amount}, fee: {fee} {intent.currency}, ref: {processor_intent.id})"
    )
    return intent, processor_intent.client_secret


async def _resolve(db: AsyncSession, intent: PaymentIntent, status: PaymentStatus, **values) -> bool:
    """Compare-and-set out of an active status; False if someone else already resolved it."""
    result = await db.execute(
        update(PaymentIntent)
        .where(PaymentIntent.id == intent.id, PaymentIntent.status.in_(ACTIVE_PAYMENT_STATUSES))
        .values(status=status, **values)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(intent)
    return result.rowcount == 1


async def _resolve_with_notice(db: AsyncSession, intent: PaymentIntent, status: PaymentStatus, **values) -> bool:
    async with db.begin_nested():
        changed = await _resolve(db, intent, status, completed_at=utcnow(), **values)
        if changed:
            thread = await db.get(Thread, intent.thread_id)
            event, text = SYSTEM_TEXTS[status]
            await message_log.append_system_message(db, thread, event, text)
    return changed


async def handle_completion(db: AsyncSession, event: ProcessorEvent) -> Optional[PaymentIntent]:
    """Apply a verified processor callback. Redeliveries are no-ops."""
    if event.outcome is None:
        logger.info(f"[PAYMENT WEBHOOK] Unhandled event type: {event.event_type}")
        return None

    result = await db.execute(
        select(PaymentIntent)
        .where(PaymentIntent.external_reference == event.external_reference)
        .execution_options(populate_existing=True)
    )
    intent = result.scalars().first()
    if intent is None:
        logger.warning(f"[PAYMENT WEBHOOK] No intent for external reference {event.external_reference}")
        return None

    if not intent.is_active:
        logger.info(
            f"[PAYMENT WEBHOOK] Intent {intent.id} already {intent.status.value}; "
            f"ignoring {event.event_type}"
        )
        return intent

    if event.outcome == PaymentStatus.PROCESSING:
        if intent.status == PaymentStatus.CREATED:
            await db.execute(
                update(PaymentIntent)
                .where(PaymentIntent.id == intent.id, PaymentIntent.status == PaymentStatus.CREATED)
                .values(status=PaymentStatus.PROCESSING)
                .execution_options(synchronize_session=False)
            )
            await db.refresh(intent)
        return intent

    if event.outcome == PaymentStatus.SUCCEEDED and event.amount is not None and event.amount != intent.amount:
        # Acknowledged; the slot stays held until the payment is reconciled.
        logger.error(
            f"[PAYMENT WEBHOOK] Amount mismatch for intent {intent.id}: "
            f"expected {intent.amount}, got {event.amount}"
        )
        intent.failure_reason = f"amount_mismatch: received {event.amount}"
        await db.flush()
        return intent

    values = {}
    if event.outcome in (PaymentStatus.FAILED, PaymentStatus.CANCELED):
        values["failure_reason"] = event.failure_reason

    changed = await _resolve_with_notice(db, intent, event.outcome, **values)
    if changed:
        logger.info(f"[PAYMENT WEBHOOK] Intent {intent.id} -> {intent.status.value}")
    return intent


async def cancel_checkout(db: AsyncSession, processor: PaymentProcessor, intent: PaymentIntent) -> PaymentIntent:
    """Release the active slot; repeated cancels converge on one release."""
    if intent.status == PaymentStatus.SUCCEEDED:
        raise AlreadyTerminal("Payment already succeeded")
    if not intent.is_active:
        return intent

    if intent.external_reference:
        await processor.cancel_intent(intent.external_reference)

    changed = await _resolve_with_notice(db, intent, PaymentStatus.CANCELED, failure_reason="canceled_by_buyer")
    if changed:
        logger.info(f"Checkout {intent.id} canceled by buyer")
    return intent
