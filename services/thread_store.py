"""Thread identity, participant set and read-marker bookkeeping."""
import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models import Thread, ThreadParticipant, ParticipantRole, Message, Listing
from services import listing_store
from services.errors import NotParticipant, ValidationError, IntegrityViolation

logger = logging.getLogger(__name__)


@dataclass
class ThreadSummary:
    thread: Thread
    role: ParticipantRole
    other_participant_id: uuid.UUID
    last_message: Optional[Message]
    unread_count: int
    listing_title: Optional[str]


def canonical_pair(a: uuid.UUID, b: uuid.UUID):
    return tuple(sorted((a, b)))


async def get_thread_for(db: AsyncSession, thread_id: uuid.UUID, user_id: uuid.UUID) -> Thread:
    """Load a thread, refusing non-participants with not-found semantics."""
    thread = await db.get(Thread, thread_id)
    if thread is None or not thread.is_participant(user_id):
        if thread is not None:
            logger.warning(f"User {user_id} denied access to thread {thread_id}")
        raise NotParticipant()
    return thread


async def _find_thread(db: AsyncSession, low, high, listing_key: str) -> Optional[Thread]:
    result = await db.execute(
        select(Thread).where(
            Thread.participant_low == low,
            Thread.participant_high == high,
            Thread.listing_key == listing_key,
        )
    )
    return result.scalars().first()


async def create_or_get_thread(
    db: AsyncSession, buyer_id: uuid.UUID, seller_id: uuid.UUID, listing: Optional[Listing] = None
):
    """Returns (thread, created). One thread per unordered pair and listing."""
    if buyer_id == seller_id:
        raise ValidationError("A thread needs two distinct participants")

    low, high = canonical_pair(buyer_id, seller_id)
    listing_key = str(listing.id) if listing is not None else ""

    existing = await _find_thread(db, low, high, listing_key)
    if existing is not None:
        return existing, False

    thread = Thread(
        buyer_id=buyer_id,
        seller_id=seller_id,
        participant_low=low,
        participant_high=high,
        listing_id=listing.id if listing is not None else None,
        listing_key=listing_key,
        last_seq=0,
        participants=[
            ThreadParticipant(user_id=buyer_id, role=ParticipantRole.BUYER),
            ThreadParticipant(user_id=seller_id, role=ParticipantRole.SELLER),
        ],
    )
    try:
        async with db.begin_nested():
            db.add(thread)
    except IntegrityError:
        # Lost a creation race; the winner's thread is the answer.
        existing = await _find_thread(db, low, high, listing_key)
        if existing is None:
            raise IntegrityViolation("Thread creation conflicted without a visible thread")
        return existing, False

    logger.info(f"Created thread {thread.id} between buyer {buyer_id} and seller {seller_id}")
    return thread, True


async def list_threads_for_user(db: AsyncSession, user_id: uuid.UUID) -> List[ThreadSummary]:
    """Thread summaries, most recent activity first, in one batched read."""
    result = await db.execute(
        select(Thread, ThreadParticipant, Message)
        .join(
            ThreadParticipant,
            and_(ThreadParticipant.thread_id == Thread.id, ThreadParticipant.user_id == user_id),
        )
        .outerjoin(Message, and_(Message.thread_id == Thread.id, Message.seq == Thread.last_seq))
        .order_by(Thread.last_activity_at.desc(), Thread.created_at.desc())
    )
    rows = result.all()

    listings = [thread.listing for thread, _, _ in rows if thread.listing is not None]
    accessible = await listing_store.accessible_listing_ids(db, user_id, listings)

    summaries = []
    for thread, participant, last_message in rows:
        title = None
        if thread.listing is not None:
            visibility = listing_store.visibility_from(thread.listing, user_id, thread.listing.id in accessible)
            title = listing_store.redact(thread.listing, visibility)["title"]
        summaries.append(
            ThreadSummary(
                thread=thread,
                role=participant.role,
                other_participant_id=thread.other_party(user_id),
                last_message=last_message,
                unread_count=participant.unread_count,
                listing_title=title,
            )
        )
    return summaries


async def get_participant(db: AsyncSession, thread_id: uuid.UUID, user_id: uuid.UUID, for_update=False):
    stmt = select(ThreadParticipant).where(
        ThreadParticipant.thread_id == thread_id, ThreadParticipant.user_id == user_id
    ).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    participant = result.scalars().first()
    if participant is None:
        raise NotParticipant()
    return participant


async def unread_count_after(db: AsyncSession, thread: Thread, user_id: uuid.UUID, seq: int) -> int:
    result = await db.execute(
        select(func.count(Message.id)).where(
            Message.thread_id == thread.id,
            Message.seq > seq,
            Message.sender_id == thread.other_party(user_id),
        )
    )
    return result.scalar_one()


async def mark_read(db: AsyncSession, thread: Thread, user_id: uuid.UUID, upto_seq: int) -> ThreadParticipant:
    """Advance the read marker; never moves it backwards."""
    if upto_seq < 0:
        raise ValidationError("upto_seq must be zero or positive")

    participant = await get_participant(db, thread.id, user_id, for_update=True)
    target = min(upto_seq, thread.last_seq)
    if participant.last_read_seq >= target:
        return participant

    participant.last_read_seq = target
    participant.unread_count = await unread_count_after(db, thread, user_id, target)
    await db.flush()
    return participant
