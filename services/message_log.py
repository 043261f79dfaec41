"""
Append-only, per-thread ordered message log.

Sequence numbers come from an atomic increment of `threads.last_seq`, which
serializes concurrent senders on the thread row, and the unique
(thread_id, seq) constraint backs it up.
"""
import logging
import uuid
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from models import Thread, ThreadParticipant, Message, MessageKind
from models.base import utcnow
from schemas.message import TextContent, ImageContent
from services.errors import (
    ValidationError, NotMessageSender, ImmutableMessage, IntegrityViolation,
)

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 5000
MAX_MEDIA_PATH_LENGTH = 1024
MAX_PAGE_SIZE = 100


def _validate_content(content):
    if isinstance(content, TextContent):
        text = (content.text or "").strip()
        if not text:
            raise ValidationError("Message text must not be empty")
        if len(text) > MAX_TEXT_LENGTH:
            raise ValidationError(f"Message text exceeds {MAX_TEXT_LENGTH} characters")
        return MessageKind.TEXT, {"text": text}
    if isinstance(content, ImageContent):
        path = (content.path or "").strip()
        if not path or len(path) > MAX_MEDIA_PATH_LENGTH:
            raise ValidationError("Invalid image path")
        return MessageKind.IMAGE, {"media_path": path}
    raise ValidationError("Unsupported message content")


async def _find_by_token(db: AsyncSession, thread_id, client_token) -> Optional[Message]:
    result = await db.execute(
        select(Message).where(Message.thread_id == thread_id, Message.client_token == client_token)
    )
    return result.scalars().first()


async def _append(
    db: AsyncSession,
    thread: Thread,
    sender_id: Optional[uuid.UUID],
    kind: MessageKind,
    client_token: Optional[str] = None,
    **fields,
) -> Message:
    now = utcnow()
    try:
        async with db.begin_nested():
            result = await db.execute(
                update(Thread)
                .where(Thread.id == thread.id)
                .values(last_seq=Thread.last_seq + 1, last_activity_at=now)
                .returning(Thread.last_seq)
                .execution_options(synchronize_session=False)
            )
            seq = result.scalar_one()

            if sender_id is not None:
                await db.execute(
                    update(ThreadParticipant)
                    .where(ThreadParticipant.thread_id == thread.id, ThreadParticipant.user_id != sender_id)
                    .values(unread_count=ThreadParticipant.unread_count + 1)
                    .execution_options(synchronize_session=False)
                )

            message = Message(
                thread_id=thread.id,
                seq=seq,
                sender_id=sender_id,
                kind=kind,
                client_token=client_token,
                created_at=now,
                **fields,
            )
            db.add(message)
    except IntegrityError:
        if client_token is not None:
            existing = await _find_by_token(db, thread.id, client_token)
            if existing is not None:
                return existing
        raise IntegrityViolation("Message sequence conflict")

    set_committed_value(thread, "last_seq", seq)
    set_committed_value(thread, "last_activity_at", now)
    return message


async def append_message(
    db: AsyncSession, thread: Thread, sender_id: uuid.UUID, content, client_token: Optional[str] = None
) -> Message:
    """Append a participant's text or image message.

    A retry carrying an already-confirmed client_token returns the confirmed
    message instead of appending a duplicate.
    """
    if not thread.is_participant(sender_id):
        raise ValidationError("Sender is not a thread participant")

    kind, fields = _validate_content(content)

    if client_token is not None:
        existing = await _find_by_token(db, thread.id, client_token)
        if existing is not None:
            if existing.sender_id != sender_id:
                raise ValidationError("client_token already used in this thread")
            return existing

    return await _append(db, thread, sender_id, kind, client_token=client_token, **fields)


async def append_contract_ref(db: AsyncSession, thread: Thread, proposer_id: uuid.UUID, document_id: uuid.UUID) -> Message:
    return await _append(db, thread, proposer_id, MessageKind.CONTRACT_REF, contract_id=document_id)


async def append_system_message(db: AsyncSession, thread: Thread, event: str, text: str) -> Message:
    message = await _append(db, thread, None, MessageKind.SYSTEM, system_event=event, text=text)
    logger.info(f"System message '{event}' appended to thread {thread.id} at seq {message.seq}")
    return message


async def list_messages(
    db: AsyncSession,
    thread: Thread,
    limit: int = 50,
    before_seq: Optional[int] = None,
    after_seq: Optional[int] = None,
    order: str = "desc",
) -> Tuple[List[Message], Optional[int]]:
    """Returns (page, next_cursor); pass next_cursor back as before_seq (desc) or after_seq (asc)."""
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if order not in ("asc", "desc"):
        raise ValidationError("order must be 'asc' or 'desc'")

    stmt = select(Message).where(Message.thread_id == thread.id)
    if before_seq is not None:
        stmt = stmt.where(Message.seq < before_seq)
    if after_seq is not None:
        stmt = stmt.where(Message.seq > after_seq)
    stmt = stmt.order_by(Message.seq.desc() if order == "desc" else Message.seq.asc()).limit(limit + 1)

    result = await db.execute(stmt)
    messages = list(result.scalars().all())
    next_cursor = None
    if len(messages) > limit:
        messages = messages[:limit]
        next_cursor = messages[-1].seq
    return messages, next_cursor


async def get_message(db: AsyncSession, message_id: uuid.UUID) -> Optional[Message]:
    return await db.get(Message, message_id)


async def soft_delete(db: AsyncSession, thread: Thread, message: Message, requester_id: uuid.UUID) -> Message:
    if message.sender_id != requester_id:
        logger.warning(f"User {requester_id} tried to delete message {message.id} they did not send")
        raise NotMessageSender()
    if message.kind in (MessageKind.CONTRACT_REF, MessageKind.SYSTEM):
        raise ImmutableMessage()
    if message.is_deleted:
        return message

    message.is_deleted = True
    message.deleted_at = utcnow()
    await db.flush()
    logger.info(f"Message {message.id} soft-deleted in thread {thread.id}")
    return message
