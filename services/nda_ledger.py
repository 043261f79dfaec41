"""NDA acceptance per (user, listing)."""
import logging
import uuid
from typing import Iterable, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models import NDAAcceptance
from services.errors import IntegrityViolation

logger = logging.getLogger(__name__)


async def get_acceptance(db: AsyncSession, user_id: uuid.UUID, listing_id: uuid.UUID) -> Optional[NDAAcceptance]:
    result = await db.execute(
        select(NDAAcceptance).where(NDAAcceptance.user_id == user_id, NDAAcceptance.listing_id == listing_id)
    )
    return result.scalars().first()


async def has_accepted(db: AsyncSession, user_id: uuid.UUID, listing_id: uuid.UUID) -> bool:
    return await get_acceptance(db, user_id, listing_id) is not None


async def accepted_listing_ids(db: AsyncSession, user_id: uuid.UUID, listing_ids: Iterable[uuid.UUID]) -> Set[uuid.UUID]:
    ids = set(listing_ids)
    if not ids:
        return set()
    result = await db.execute(
        select(NDAAcceptance.listing_id).where(NDAAcceptance.user_id == user_id, NDAAcceptance.listing_id.in_(ids))
    )
    return set(result.scalars().all())


async def record_acceptance(
    db: AsyncSession,
    user_id: uuid.UUID,
    listing_id: uuid.UUID,
    document_url: Optional[str] = None,
    document_id: Optional[uuid.UUID] = None,
):
    """Idempotent: returns (acceptance, created); re-accepting returns the existing row."""
    existing = await get_acceptance(db, user_id, listing_id)
    if existing is not None:
        return existing, False

    acceptance = NDAAcceptance(
        user_id=user_id, listing_id=listing_id, document_url=document_url, document_id=document_id
    )
    try:
        async with db.begin_nested():
            db.add(acceptance)
    except IntegrityError:
        existing = await get_acceptance(db, user_id, listing_id)
        if existing is None:
            raise IntegrityViolation("NDA acceptance conflicted without a visible row")
        return existing, False

    logger.info(f"Recorded NDA acceptance for user {user_id} on listing {listing_id}")
    return acceptance, True
