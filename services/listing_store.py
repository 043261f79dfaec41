"""Read side of the listing service, with the NDA visibility gate."""
import uuid
from dataclasses import dataclass
from typing import Iterable, Set

from sqlalchemy.ext.asyncio import AsyncSession

from models import Listing
from services import nda_ledger
from services.errors import NotFound


@dataclass(frozen=True)
class ListingVisibility:
    is_secret: bool
    has_access: bool


async def get_listing(db: AsyncSession, listing_id: uuid.UUID) -> Listing:
    listing = await db.get(Listing, listing_id)
    if listing is None:
        raise NotFound("Listing not found")
    return listing


def is_gated(listing: Listing) -> bool:
    return bool(listing.is_secret or listing.requires_nda)


def visibility_from(listing: Listing, requester_id: uuid.UUID, accepted: bool) -> ListingVisibility:
    has_access = listing.seller_id == requester_id or accepted or not is_gated(listing)
    return ListingVisibility(is_secret=bool(listing.is_secret), has_access=has_access)


async def get_listing_visibility(db: AsyncSession, listing: Listing, requester_id: uuid.UUID) -> ListingVisibility:
    accepted = False
    if is_gated(listing) and listing.seller_id != requester_id:
        accepted = await nda_ledger.has_accepted(db, requester_id, listing.id)
    return visibility_from(listing, requester_id, accepted)


async def accessible_listing_ids(db: AsyncSession, requester_id: uuid.UUID, listings: Iterable[Listing]) -> Set[uuid.UUID]:
    """Ids among `listings` the requester may see unredacted, resolved in one query."""
    listings = list(listings)
    gated = [l.id for l in listings if is_gated(l) and l.seller_id != requester_id]
    accepted = await nda_ledger.accepted_listing_ids(db, requester_id, gated)
    return {l.id for l in listings if visibility_from(l, requester_id, l.id in accepted).has_access}


def redact(listing: Listing, visibility: ListingVisibility) -> dict:
    fields = {
        "id": listing.id,
        "seller_id": listing.seller_id,
        "title": listing.title,
        "body": listing.body,
        "confidential_details": listing.confidential_details,
        "price": listing.price,
        "is_secret": bool(listing.is_secret),
        "requires_nda": bool(listing.requires_nda),
        "has_access": visibility.has_access,
        "redacted": not visibility.has_access,
    }
    if not visibility.has_access:
        fields["confidential_details"] = None
        if visibility.is_secret:
            fields["seller_id"] = None
            fields["title"] = None
            fields["body"] = None
    return fields
