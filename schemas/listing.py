import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ListingResponse(BaseModel):
    id: uuid.UUID
    seller_id: Optional[uuid.UUID]
    title: Optional[str]
    body: Optional[str]
    confidential_details: Optional[str]
    price: int
    is_secret: bool
    requires_nda: bool
    has_access: bool
    redacted: bool


class NDAAcceptRequest(BaseModel):
    document_url: Optional[str] = Field(default=None, max_length=1024)


class NDAAcceptanceResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    listing_id: uuid.UUID
    document_url: Optional[str]
    document_id: Optional[uuid.UUID]
    signed_at: datetime

    class Config:
        from_attributes = True


class NDAStatusResponse(BaseModel):
    listing_id: uuid.UUID
    accepted: bool
    acceptance: Optional[NDAAcceptanceResponse] = None
