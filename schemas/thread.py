import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel

from schemas.listing import ListingResponse
from schemas.message import MessageResponse


class ThreadCreate(BaseModel):
    counterpart_id: uuid.UUID
    listing_id: Optional[uuid.UUID] = None


class ParticipantResponse(BaseModel):
    user_id: uuid.UUID
    role: str
    last_read_seq: int
    unread_count: int


class ThreadResponse(BaseModel):
    id: uuid.UUID
    buyer_id: uuid.UUID
    seller_id: uuid.UUID
    listing_id: Optional[uuid.UUID]
    last_seq: int
    closed_as: Optional[str]
    created_at: datetime
    last_activity_at: datetime
    created: Optional[bool] = None


class ThreadDetailResponse(ThreadResponse):
    deal_state: str
    participants: List[ParticipantResponse]
    listing: Optional[ListingResponse] = None


class ThreadSummaryResponse(BaseModel):
    id: uuid.UUID
    listing_id: Optional[uuid.UUID]
    listing_title: Optional[str]
    role: str
    other_participant_id: uuid.UUID
    last_message: Optional[MessageResponse]
    unread_count: int
    closed_as: Optional[str]
    last_activity_at: datetime


class MarkReadRequest(BaseModel):
    upto_seq: int


class ReadStateResponse(BaseModel):
    thread_id: uuid.UUID
    last_read_seq: int
    unread_count: int


class CloseDealRequest(BaseModel):
    outcome: Literal["rejected", "canceled"]
