import uuid
from typing import List

from fastapi import APIRouter, Depends, Response, status

from models import Thread, DealClosure
from schemas.listing import ListingResponse
from schemas.message import message_to_response
from schemas.thread import (
    ThreadCreate, ThreadResponse, ThreadDetailResponse, ThreadSummaryResponse, ParticipantResponse,
    MarkReadRequest, ReadStateResponse, CloseDealRequest,
)
from services.orchestrator import WorkflowOrchestrator
from utils.auth import Principal, get_current_principal
from utils.deps import get_orchestrator

router = APIRouter()


# --- Helpers ---

def thread_to_response(thread: Thread, created=None) -> ThreadResponse:
    return ThreadResponse(
        id=thread.id,
        buyer_id=thread.buyer_id,
        seller_id=thread.seller_id,
        listing_id=thread.listing_id,
        last_seq=thread.last_seq,
        closed_as=thread.closed_as.value if thread.closed_as else None,
        created_at=thread.created_at,
        last_activity_at=thread.last_activity_at,
        created=created,
    )


# --- Endpoints ---

@router.post("", response_model=ThreadResponse)
async def create_or_get_thread(
    data: ThreadCreate,
    response: Response,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """Open the thread between the caller and a counterpart, or return the existing one."""
    thread, created = await workflow.create_or_get_thread(principal, data.counterpart_id, data.listing_id)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return thread_to_response(thread, created)


@router.get("", response_model=List[ThreadSummaryResponse])
async def list_threads(
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """List the caller's threads, most recent activity first."""
    summaries = await workflow.list_threads(principal)
    return [
        ThreadSummaryResponse(
            id=s.thread.id,
            listing_id=s.thread.listing_id,
            listing_title=s.listing_title,
            role=s.role.value,
            other_participant_id=s.other_participant_id,
            last_message=message_to_response(s.last_message) if s.last_message is not None else None,
            unread_count=s.unread_count,
            closed_as=s.thread.closed_as.value if s.thread.closed_as else None,
            last_activity_at=s.thread.last_activity_at,
        )
        for s in summaries
    ]


@router.get("/{thread_id}", response_model=ThreadDetailResponse)
async def get_thread(
    thread_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    detail = await workflow.get_thread(principal, thread_id)
    base = thread_to_response(detail.thread)
    return ThreadDetailResponse(
        **base.model_dump(exclude={"created"}),
        deal_state=detail.deal_state.value,
        participants=[
            ParticipantResponse(
                user_id=p.user_id, role=p.role.value, last_read_seq=p.last_read_seq, unread_count=p.unread_count
            )
            for p in detail.thread.participants
        ],
        listing=ListingResponse(**detail.listing) if detail.listing is not None else None,
    )


@router.post("/{thread_id}/read", response_model=ReadStateResponse)
async def mark_read(
    thread_id: uuid.UUID,
    data: MarkReadRequest,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    participant = await workflow.mark_read(principal, thread_id, data.upto_seq)
    return ReadStateResponse(
        thread_id=thread_id, last_read_seq=participant.last_read_seq, unread_count=participant.unread_count
    )


@router.post("/{thread_id}/close", response_model=ThreadResponse)
async def close_deal(
    thread_id: uuid.UUID,
    data: CloseDealRequest,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """Reject (either party) or cancel (buyer) the deal for good."""
    thread = await workflow.close_deal(principal, thread_id, DealClosure(data.outcome))
    return thread_to_response(thread)
