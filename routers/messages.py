import uuid
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status

from schemas.message import MessageCreate, MessageResponse, MessagePage, message_to_response
from services.orchestrator import WorkflowOrchestrator
from utils.auth import Principal, get_current_principal
from utils.deps import get_orchestrator

router = APIRouter()


@router.post("/threads/{thread_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    thread_id: uuid.UUID,
    data: MessageCreate,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """Append a text or image message. Retries with the same client_token return the confirmed message."""
    message = await workflow.send_message(principal, thread_id, data.content, data.client_token)
    return message_to_response(message)


@router.get("/threads/{thread_id}/messages", response_model=MessagePage)
async def list_messages(
    thread_id: uuid.UUID,
    limit: int = Query(50),
    before_seq: Optional[int] = Query(None),
    after_seq: Optional[int] = Query(None),
    order: Literal["asc", "desc"] = Query("desc"),
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    messages, next_cursor = await workflow.list_messages(principal, thread_id, limit, before_seq, after_seq, order)
    return MessagePage(messages=[message_to_response(m) for m in messages], next_cursor=next_cursor)


@router.delete("/messages/{message_id}", response_model=MessageResponse)
async def delete_message(
    message_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """Soft-delete your own message; its position in the thread is kept."""
    message = await workflow.delete_message(principal, message_id)
    return message_to_response(message)
