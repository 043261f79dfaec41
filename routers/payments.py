import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, Header, Request

from schemas.payment import CheckoutRequest, CheckoutResponse, PaymentResponse, payment_to_response
from services.orchestrator import WorkflowOrchestrator
from utils.auth import Principal, get_current_principal
from utils.deps import get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/threads/{thread_id}/checkout", response_model=CheckoutResponse, status_code=201)
async def initiate_checkout(
    thread_id: uuid.UUID,
    data: CheckoutRequest,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """Start payment for the thread's listing; requires a signed transfer agreement."""
    intent, client_secret = await workflow.initiate_checkout(principal, thread_id, data.amount)
    return CheckoutResponse(intent_id=intent.id, client_secret=client_secret, payment=payment_to_response(intent))


@router.get("/threads/{thread_id}/payments", response_model=List[PaymentResponse])
async def list_payments(
    thread_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    return [payment_to_response(i) for i in await workflow.list_payments(principal, thread_id)]


@router.post("/payments/{intent_id}/cancel", response_model=PaymentResponse)
async def cancel_checkout(
    intent_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    return payment_to_response(await workflow.cancel_checkout(principal, intent_id))


@router.post("/payments/webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: str = Header(default="", alias="Stripe-Signature"),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """Processor completion callback, trusted only after signature verification."""
    payload = await request.body()
    intent = await workflow.handle_processor_webhook(payload, stripe_signature)
    if intent is not None:
        logger.info(f"[PAYMENT WEBHOOK] Intent {intent.id} now {intent.status.value}")
    return {"status": "success"}
