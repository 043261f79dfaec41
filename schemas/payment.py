import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from models.payment import PaymentIntent


class CheckoutRequest(BaseModel):
    amount: int = Field(gt=0)


class PaymentResponse(BaseModel):
    id: uuid.UUID
    thread_id: uuid.UUID
    listing_id: uuid.UUID
    amount: int
    fee: int
    seller_payout: int
    currency: str
    status: str
    external_reference: Optional[str]
    failure_reason: Optional[str]
    created_at: datetime
    completed_at: Optional[datetime]


class CheckoutResponse(BaseModel):
    intent_id: uuid.UUID
    client_secret: str
    payment: PaymentResponse


def payment_to_response(intent: PaymentIntent) -> PaymentResponse:
    return PaymentResponse(
        id=intent.id,
        thread_id=intent.thread_id,
        listing_id=intent.listing_id,
        amount=intent.amount,
        fee=intent.fee,
        seller_payout=intent.seller_payout,
        currency=intent.currency,
        status=intent.status.value,
        external_reference=intent.external_reference,
        failure_reason=intent.failure_reason,
        created_at=intent.created_at,
        completed_at=intent.completed_at,
    )
