"""
Payment processor boundary.

`PaymentProcessor` is the outbound/inbound contract the payment bridge
consumes; `StripeProcessor` implements it with the Stripe SDK.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

import stripe

from config import Config
from models.payment import PaymentStatus
from services.errors import ExternalDependencyError, ProcessorTimeout, WebhookVerificationError

logger = logging.getLogger(__name__)

PLATFORM_NAME = "appexit"

# Processor event type -> local payment outcome
EVENT_OUTCOMES = {
    "payment_intent.processing": PaymentStatus.PROCESSING,
    "payment_intent.succeeded": PaymentStatus.SUCCEEDED,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "payment_intent.canceled": PaymentStatus.CANCELED,
}


@dataclass
class ProcessorIntent:
    id: str
    client_secret: str


@dataclass
class ProcessorEvent:
    event_type: str
    external_reference: Optional[str]
    outcome: Optional[PaymentStatus]
    amount: Optional[int] = None
    failure_reason: Optional[str] = None


class PaymentProcessor(ABC):
    @abstractmethod
    async def create_intent(
        self, amount: int, currency: str, metadata: Dict[str, str], idempotency_key: str
    ) -> ProcessorIntent:
        raise NotImplementedError

    @abstractmethod
    async def cancel_intent(self, external_reference: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def parse_event(self, payload: bytes, signature: str) -> ProcessorEvent:
        raise NotImplementedError


def event_from_payload(data: dict) -> ProcessorEvent:
    event_type = data.get("type", "")
    obj = (data.get("data") or {}).get("object") or {}
    error = obj.get("last_payment_error") or {}
    return ProcessorEvent(
        event_type=event_type,
        external_reference=obj.get("id"),
        outcome=EVENT_OUTCOMES.get(event_type),
        amount=obj.get("amount_received") or obj.get("amount"),
        failure_reason=error.get("message") or obj.get("cancellation_reason"),
    )


class StripeProcessor(PaymentProcessor):
    def __init__(self, api_key: str, webhook_secret: str, timeout: float):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.timeout = timeout

    async def _call(self, fn, **kwargs):
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, api_key=self.api_key, **kwargs), self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"[STRIPE] {fn.__qualname__} timed out after {self.timeout}s")
            raise ProcessorTimeout()
        except stripe.StripeError as e:
            logger.error(f"[STRIPE] {fn.__qualname__} failed: {e}")
            raise ExternalDependencyError(f"Payment processor error: {e.user_message or 'request failed'}")

    async def create_intent(self, amount, currency, metadata, idempotency_key):
        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency,
            metadata={**metadata, "platform": PLATFORM_NAME},
            automatic_payment_methods={"enabled": True},
            idempotency_key=idempotency_key,
        )
        logger.info(f"[STRIPE] Created payment intent: {intent.id} (amount: {amount} {currency})")
        return ProcessorIntent(id=intent.id, client_secret=intent.client_secret)

    async def cancel_intent(self, external_reference):
        await self._call(stripe.PaymentIntent.cancel, intent=external_reference)
        logger.info(f"[STRIPE] Canceled payment intent: {external_reference}")

    def parse_event(self, payload, signature):
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), signature or "", self.webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE
            )
            data = json.loads(payload)
        except (stripe.SignatureVerificationError, ValueError) as e:
            logger.warning(f"[STRIPE WEBHOOK] Webhook signature verification failed: {e}")
            raise WebhookVerificationError()
        return event_from_payload(data)


_processor: Optional[PaymentProcessor] = None


def get_payment_processor() -> PaymentProcessor:
    """FastAPI dependency; tests override it with a fake processor."""
    global _processor
    if _processor is None:
        _processor = StripeProcessor(
            api_key=Config.STRIPE_SECRET_KEY,
            webhook_secret=Config.STRIPE_WEBHOOK_SECRET,
            timeout=Config.PAYMENT_PROCESSOR_TIMEOUT_SECONDS,
        )
    return _processor
