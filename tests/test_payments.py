"""
Payment bridge: the active intent slot, processor failures, cancellation and webhooks
"""

import asyncio

import pytest

from services import message_log
from services.errors import ExternalDependencyError, IntegrityViolation, ProcessorTimeout
from services.payment_bridge import fee_for
from utils.payments import PaymentProcessor, event_from_payload


@pytest.fixture
def ready_deal(client, auth, make_listing, open_thread, signed_transfer, buyer_id, seller_id):
    """A thread whose transfer agreement is signed; returns the thread id."""
    async def _ready_deal():
        listing_id = await make_listing(seller_id)
        thread_id = await open_thread(buyer_id, seller_id, listing_id)
        await signed_transfer(thread_id, buyer_id, seller_id)
        return thread_id
    return _ready_deal


async def checkout(client, auth, thread_id, user_id, amount=5000000):
    return await client.post(f"/threads/{thread_id}/checkout", json={"amount": amount}, headers=auth(user_id))


async def system_events(client, auth, thread_id, user_id):
    page = (await client.get(f"/threads/{thread_id}/messages", params={"limit": 100}, headers=auth(user_id))).json()
    return [m["content"]["event"] for m in page["messages"] if m["is_system"]]


class TestFees:
    """Fee and event helpers"""

    def test_fee_is_floored_percentage(self):
        assert fee_for(5000000) == 500000
        assert fee_for(999) == 99

    def test_event_mapping(self):
        event = event_from_payload(
            {
                "type": "payment_intent.payment_failed",
                "data": {"object": {"id": "pi_1", "amount": 10, "last_payment_error": {"message": "Card declined"}}},
            }
        )
        assert event.external_reference == "pi_1"
        assert event.outcome.value == "failed"
        assert event.failure_reason == "Card declined"

        unknown = event_from_payload({"type": "charge.refunded", "data": {"object": {"id": "ch_1"}}})
        assert unknown.outcome is None

    def test_processor_contract_is_abstract(self):
        with pytest.raises(TypeError):
            PaymentProcessor()


class TestActiveIntentSlot:
    """At most one unresolved intent per thread and listing"""

    @pytest.mark.asyncio
    async def test_concurrent_checkouts_one_wins(self, client, auth, ready_deal, processor, buyer_id):
        thread_id = await ready_deal()

        responses = await asyncio.gather(
            checkout(client, auth, thread_id, buyer_id), checkout(client, auth, thread_id, buyer_id)
        )
        assert sorted(r.status_code for r in responses) == [201, 409]
        refused = next(r for r in responses if r.status_code == 409)
        assert refused.json()["code"] == "intent_already_active"

        payments = (await client.get(f"/threads/{thread_id}/payments", headers=auth(buyer_id))).json()
        assert len(payments) == 1
        assert len(processor.created) == 1

    @pytest.mark.asyncio
    async def test_second_checkout_while_active(self, client, auth, ready_deal, buyer_id):
        thread_id = await ready_deal()
        assert (await checkout(client, auth, thread_id, buyer_id)).status_code == 201
        response = await checkout(client, auth, thread_id, buyer_id)
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_only_buyer_checks_out(self, client, auth, ready_deal, seller_id):
        thread_id = await ready_deal()
        response = await checkout(client, auth, thread_id, seller_id)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_amount_must_be_positive(self, client, auth, ready_deal, buyer_id):
        thread_id = await ready_deal()
        response = await checkout(client, auth, thread_id, buyer_id, amount=0)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_closed_deal_refuses_checkout(self, client, auth, ready_deal, buyer_id):
        thread_id = await ready_deal()
        await client.post(f"/threads/{thread_id}/close", json={"outcome": "canceled"}, headers=auth(buyer_id))
        response = await checkout(client, auth, thread_id, buyer_id)
        assert response.status_code == 409
        assert response.json()["code"] == "deal_closed"


class TestProcessorFailures:
    """A failed processor call leaves no intent behind"""

    @pytest.mark.asyncio
    async def test_processor_error_frees_slot(self, client, auth, ready_deal, processor, buyer_id):
        thread_id = await ready_deal()
        processor.fail_with = ExternalDependencyError("Payment processor error: card network down")

        response = await checkout(client, auth, thread_id, buyer_id)
        assert response.status_code == 502
        assert response.json()["code"] == "external_dependency_error"
        assert (await client.get(f"/threads/{thread_id}/payments", headers=auth(buyer_id))).json() == []

        processor.fail_with = None
        assert (await checkout(client, auth, thread_id, buyer_id)).status_code == 201

    @pytest.mark.asyncio
    async def test_processor_timeout(self, client, auth, ready_deal, processor, buyer_id):
        thread_id = await ready_deal()
        processor.fail_with = ProcessorTimeout()

        response = await checkout(client, auth, thread_id, buyer_id)
        assert response.status_code == 504
        assert (await client.get(f"/threads/{thread_id}/payments", headers=auth(buyer_id))).json() == []


class TestCancelCheckout:
    """The buyer can release a pending checkout"""

    @pytest.mark.asyncio
    async def test_cancel_releases_slot(self, client, auth, ready_deal, processor, buyer_id, seller_id):
        thread_id = await ready_deal()
        intent_id = (await checkout(client, auth, thread_id, buyer_id)).json()["intent_id"]

        response = await client.post(f"/payments/{intent_id}/cancel", headers=auth(seller_id))
        assert response.status_code == 403

        response = await client.post(f"/payments/{intent_id}/cancel", headers=auth(buyer_id))
        assert response.status_code == 200
        assert response.json()["status"] == "canceled"
        assert processor.canceled == ["pi_test_1"]

        again = await client.post(f"/payments/{intent_id}/cancel", headers=auth(buyer_id))
        assert again.status_code == 200
        assert processor.canceled == ["pi_test_1"]
        assert (await system_events(client, auth, thread_id, buyer_id)).count("payment_canceled") == 1

        assert (await checkout(client, auth, thread_id, buyer_id)).status_code == 201

    @pytest.mark.asyncio
    async def test_cannot_cancel_succeeded_payment(self, client, auth, ready_deal, send_webhook, buyer_id):
        thread_id = await ready_deal()
        intent_id = (await checkout(client, auth, thread_id, buyer_id)).json()["intent_id"]
        await send_webhook("payment_intent.succeeded", "pi_test_1", amount=5000000)

        response = await client.post(f"/payments/{intent_id}/cancel", headers=auth(buyer_id))
        assert response.status_code == 409
        assert response.json()["code"] == "already_terminal"


class TestWebhook:
    """Processor callbacks are verified and applied at most once"""

    @pytest.mark.asyncio
    async def test_redelivery_is_a_no_op(self, client, auth, ready_deal, send_webhook, buyer_id):
        thread_id = await ready_deal()
        await checkout(client, auth, thread_id, buyer_id)

        for _ in range(3):
            response = await send_webhook("payment_intent.succeeded", "pi_test_1", amount=5000000)
            assert response.status_code == 200

        assert (await system_events(client, auth, thread_id, buyer_id)).count("payment_succeeded") == 1

    @pytest.mark.asyncio
    async def test_processing_then_failed(self, client, auth, ready_deal, send_webhook, buyer_id):
        thread_id = await ready_deal()
        await checkout(client, auth, thread_id, buyer_id)

        await send_webhook("payment_intent.processing", "pi_test_1")
        payments = (await client.get(f"/threads/{thread_id}/payments", headers=auth(buyer_id))).json()
        assert payments[0]["status"] == "processing"
        assert (await checkout(client, auth, thread_id, buyer_id)).status_code == 409

        await send_webhook(
            "payment_intent.payment_failed", "pi_test_1", last_payment_error={"message": "Card declined"}
        )
        payments = (await client.get(f"/threads/{thread_id}/payments", headers=auth(buyer_id))).json()
        assert payments[0]["status"] == "failed"
        assert payments[0]["failure_reason"] == "Card declined"
        assert "payment_failed" in await system_events(client, auth, thread_id, buyer_id)

        detail = (await client.get(f"/threads/{thread_id}", headers=auth(buyer_id))).json()
        assert detail["deal_state"] == "contract_signed"

    @pytest.mark.asyncio
    async def test_processor_expiry_releases_slot(self, client, auth, ready_deal, send_webhook, buyer_id):
        thread_id = await ready_deal()
        await checkout(client, auth, thread_id, buyer_id)

        await send_webhook("payment_intent.canceled", "pi_test_1", cancellation_reason="abandoned")
        payments = (await client.get(f"/threads/{thread_id}/payments", headers=auth(buyer_id))).json()
        assert payments[0]["status"] == "canceled"
        assert payments[0]["failure_reason"] == "abandoned"
        assert (await system_events(client, auth, thread_id, buyer_id)).count("payment_canceled") == 1

        assert (await checkout(client, auth, thread_id, buyer_id)).status_code == 201

    @pytest.mark.asyncio
    async def test_amount_mismatch_acknowledged_and_recorded(self, client, auth, ready_deal, send_webhook, buyer_id):
        """A mismatched completion is not applied, but is acknowledged so it is not redelivered."""
        thread_id = await ready_deal()
        await checkout(client, auth, thread_id, buyer_id)

        response = await send_webhook("payment_intent.succeeded", "pi_test_1", amount=1)
        assert response.status_code == 200

        payments = (await client.get(f"/threads/{thread_id}/payments", headers=auth(buyer_id))).json()
        assert payments[0]["status"] == "created"
        assert payments[0]["failure_reason"] == "amount_mismatch: received 1"
        assert "payment_succeeded" not in await system_events(client, auth, thread_id, buyer_id)
        assert (await checkout(client, auth, thread_id, buyer_id)).status_code == 409

    @pytest.mark.asyncio
    async def test_bad_signature_rejected(self, client, auth, ready_deal, send_webhook, buyer_id):
        thread_id = await ready_deal()
        await checkout(client, auth, thread_id, buyer_id)

        response = await send_webhook(
            "payment_intent.succeeded", "pi_test_1", amount=5000000, signature="t=1700000000,v1=deadbeef"
        )
        assert response.status_code == 400
        assert response.json()["code"] == "webhook_verification_failed"

        payments = (await client.get(f"/threads/{thread_id}/payments", headers=auth(buyer_id))).json()
        assert payments[0]["status"] == "created"

    @pytest.mark.asyncio
    async def test_unknown_reference_and_event_acknowledged(self, send_webhook):
        assert (await send_webhook("payment_intent.succeeded", "pi_unknown", amount=10)).status_code == 200
        assert (await send_webhook("customer.created", "cus_123")).status_code == 200

    @pytest.mark.asyncio
    async def test_failed_notice_leaves_intent_unresolved(
        self, client, auth, ready_deal, send_webhook, monkeypatch, buyer_id
    ):
        """The status change is undone when its thread message cannot be written."""
        thread_id = await ready_deal()
        await checkout(client, auth, thread_id, buyer_id)

        async def failing_append(*args, **kwargs):
            raise IntegrityViolation("Message log unavailable")

        monkeypatch.setattr(message_log, "append_system_message", failing_append)
        response = await send_webhook("payment_intent.succeeded", "pi_test_1", amount=5000000)
        assert response.status_code == 500
        monkeypatch.undo()

        payments = (await client.get(f"/threads/{thread_id}/payments", headers=auth(buyer_id))).json()
        assert payments[0]["status"] == "created"
        assert "payment_succeeded" not in await system_events(client, auth, thread_id, buyer_id)

        assert (await send_webhook("payment_intent.succeeded", "pi_test_1", amount=5000000)).status_code == 200
        payments = (await client.get(f"/threads/{thread_id}/payments", headers=auth(buyer_id))).json()
        assert payments[0]["status"] == "succeeded"
        assert (await system_events(client, auth, thread_id, buyer_id)).count("payment_succeeded") == 1
