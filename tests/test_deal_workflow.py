"""
End-to-end deal workflow: NDA, transfer agreement, checkout and completion
"""

import pytest


class TestNdaSignedInThread:
    """Buyer and seller negotiate on a listing and close out the NDA in the thread"""

    @pytest.mark.asyncio
    async def test_nda_signature_records_acceptance_and_system_message(
        self, client, auth, make_listing, open_thread, buyer_id, seller_id
    ):
        listing_id = await make_listing(seller_id, requires_nda=True)
        thread_id = await open_thread(buyer_id, seller_id, listing_id)

        response = await client.post(
            f"/threads/{thread_id}/messages",
            json={"content": {"kind": "text", "text": "interested"}},
            headers=auth(buyer_id),
        )
        assert response.status_code == 201
        assert response.json()["seq"] == 1

        response = await client.post(
            f"/threads/{thread_id}/contracts",
            json={"type": "nda", "body_text": "The buyer keeps all listing details confidential."},
            headers=auth(seller_id),
        )
        assert response.status_code == 201
        document = response.json()
        assert document["status"] == "pending"
        assert document["awaiting_party_ids"] == [str(buyer_id)]

        response = await client.post(
            f"/contracts/{document['id']}/sign",
            json={"signature_text": "Taro Buyer"},
            headers=auth(buyer_id),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "signed"
        assert response.json()["signature_state"] == "signed"

        response = await client.get(f"/listings/{listing_id}/nda", headers=auth(buyer_id))
        status = response.json()
        assert status["accepted"] is True
        assert status["acceptance"]["document_id"] == document["id"]
        assert status["acceptance"]["document_url"].endswith(document["id"])

        response = await client.get(f"/threads/{thread_id}/messages?order=asc", headers=auth(seller_id))
        messages = response.json()["messages"]
        assert [m["seq"] for m in messages] == [1, 2, 3]
        assert messages[0]["content"] == {"kind": "text", "text": "interested"}
        assert messages[1]["content"] == {"kind": "contract_ref", "document_id": document["id"]}
        assert messages[2]["is_system"] is True
        assert messages[2]["sender_id"] is None
        assert messages[2]["content"]["text"] == "NDA signed"

        response = await client.get(f"/threads/{thread_id}", headers=auth(buyer_id))
        assert response.json()["deal_state"] == "nda_signed"


class TestCheckoutPreconditions:
    """Checkout is refused until the transfer agreement is signed"""

    @pytest.mark.asyncio
    async def test_pending_transfer_blocks_checkout(
        self, client, auth, make_listing, open_thread, processor, buyer_id, seller_id
    ):
        listing_id = await make_listing(seller_id)
        thread_id = await open_thread(buyer_id, seller_id, listing_id)
        response = await client.post(
            f"/threads/{thread_id}/contracts",
            json={"type": "transfer", "body_text": "Transfer of all app assets."},
            headers=auth(seller_id),
        )
        assert response.status_code == 201

        response = await client.post(
            f"/threads/{thread_id}/checkout", json={"amount": 5000000}, headers=auth(buyer_id)
        )
        assert response.status_code == 409
        assert response.json()["code"] == "contract_not_signed"

        response = await client.get(f"/threads/{thread_id}/payments", headers=auth(buyer_id))
        assert response.json() == []
        assert processor.created == []

    @pytest.mark.asyncio
    async def test_transfer_requirement_can_be_disabled(
        self, client, auth, make_listing, open_thread, monkeypatch, buyer_id, seller_id
    ):
        from config import Config

        monkeypatch.setattr(Config, "REQUIRE_TRANSFER_AGREEMENT", False)
        listing_id = await make_listing(seller_id)
        thread_id = await open_thread(buyer_id, seller_id, listing_id)

        response = await client.post(
            f"/threads/{thread_id}/checkout", json={"amount": 100000}, headers=auth(buyer_id)
        )
        assert response.status_code == 201


class TestRejectedDocument:
    """A rejected document is final"""

    @pytest.mark.asyncio
    async def test_signing_rejected_document_fails(
        self, client, auth, make_listing, open_thread, buyer_id, seller_id
    ):
        listing_id = await make_listing(seller_id)
        thread_id = await open_thread(buyer_id, seller_id, listing_id)
        response = await client.post(
            f"/threads/{thread_id}/contracts",
            json={"type": "transfer", "body_text": "Transfer of all app assets."},
            headers=auth(seller_id),
        )
        document_id = response.json()["id"]

        response = await client.post(
            f"/contracts/{document_id}/reject", json={"reason": "Price too high"}, headers=auth(buyer_id)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "rejected"

        response = await client.post(
            f"/contracts/{document_id}/sign", json={"signature_text": "Hanako Seller"}, headers=auth(seller_id)
        )
        assert response.status_code == 409
        assert response.json()["code"] == "already_terminal"

        document = (await client.get(f"/contracts/{document_id}", headers=auth(seller_id))).json()
        assert document["status"] == "rejected"
        assert document["rejected_by"] == str(buyer_id)
        assert document["rejection_reason"] == "Price too high"
        assert all(s["signed_at"] is None for s in document["signatures"])


class TestPaymentCompletion:
    """A succeeded payment completes the deal and releases the active slot"""

    @pytest.mark.asyncio
    async def test_completion_then_new_checkout_allowed(
        self, client, auth, make_listing, open_thread, signed_transfer, send_webhook, processor, buyer_id, seller_id
    ):
        listing_id = await make_listing(seller_id)
        thread_id = await open_thread(buyer_id, seller_id, listing_id)
        await signed_transfer(thread_id, buyer_id, seller_id)

        response = await client.post(
            f"/threads/{thread_id}/checkout", json={"amount": 5000000}, headers=auth(buyer_id)
        )
        assert response.status_code == 201
        checkout = response.json()
        assert checkout["client_secret"] == "pi_test_1_secret_test"
        assert checkout["payment"]["status"] == "created"
        assert checkout["payment"]["amount"] == 5000000
        assert checkout["payment"]["fee"] == 500000
        assert checkout["payment"]["seller_payout"] == 4500000
        assert processor.created[0]["amount"] == 5000000
        assert processor.created[0]["currency"] == "jpy"
        assert processor.created[0]["idempotency_key"] == f"payment_intent_{checkout['intent_id']}"
        assert processor.created[0]["metadata"]["thread_id"] == thread_id

        detail = (await client.get(f"/threads/{thread_id}", headers=auth(seller_id))).json()
        assert detail["deal_state"] == "payment_pending"

        response = await send_webhook("payment_intent.succeeded", "pi_test_1", amount=5000000)
        assert response.status_code == 200

        payments = (await client.get(f"/threads/{thread_id}/payments", headers=auth(buyer_id))).json()
        assert payments[0]["status"] == "succeeded"
        assert payments[0]["completed_at"] is not None

        messages = (await client.get(f"/threads/{thread_id}/messages", headers=auth(buyer_id))).json()["messages"]
        assert messages[0]["content"] == {"kind": "system", "event": "payment_succeeded", "text": "Payment completed"}

        detail = (await client.get(f"/threads/{thread_id}", headers=auth(seller_id))).json()
        assert detail["deal_state"] == "completed"

        response = await client.post(
            f"/threads/{thread_id}/checkout", json={"amount": 5000000}, headers=auth(buyer_id)
        )
        assert response.status_code == 201
        assert response.json()["intent_id"] != checkout["intent_id"]
        assert response.json()["payment"]["external_reference"] == "pi_test_2"
