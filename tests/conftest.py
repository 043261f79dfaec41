"""
Shared fixtures for the deal room API tests.

Each test runs against its own file-backed SQLite database. Write
transactions are serialized with BEGIN IMMEDIATE so concurrency tests see
the same one-writer-wins outcome the row locks give on PostgreSQL.
"""
import asyncio
import hashlib
import hmac
import json
import logging
import os
import time
import uuid

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from database import get_db
from main import app
from models import Base, Listing, POSTGRESQL_SCHEMA
from utils.auth import token_for
from utils.payments import ProcessorIntent, StripeProcessor, get_payment_processor

logging.basicConfig(level=logging.INFO)

WEBHOOK_SECRET = "whsec_test_secret"


class FakeProcessor(StripeProcessor):
    """Stripe stand-in: outbound calls are recorded, webhook verification is the SDK's own."""

    def __init__(self):
        super().__init__(api_key="sk_test_dummy", webhook_secret=WEBHOOK_SECRET, timeout=1)
        self.created = []
        self.canceled = []
        self.fail_with = None

    async def create_intent(self, amount, currency, metadata, idempotency_key):
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        ref = f"pi_test_{len(self.created) + 1}"
        self.created.append(
            {
                "id": ref,
                "amount": amount,
                "currency": currency,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )
        return ProcessorIntent(id=ref, client_secret=f"{ref}_secret_test")

    async def cancel_intent(self, external_reference):
        self.canceled.append(external_reference)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'dealroom.db'}",
        execution_options={"schema_translate_map": {POSTGRESQL_SCHEMA: None}},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest_asyncio.fixture
async def client(session_factory, processor):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_processor] = lambda: processor
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def buyer_id():
    return uuid.uuid4()


@pytest.fixture
def seller_id():
    return uuid.uuid4()


@pytest.fixture
def auth():
    """auth(user_id, roles=()) -> request headers carrying a bearer token."""
    def _auth(user_id, roles=()):
        return {"Authorization": f"Bearer {token_for(user_id, roles)}"}
    return _auth


@pytest.fixture
def make_listing(session_factory):
    """Seed a listing row the way the listing service would; returns its id."""
    async def _make_listing(seller_id, **fields):
        values = {
            "title": "Recipe app with 40k MAU",
            "body": "Subscription revenue, stable growth.",
            "confidential_details": "Monthly revenue: 1,200,000 JPY",
            "price": 5000000,
            "is_secret": False,
            "requires_nda": False,
        }
        values.update(fields)
        async with session_factory() as session:
            listing = Listing(seller_id=seller_id, **values)
            session.add(listing)
            await session.commit()
            return listing.id
    return _make_listing


@pytest.fixture
def open_thread(client, auth):
    """Buyer opens (or re-opens) the thread with the seller; returns the thread id as a string."""
    async def _open_thread(buyer_id, seller_id, listing_id=None):
        body = {"counterpart_id": str(seller_id)}
        if listing_id is not None:
            body["listing_id"] = str(listing_id)
        response = await client.post("/threads", json=body, headers=auth(buyer_id))
        assert response.status_code in (200, 201), response.text
        return response.json()["id"]
    return _open_thread


@pytest.fixture
def signed_transfer(client, auth):
    """Propose a transfer agreement and have both parties sign it; returns the document id."""
    async def _signed_transfer(thread_id, buyer_id, seller_id):
        response = await client.post(
            f"/threads/{thread_id}/contracts",
            json={"type": "transfer", "body_text": "Transfer of all app assets for 5,000,000 JPY."},
            headers=auth(seller_id),
        )
        assert response.status_code == 201, response.text
        document_id = response.json()["id"]
        for party in (buyer_id, seller_id):
            response = await client.post(
                f"/contracts/{document_id}/sign",
                json={"signature_text": f"signed by {party}"},
                headers=auth(party),
            )
            assert response.status_code == 200, response.text
        assert response.json()["status"] == "signed"
        return document_id
    return _signed_transfer


def stripe_signature_header(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), msg=signed, digestmod=hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def send_webhook(client):
    """Deliver a processor event with a valid Stripe-Signature header."""
    async def _send_webhook(event_type, external_reference, amount=None, signature=None, **obj):
        data_object = {"id": external_reference, "object": "payment_intent", **obj}
        if amount is not None:
            data_object["amount"] = amount
            data_object["amount_received"] = amount
        payload = json.dumps(
            {"id": f"evt_{uuid.uuid4().hex}", "type": event_type, "data": {"object": data_object}}
        )
        return await client.post(
            "/payments/webhook",
            content=payload,
            headers={
                "Content-Type": "application/json",
                "Stripe-Signature": signature or stripe_signature_header(payload),
            },
        )
    return _send_webhook
