"""
Workflow orchestrator: one externally visible operation per method, each
one transaction.

Components flush; the orchestrator commits once at the end, or rolls back
and re-raises the component's error unchanged. Ordering preconditions of the
deal lifecycle are checked here before delegating.
"""
import enum
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config import Config
from models import (
    Thread, DealClosure, DocumentType, DocumentStatus, PaymentStatus, ParticipantRole,
)
from models.base import utcnow
from services import (
    thread_store, message_log, contract_engine, nda_ledger, listing_store, payment_bridge,
)
from services.errors import (
    ValidationError, NotMessageSender, ContractNotSigned, NdaNotSigned, DealClosed,
    AlreadyTerminal, StateConflictError, ActionNotPermitted,
)
from utils.auth import Principal
from utils.payments import PaymentProcessor, ProcessorEvent

logger = logging.getLogger(__name__)


class DealState(enum.Enum):
    NEGOTIATING = "negotiating"
    NDA_PENDING = "nda_pending"
    NDA_SIGNED = "nda_signed"
    CONTRACT_PENDING = "contract_pending"
    CONTRACT_SIGNED = "contract_signed"
    PAYMENT_PENDING = "payment_pending"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELED = "canceled"


@dataclass
class ThreadDetail:
    thread: Thread
    deal_state: DealState
    listing: Optional[dict]


class WorkflowOrchestrator:
    def __init__(self, db: AsyncSession, processor: Optional[PaymentProcessor] = None):
        self.db = db
        self.processor = processor

    @asynccontextmanager
    async def _transaction(self):
        try:
            yield
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    # --- Deal state ---

    async def _nda_satisfied(self, thread: Thread, documents) -> bool:
        if any(d.type == DocumentType.NDA and d.status == DocumentStatus.SIGNED for d in documents):
            return True
        if thread.listing_id is not None:
            return await nda_ledger.has_accepted(self.db, thread.buyer_id, thread.listing_id)
        return False

    async def deal_state(self, thread: Thread) -> DealState:
        if thread.closed_as == DealClosure.REJECTED:
            return DealState.REJECTED
        if thread.closed_as == DealClosure.CANCELED:
            return DealState.CANCELED

        intents = await payment_bridge.list_payments(self.db, thread)
        if any(i.status == PaymentStatus.SUCCEEDED for i in intents):
            return DealState.COMPLETED
        if any(i.is_active for i in intents):
            return DealState.PAYMENT_PENDING

        documents = await contract_engine.list_documents(self.db, thread)

        def has(doc_type, status):
            return any(d.type == doc_type and d.status == status for d in documents)

        if has(DocumentType.TRANSFER, DocumentStatus.SIGNED):
            return DealState.CONTRACT_SIGNED
        if has(DocumentType.TRANSFER, DocumentStatus.PENDING):
            return DealState.CONTRACT_PENDING
        if await self._nda_satisfied(thread, documents):
            return DealState.NDA_SIGNED
        if has(DocumentType.NDA, DocumentStatus.PENDING):
            return DealState.NDA_PENDING
        return DealState.NEGOTIATING

    def _ensure_open(self, thread: Thread):
        if thread.closed_as is not None:
            raise DealClosed(f"This deal was {thread.closed_as.value}")

    # --- Threads ---

    async def create_or_get_thread(
        self, principal: Principal, counterpart_id: uuid.UUID, listing_id: Optional[uuid.UUID] = None
    ):
        async with self._transaction():
            if counterpart_id == principal.user_id:
                raise ValidationError("Cannot open a thread with yourself")

            listing = None
            if listing_id is not None:
                listing = await listing_store.get_listing(self.db, listing_id)
                # Secret listings: no counterpart check until the caller has access.
                if listing.is_secret and principal.user_id != listing.seller_id:
                    visibility = await listing_store.get_listing_visibility(self.db, listing, principal.user_id)
                    if not visibility.has_access:
                        raise NdaNotSigned("Accept the listing's NDA before contacting its seller")
                if principal.user_id == listing.seller_id:
                    buyer_id, seller_id = counterpart_id, principal.user_id
                elif counterpart_id == listing.seller_id:
                    buyer_id, seller_id = principal.user_id, counterpart_id
                else:
                    raise ValidationError("One participant must be the listing's seller")
            elif principal.has_role(ParticipantRole.SELLER.value):
                buyer_id, seller_id = counterpart_id, principal.user_id
            else:
                buyer_id, seller_id = principal.user_id, counterpart_id

            thread, created = await thread_store.create_or_get_thread(self.db, buyer_id, seller_id, listing)
        return thread, created

    async def get_thread(self, principal: Principal, thread_id: uuid.UUID) -> ThreadDetail:
        thread = await thread_store.get_thread_for(self.db, thread_id, principal.user_id)
        listing = None
        if thread.listing is not None:
            visibility = await listing_store.get_listing_visibility(self.db, thread.listing, principal.user_id)
            listing = listing_store.redact(thread.listing, visibility)
        return ThreadDetail(thread=thread, deal_state=await self.deal_state(thread), listing=listing)

    async def list_threads(self, principal: Principal):
        return await thread_store.list_threads_for_user(self.db, principal.user_id)

    async def mark_read(self, principal: Principal, thread_id: uuid.UUID, upto_seq: int):
        async with self._transaction():
            thread = await thread_store.get_thread_for(self.db, thread_id, principal.user_id)
            participant = await thread_store.mark_read(self.db, thread, principal.user_id, upto_seq)
        return participant

    async def close_deal(self, principal: Principal, thread_id: uuid.UUID, outcome: DealClosure) -> Thread:
        async with self._transaction():
            thread = await thread_store.get_thread_for(self.db, thread_id, principal.user_id)
            if thread.closed_as == outcome:
                return thread
            self._ensure_open(thread)
            if outcome == DealClosure.CANCELED and principal.user_id != thread.buyer_id:
                raise ActionNotPermitted("Only the buyer can cancel the deal")

            state = await self.deal_state(thread)
            if state == DealState.COMPLETED:
                raise AlreadyTerminal("This deal is already completed")
            if state == DealState.PAYMENT_PENDING:
                raise StateConflictError("Cancel the pending payment before closing the deal")

            thread.closed_as = outcome
            thread.closed_at = utcnow()
            await self.db.flush()
            await message_log.append_system_message(
                self.db, thread, f"deal_{outcome.value}", f"Deal {outcome.value}"
            )
        logger.info(f"Thread {thread.id} closed as {outcome.value} by {principal.user_id}")
        return thread

    # --- Messages ---

    async def send_message(self, principal: Principal, thread_id: uuid.UUID, content, client_token: Optional[str] = None):
        async with self._transaction():
            thread = await thread_store.get_thread_for(self.db, thread_id, principal.user_id)
            message = await message_log.append_message(self.db, thread, principal.user_id, content, client_token)
        return message

    async def list_messages(
        self,
        principal: Principal,
        thread_id: uuid.UUID,
        limit: int = 50,
        before_seq: Optional[int] = None,
        after_seq: Optional[int] = None,
        order: str = "desc",
    ):
        thread = await thread_store.get_thread_for(self.db, thread_id, principal.user_id)
        return await message_log.list_messages(self.db, thread, limit, before_seq, after_seq, order)

    async def delete_message(self, principal: Principal, message_id: uuid.UUID):
        async with self._transaction():
            message = await message_log.get_message(self.db, message_id)
            if message is None:
                raise NotMessageSender()
            # Non-participants see the same answer as for a missing message.
            thread = await thread_store.get_thread_for(self.db, message.thread_id, principal.user_id)
            message = await message_log.soft_delete(self.db, thread, message, principal.user_id)
        return message

    # --- Contract documents ---

    async def propose_document(
        self,
        principal: Principal,
        thread_id: uuid.UUID,
        doc_type: DocumentType,
        body_text: str,
        client_token: Optional[str] = None,
    ):
        async with self._transaction():
            thread = await thread_store.get_thread_for(self.db, thread_id, principal.user_id)
            self._ensure_open(thread)
            if doc_type == DocumentType.TRANSFER and thread.listing is not None and thread.listing.requires_nda:
                documents = await contract_engine.list_documents(self.db, thread)
                if not await self._nda_satisfied(thread, documents):
                    raise NdaNotSigned("The NDA must be signed before proposing the transfer agreement")
            document, created = await contract_engine.propose_document(
                self.db, thread, principal.user_id, doc_type, body_text, client_token
            )
        return document, created

    async def get_document(self, principal: Principal, document_id: uuid.UUID):
        document, _ = await contract_engine.load_document_for(self.db, document_id, principal.user_id)
        return document

    async def list_documents(self, principal: Principal, thread_id: uuid.UUID):
        thread = await thread_store.get_thread_for(self.db, thread_id, principal.user_id)
        return await contract_engine.list_documents(self.db, thread)

    async def submit_signature(self, principal: Principal, document_id: uuid.UUID, signature_text: str):
        async with self._transaction():
            document, thread = await contract_engine.load_document_for(
                self.db, document_id, principal.user_id, for_update=True
            )
            self._ensure_open(thread)
            document = await contract_engine.submit_signature(
                self.db, document, thread, principal.user_id, signature_text
            )
        return document

    async def reject_document(self, principal: Principal, document_id: uuid.UUID, reason: Optional[str] = None):
        async with self._transaction():
            document, thread = await contract_engine.load_document_for(
                self.db, document_id, principal.user_id, for_update=True
            )
            document = await contract_engine.reject(self.db, document, thread, principal.user_id, reason)
        return document

    # --- Listings & NDA ledger ---

    async def get_listing(self, principal: Principal, listing_id: uuid.UUID) -> dict:
        listing = await listing_store.get_listing(self.db, listing_id)
        visibility = await listing_store.get_listing_visibility(self.db, listing, principal.user_id)
        return listing_store.redact(listing, visibility)

    async def accept_nda(self, principal: Principal, listing_id: uuid.UUID, document_url: Optional[str] = None):
        async with self._transaction():
            listing = await listing_store.get_listing(self.db, listing_id)
            if listing.seller_id == principal.user_id:
                raise ValidationError("Sellers do not sign NDAs for their own listings")
            acceptance, created = await nda_ledger.record_acceptance(
                self.db, principal.user_id, listing.id, document_url=document_url
            )
        return acceptance, created

    async def nda_status(self, principal: Principal, listing_id: uuid.UUID):
        listing = await listing_store.get_listing(self.db, listing_id)
        return await nda_ledger.get_acceptance(self.db, principal.user_id, listing.id)

    # --- Payments ---

    async def initiate_checkout(self, principal: Principal, thread_id: uuid.UUID, amount: int):
        async with self._transaction():
            thread = await thread_store.get_thread_for(self.db, thread_id, principal.user_id)
            if principal.user_id != thread.buyer_id:
                raise ActionNotPermitted("Only the buyer can start checkout")
            self._ensure_open(thread)

            if Config.REQUIRE_TRANSFER_AGREEMENT:
                documents = await contract_engine.list_documents(self.db, thread)
                if not any(
                    d.type == DocumentType.TRANSFER and d.status == DocumentStatus.SIGNED for d in documents
                ):
                    raise ContractNotSigned()

            intent, client_secret = await payment_bridge.initiate_checkout(
                self.db, self.processor, thread, principal.user_id, amount
            )
        return intent, client_secret

    async def cancel_checkout(self, principal: Principal, intent_id: uuid.UUID):
        async with self._transaction():
            intent = await payment_bridge.get_intent(self.db, intent_id)
            thread = await thread_store.get_thread_for(self.db, intent.thread_id, principal.user_id)
            if principal.user_id != thread.buyer_id:
                raise ActionNotPermitted("Only the buyer can cancel checkout")
            intent = await payment_bridge.cancel_checkout(self.db, self.processor, intent)
        return intent

    async def list_payments(self, principal: Principal, thread_id: uuid.UUID):
        thread = await thread_store.get_thread_for(self.db, thread_id, principal.user_id)
        return await payment_bridge.list_payments(self.db, thread)

    async def handle_completion(self, event: ProcessorEvent):
        """Processor callbacks bypass the identity gate; the caller has verified the signature."""
        async with self._transaction():
            intent = await payment_bridge.handle_completion(self.db, event)
        return intent

    async def handle_processor_webhook(self, payload: bytes, signature: str):
        event = self.processor.parse_event(payload, signature)
        return await self.handle_completion(event)
