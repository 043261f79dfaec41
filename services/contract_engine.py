"""
Lifecycle of contract documents embedded in a thread.

    pending -> signed     (every required signer has signed)
    pending -> rejected   (any participant rejects)

Both outcomes are terminal; a correction is a new document. Proposal and
its contract_ref message, and the final signature with its system message
(and the NDA ledger entry for NDAs), are written in one savepoint so neither
half can exist alone.
"""
import logging
import uuid
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import Config
from models import Thread, ContractDocument, ContractSignature, DocumentType, DocumentStatus
from models.base import utcnow
from services import message_log, nda_ledger
from services.errors import (
    InvalidParticipant, NotAParty, NotFound, AlreadyTerminal, NotARequiredSigner, ValidationError,
    IntegrityViolation,
)

logger = logging.getLogger(__name__)

MAX_BODY_LENGTH = 20000
MAX_SIGNATURE_LENGTH = 200

DOCUMENT_LABELS = {
    DocumentType.NDA: "NDA",
    DocumentType.TRANSFER: "Transfer agreement",
    DocumentType.TERMS: "Terms",
}


def required_signers(thread: Thread, doc_type: DocumentType) -> List[uuid.UUID]:
    # An NDA binds the party receiving confidential details, never the seller disclosing them.
    if doc_type == DocumentType.NDA:
        return [thread.buyer_id]
    return [thread.buyer_id, thread.seller_id]


def signature_state(document: ContractDocument) -> str:
    if document.status == DocumentStatus.SIGNED:
        return "signed"
    if document.status == DocumentStatus.REJECTED:
        return "rejected"
    signed = [s for s in document.signatures if s.signed_at is not None]
    if signed:
        return "awaiting_counter_signature"
    return "awaiting_signatures"


def document_url(document: ContractDocument) -> str:
    return f"{Config.CONTRACT_DOCUMENT_BASE_URL.rstrip('/')}/{document.id}"


async def _find_by_token(db: AsyncSession, thread_id, client_token) -> Optional[ContractDocument]:
    result = await db.execute(
        select(ContractDocument).where(
            ContractDocument.thread_id == thread_id, ContractDocument.client_token == client_token
        )
    )
    return result.scalars().first()


def _reuse(existing: ContractDocument, proposer_id: uuid.UUID) -> ContractDocument:
    if existing.proposer_id != proposer_id:
        raise ValidationError("client_token already used in this thread")
    return existing


async def list_documents(db: AsyncSession, thread: Thread) -> List[ContractDocument]:
    result = await db.execute(
        select(ContractDocument)
        .where(ContractDocument.thread_id == thread.id)
        .order_by(ContractDocument.created_at.asc())
    )
    return list(result.scalars().all())


async def load_document_for(db: AsyncSession, document_id: uuid.UUID, user_id: uuid.UUID, for_update=False):
    """Returns (document, thread); non-participants get not-found semantics."""
    stmt = select(ContractDocument).where(ContractDocument.id == document_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    document = result.scalars().first()
    if document is None:
        raise NotFound("Document not found")

    thread = await db.get(Thread, document.thread_id)
    if thread is None or not thread.is_participant(user_id):
        logger.warning(f"User {user_id} is not a party to document {document_id}")
        raise NotAParty()
    return document, thread


async def propose_document(
    db: AsyncSession,
    thread: Thread,
    proposer_id: uuid.UUID,
    doc_type: DocumentType,
    body_text: str,
    client_token: Optional[str] = None,
):
    """Create a pending document and its contract_ref message. Returns (document, created)."""
    if not thread.is_participant(proposer_id):
        raise InvalidParticipant()

    body_text = (body_text or "").strip()
    if not body_text:
        raise ValidationError("Document body must not be empty")
    if len(body_text) > MAX_BODY_LENGTH:
        raise ValidationError(f"Document body exceeds {MAX_BODY_LENGTH} characters")

    if client_token is not None:
        existing = await _find_by_token(db, thread.id, client_token)
        if existing is not None:
            return _reuse(existing, proposer_id), False

    document = ContractDocument(
        thread_id=thread.id,
        type=doc_type,
        status=DocumentStatus.PENDING,
        proposer_id=proposer_id,
        body_text=body_text,
        client_token=client_token,
        signatures=[
            ContractSignature(party_id=p, signed_at=None, signature_text=None)
            for p in required_signers(thread, doc_type)
        ],
    )
    try:
        async with db.begin_nested():
            db.add(document)
            await db.flush()
            message = await message_log.append_contract_ref(db, thread, proposer_id, document.id)
    except IntegrityError:
        if client_token is not None:
            existing = await _find_by_token(db, thread.id, client_token)
            if existing is not None:
                return _reuse(existing, proposer_id), False
        raise IntegrityViolation("Document proposal could not be paired with its message")

    if message.contract_id != document.id:
        raise IntegrityViolation("Document proposal could not be paired with its message")

    logger.info(
        f"{DOCUMENT_LABELS[doc_type]} {document.id} proposed by {proposer_id} in thread {thread.id}"
    )
    return document, True


async def submit_signature(
    db: AsyncSession,
    document: ContractDocument,
    thread: Thread,
    signer_id: uuid.UUID,
    signature_text: str,
) -> ContractDocument:
    if not thread.is_participant(signer_id):
        raise NotAParty()
    if document.is_terminal:
        raise AlreadyTerminal(f"Document is already {document.status.value}")

    signature = next((s for s in document.signatures if s.party_id == signer_id), None)
    if signature is None:
        raise NotARequiredSigner()
    if signature.signed_at is not None:
        # Client retry of a signature already on record.
        return document

    signature_text = (signature_text or "").strip()
    if not signature_text:
        raise ValidationError("Signature must not be empty")
    if len(signature_text) > MAX_SIGNATURE_LENGTH:
        raise ValidationError(f"Signature exceeds {MAX_SIGNATURE_LENGTH} characters")

    now = utcnow()
    async with db.begin_nested():
        signature.signed_at = now
        signature.signature_text = signature_text

        if not document.missing_party_ids:
            document.status = DocumentStatus.SIGNED
            document.resolved_at = now
            if document.type == DocumentType.NDA and thread.listing_id is not None:
                await nda_ledger.record_acceptance(
                    db,
                    user_id=thread.buyer_id,
                    listing_id=thread.listing_id,
                    document_url=document_url(document),
                    document_id=document.id,
                )
            await message_log.append_system_message(
                db, thread, f"{document.type.value}_signed", f"{DOCUMENT_LABELS[document.type]} signed"
            )
        await db.flush()

    if document.status == DocumentStatus.SIGNED:
        logger.info(f"Document {document.id} fully signed in thread {thread.id}")
    else:
        logger.info(f"Document {document.id} signed by {signer_id}, awaiting counter-signature")
    return document


async def reject(
    db: AsyncSession,
    document: ContractDocument,
    thread: Thread,
    rejecter_id: uuid.UUID,
    reason: Optional[str] = None,
) -> ContractDocument:
    """Terminal; partial signatures stay recorded but carry no further effect."""
    if not thread.is_participant(rejecter_id):
        raise NotAParty()
    if document.is_terminal:
        raise AlreadyTerminal(f"Document is already {document.status.value}")

    async with db.begin_nested():
        document.status = DocumentStatus.REJECTED
        document.rejected_by = rejecter_id
        document.rejection_reason = (reason or "").strip() or None
        document.resolved_at = utcnow()
        await message_log.append_system_message(
            db, thread, f"{document.type.value}_rejected", f"{DOCUMENT_LABELS[document.type]} rejected"
        )
        await db.flush()

    logger.info(f"Document {document.id} rejected by {rejecter_id} in thread {thread.id}")
    return document
