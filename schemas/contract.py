import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from models.contracts import ContractDocument
from services.contract_engine import signature_state


class DocumentCreate(BaseModel):
    type: Literal["nda", "transfer", "terms"]
    body_text: str
    client_token: Optional[str] = Field(default=None, max_length=64)


class SignatureRequest(BaseModel):
    signature_text: str


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=2000)


class SignatureResponse(BaseModel):
    party_id: uuid.UUID
    signed_at: Optional[datetime]
    signature_text: Optional[str]

    class Config:
        from_attributes = True


class DocumentResponse(BaseModel):
    id: uuid.UUID
    thread_id: uuid.UUID
    type: str
    status: str
    signature_state: str
    proposer_id: uuid.UUID
    body_text: str
    client_token: Optional[str]
    signatures: List[SignatureResponse]
    awaiting_party_ids: List[uuid.UUID]
    rejected_by: Optional[uuid.UUID]
    rejection_reason: Optional[str]
    created_at: datetime
    resolved_at: Optional[datetime]
    created: Optional[bool] = None


def document_to_response(document: ContractDocument, created: Optional[bool] = None) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        thread_id=document.thread_id,
        type=document.type.value,
        status=document.status.value,
        signature_state=signature_state(document),
        proposer_id=document.proposer_id,
        body_text=document.body_text,
        client_token=document.client_token,
        signatures=[SignatureResponse.model_validate(s) for s in document.signatures],
        awaiting_party_ids=document.missing_party_ids if not document.is_terminal else [],
        rejected_by=document.rejected_by,
        rejection_reason=document.rejection_reason,
        created_at=document.created_at,
        resolved_at=document.resolved_at,
        created=created,
    )
