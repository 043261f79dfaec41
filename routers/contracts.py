import uuid
from typing import List

from fastapi import APIRouter, Depends, Response, status

from models import DocumentType
from schemas.contract import (
    DocumentCreate, DocumentResponse, SignatureRequest, RejectRequest, document_to_response,
)
from services.orchestrator import WorkflowOrchestrator
from utils.auth import Principal, get_current_principal
from utils.deps import get_orchestrator

router = APIRouter()


@router.post("/threads/{thread_id}/contracts", response_model=DocumentResponse)
async def propose_document(
    thread_id: uuid.UUID,
    data: DocumentCreate,
    response: Response,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """Propose an NDA, transfer agreement or terms inside the thread."""
    document, created = await workflow.propose_document(
        principal, thread_id, DocumentType(data.type), data.body_text, data.client_token
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return document_to_response(document, created)


@router.get("/threads/{thread_id}/contracts", response_model=List[DocumentResponse])
async def list_documents(
    thread_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    documents = await workflow.list_documents(principal, thread_id)
    return [document_to_response(d) for d in documents]


@router.get("/contracts/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    document = await workflow.get_document(principal, document_id)
    return document_to_response(document)


@router.post("/contracts/{document_id}/sign", response_model=DocumentResponse)
async def submit_signature(
    document_id: uuid.UUID,
    data: SignatureRequest,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    document = await workflow.submit_signature(principal, document_id, data.signature_text)
    return document_to_response(document)


@router.post("/contracts/{document_id}/reject", response_model=DocumentResponse)
async def reject_document(
    document_id: uuid.UUID,
    data: RejectRequest,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    document = await workflow.reject_document(principal, document_id, data.reason)
    return document_to_response(document)
