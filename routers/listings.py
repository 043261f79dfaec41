import uuid

from fastapi import APIRouter, Depends, Response, status

from schemas.listing import ListingResponse, NDAAcceptRequest, NDAAcceptanceResponse, NDAStatusResponse
from services.orchestrator import WorkflowOrchestrator
from utils.auth import Principal, get_current_principal
from utils.deps import get_orchestrator

router = APIRouter()


@router.get("/{listing_id}", response_model=ListingResponse)
async def get_listing(
    listing_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """Listing details; restricted fields stay hidden until the caller has accepted the NDA."""
    return ListingResponse(**await workflow.get_listing(principal, listing_id))


@router.post("/{listing_id}/nda", response_model=NDAAcceptanceResponse)
async def accept_nda(
    listing_id: uuid.UUID,
    data: NDAAcceptRequest,
    response: Response,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    acceptance, created = await workflow.accept_nda(principal, listing_id, data.document_url)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return acceptance


@router.get("/{listing_id}/nda", response_model=NDAStatusResponse)
async def nda_status(
    listing_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    workflow: WorkflowOrchestrator = Depends(get_orchestrator),
):
    acceptance = await workflow.nda_status(principal, listing_id)
    return NDAStatusResponse(
        listing_id=listing_id,
        accepted=acceptance is not None,
        acceptance=NDAAcceptanceResponse.model_validate(acceptance) if acceptance is not None else None,
    )
