"""Enrichment endpoints: synchronous re-enrichment and import batches."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from src.leadsync.api.deps import (
    get_enrichment_worker,
    get_lead_repository,
    is_uuid,
    get_org_id,
    get_task_runner,
)
from src.leadsync.core.tasks import BackgroundTaskRunner
from src.leadsync.enrichment.worker import EnrichmentWorker
from src.leadsync.leads.repository import LeadRepository
from src.leadsync.leads.schemas import EnrichmentResult

router = APIRouter(prefix="/api/v1/enrichment", tags=["enrichment"])
workers_router = APIRouter(prefix="/api/v1/workers", tags=["workers"])


class EnrichImportRequest(BaseModel):
    import_id: str


class EnrichImportResponse(BaseModel):
    import_id: str
    status: str = "accepted"


@router.post("/leads/{lead_id}", response_model=EnrichmentResult)
async def enrich_lead(
    lead_id: str,
    org_id: str = Depends(get_org_id),
    leads: LeadRepository = Depends(get_lead_repository),
    worker: EnrichmentWorker = Depends(get_enrichment_worker),
) -> EnrichmentResult:
    """Re-enrich one lead and wait for the outcome."""
    lead = await leads.get_lead(lead_id) if is_uuid(lead_id) else None
    if lead is None or lead.org_id != org_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Lead not found: {lead_id}",
        )
    return await worker.enrich_one(lead.id, lead.cnpj)


@workers_router.post(
    "/enrich-leads",
    response_model=EnrichImportResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def enrich_import(
    body: EnrichImportRequest,
    org_id: str = Depends(get_org_id),
    worker: EnrichmentWorker = Depends(get_enrichment_worker),
    runner: BackgroundTaskRunner = Depends(get_task_runner),
) -> EnrichImportResponse:
    """Queue enrichment of an import's pending leads.

    Batches chain themselves on the task runner until the import has no
    pending leads left.
    """
    if not is_uuid(body.import_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="import_id must be a UUID",
        )
    runner.submit(f"enrich-import:{body.import_id}", worker.process_import(org_id, body.import_id))
    return EnrichImportResponse(import_id=body.import_id)
