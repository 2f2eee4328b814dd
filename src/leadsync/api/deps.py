"""FastAPI dependency injection for org context and application services.

Org and user resolution happen upstream of this service; callers pass
them through the X-Org-ID and X-User-ID headers. Long-lived services are
built once in the lifespan (see main.lifespan) and read from app.state.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import Header, HTTPException, Request, status

from src.leadsync.core.tasks import BackgroundTaskRunner
from src.leadsync.enrichment.worker import EnrichmentWorker
from src.leadsync.integrations.crm.connections import CrmConnectionService
from src.leadsync.integrations.crm.sync import SyncOrchestrator
from src.leadsync.leads.repository import LeadRepository


def is_uuid(value: str) -> bool:
    """Return True if value parses as a UUID."""
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


async def get_org_id(x_org_id: str | None = Header(default=None)) -> str:
    """Org the request acts on; 400 when the header is missing or malformed."""
    if not x_org_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Org-ID header is required",
        )
    if not is_uuid(x_org_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Org-ID header must be a UUID",
        )
    return x_org_id


def _from_state(request: Request, name: str, label: str) -> Any:
    """Retrieve a service from app.state, 503 if not available."""
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return value


def get_connection_service(request: Request) -> CrmConnectionService:
    return _from_state(request, "connection_service", "CRM connection service")


def get_sync_orchestrator(request: Request) -> SyncOrchestrator:
    return _from_state(request, "sync_orchestrator", "Sync orchestrator")


def get_lead_repository(request: Request) -> LeadRepository:
    return _from_state(request, "lead_repository", "Lead repository")


def get_enrichment_worker(request: Request) -> EnrichmentWorker:
    return _from_state(request, "enrichment_worker", "Enrichment worker")


def get_task_runner(request: Request) -> BackgroundTaskRunner:
    return _from_state(request, "task_runner", "Task runner")
