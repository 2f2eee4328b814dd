"""REST API endpoints for CRM connections and sync triggers.

Thin wrappers over CrmConnectionService and SyncOrchestrator. CRM errors
are translated to HTTP status codes by _to_http_exception.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from src.leadsync.api.deps import (
    get_connection_service,
    get_org_id,
    get_sync_orchestrator,
    is_uuid,
)
from src.leadsync.integrations.crm.connections import CrmConnectionService
from src.leadsync.integrations.crm.errors import (
    ConnectionNotFoundError,
    ConnectionValidationError,
    CRMAPIError,
    CRMConfigurationError,
    CRMError,
    SyncAlreadyRunningError,
    UnsupportedProviderError,
)
from src.leadsync.integrations.crm.schemas import (
    ConnectionSafe,
    ConnectionSyncOutcome,
    FieldMapping,
    SyncLogRead,
)
from src.leadsync.integrations.crm.sync import SyncOrchestrator

router = APIRouter(prefix="/api/v1/crm", tags=["crm"])


# ── Request / Response Schemas ───────────────────────────────────────────────


class SyncRequest(BaseModel):
    """Body of POST /crm/sync; no connection_id syncs every connected CRM."""

    connection_id: str | None = None


class SyncResponse(BaseModel):
    results: list[ConnectionSyncOutcome] = Field(default_factory=list)


class CallbackRequest(BaseModel):
    code: str


class AuthUrlResponse(BaseModel):
    url: str


class SyncTriggerResponse(BaseModel):
    connection_id: str
    status: str = "syncing"


# ── Error Mapping ────────────────────────────────────────────────────────────


def _to_http_exception(exc: CRMError) -> HTTPException:
    if isinstance(exc, ConnectionNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (UnsupportedProviderError, ConnectionValidationError)):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, SyncAlreadyRunningError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, CRMConfigurationError):
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    elif isinstance(exc, CRMAPIError):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(exc))


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("/connections", response_model=list[ConnectionSafe])
async def list_connections(
    org_id: str = Depends(get_org_id),
    service: CrmConnectionService = Depends(get_connection_service),
) -> list[ConnectionSafe]:
    """List the org's CRM connections without credentials."""
    return await service.list_connections(org_id)


@router.post("/sync", response_model=SyncResponse)
async def sync(
    body: SyncRequest,
    service: CrmConnectionService = Depends(get_connection_service),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
) -> SyncResponse:
    """Run a sync pass for one connection, or for every connected one.

    A single-connection sync reports a fatal failure in its result rather
    than as an HTTP error, same as the sync-all variant.
    """
    if body.connection_id is None:
        return SyncResponse(results=await service.sync_all_connected())
    if not is_uuid(body.connection_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Connection not found: {body.connection_id}",
        )

    try:
        summary = await orchestrator.sync_connection(body.connection_id)
    except ConnectionNotFoundError as exc:
        raise _to_http_exception(exc) from exc
    except Exception as exc:
        return SyncResponse(
            results=[ConnectionSyncOutcome(connection_id=body.connection_id, error=str(exc))]
        )
    return SyncResponse(
        results=[ConnectionSyncOutcome(connection_id=body.connection_id, summary=summary)]
    )


@router.get("/{provider}/auth-url", response_model=AuthUrlResponse)
async def get_auth_url(
    provider: str,
    service: CrmConnectionService = Depends(get_connection_service),
) -> AuthUrlResponse:
    try:
        return AuthUrlResponse(url=service.get_auth_url(provider))
    except CRMError as exc:
        raise _to_http_exception(exc) from exc


@router.post("/{provider}/callback", response_model=ConnectionSafe)
async def oauth_callback(
    provider: str,
    body: CallbackRequest,
    org_id: str = Depends(get_org_id),
    service: CrmConnectionService = Depends(get_connection_service),
) -> ConnectionSafe:
    """Exchange an authorization code and store the connection."""
    try:
        return await service.handle_callback(org_id, provider, body.code)
    except CRMError as exc:
        raise _to_http_exception(exc) from exc


@router.delete("/{provider}", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect(
    provider: str,
    org_id: str = Depends(get_org_id),
    service: CrmConnectionService = Depends(get_connection_service),
) -> None:
    try:
        removed = await service.disconnect(org_id, provider)
    except CRMError as exc:
        raise _to_http_exception(exc) from exc
    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No {provider} connection",
        )


@router.put("/{provider}/field-mapping", response_model=ConnectionSafe)
async def update_field_mapping(
    provider: str,
    body: FieldMapping,
    org_id: str = Depends(get_org_id),
    service: CrmConnectionService = Depends(get_connection_service),
) -> ConnectionSafe:
    try:
        return await service.update_field_mapping(org_id, provider, body)
    except CRMError as exc:
        raise _to_http_exception(exc) from exc


@router.get("/{provider}/sync-logs", response_model=list[SyncLogRead])
async def list_sync_logs(
    provider: str,
    limit: int = Query(default=10, ge=1, le=100),
    org_id: str = Depends(get_org_id),
    service: CrmConnectionService = Depends(get_connection_service),
) -> list[SyncLogRead]:
    """Most recent sync runs, newest first."""
    try:
        return await service.list_sync_logs(org_id, provider, limit=limit)
    except CRMError as exc:
        raise _to_http_exception(exc) from exc


@router.post(
    "/{provider}/sync",
    response_model=SyncTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_sync(
    provider: str,
    org_id: str = Depends(get_org_id),
    service: CrmConnectionService = Depends(get_connection_service),
) -> SyncTriggerResponse:
    """Start a background sync and return immediately."""
    try:
        connection_id = await service.trigger_sync(org_id, provider)
    except CRMError as exc:
        raise _to_http_exception(exc) from exc
    return SyncTriggerResponse(connection_id=connection_id)
