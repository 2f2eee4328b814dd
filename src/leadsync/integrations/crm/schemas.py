"""Pydantic schemas for CRM connections and synchronization.

Defines:
- Enums: CrmProvider, ConnectionStatus, SyncDirection, CrossReferenceKind
- Connection state: Credentials, FieldMapping, ConnectionRead, ConnectionSafe
- Adapter payloads: CrmContact, ActivityPush, PushResult
- Sync reporting: SyncErrorDetail, SyncResult, SyncRunSummary, SyncLogRead
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class CrmProvider(str, Enum):
    """External CRMs a connection can target."""

    HUBSPOT = "hubspot"
    PIPEDRIVE = "pipedrive"
    RDSTATION = "rdstation"


class ConnectionStatus(str, Enum):
    """Health of a CRM connection."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    SYNCING = "syncing"


class SyncDirection(str, Enum):
    PUSH = "push"
    PULL = "pull"
    BIDIRECTIONAL = "bidirectional"


class CrossReferenceKind(str, Enum):
    """Local entity kinds that get an external id on first push."""

    LEAD = "lead"
    ACTIVITY = "activity"


# ── Connection State ────────────────────────────────────────────────────────


class Credentials(BaseModel):
    """OAuth credential bundle stored on a connection.

    No refresh_token means the connection cannot be refreshed; no
    expires_at means the token is treated as never expiring.
    portal_id is HubSpot's hub id; api_domain is Pipedrive's per-company
    API base URL.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    portal_id: str | None = None
    api_domain: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """Return True when an expiry is known and has passed."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now


class FieldMapping(BaseModel):
    """Internal field name to provider field name, per entity kind."""

    leads: dict[str, str] = Field(default_factory=dict)
    activities: dict[str, str] | None = None


class ConnectionRead(BaseModel):
    """A CRM connection including credentials (server-side use only)."""

    id: str
    org_id: str
    crm_provider: CrmProvider
    credentials: Credentials
    field_mapping: FieldMapping | None = None
    status: ConnectionStatus
    last_sync_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ConnectionSafe(BaseModel):
    """Connection view safe to return to clients (no credentials)."""

    id: str
    crm_provider: CrmProvider
    field_mapping: FieldMapping | None = None
    status: ConnectionStatus
    last_sync_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_connection(cls, connection: ConnectionRead) -> ConnectionSafe:
        return cls(
            id=connection.id,
            crm_provider=connection.crm_provider,
            field_mapping=connection.field_mapping,
            status=connection.status,
            last_sync_at=connection.last_sync_at,
            created_at=connection.created_at,
            updated_at=connection.updated_at,
        )


# ── Adapter Payloads ────────────────────────────────────────────────────────


class CrmContact(BaseModel):
    """A contact pulled from a CRM, normalized across providers."""

    external_id: str
    email: str | None = None
    company_name: str | None = None
    phone: str | None = None
    properties: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime | None = None


class ActivityPush(BaseModel):
    """An activity to attach to an already-synced CRM contact."""

    contact_external_id: str
    type: str
    subject: str
    body: str = ""
    timestamp: datetime


class PushResult(BaseModel):
    external_id: str


# ── Sync Reporting ──────────────────────────────────────────────────────────


class SyncErrorDetail(BaseModel):
    """One failed record in a sync phase."""

    record_id: str
    message: str
    field: str | None = None


class SyncResult(BaseModel):
    """Outcome of one sync phase."""

    synced: int = 0
    errors: int = 0
    error_details: list[SyncErrorDetail] = Field(default_factory=list)

    def record_error(self, record_id: str, message: str, field: str | None = None) -> None:
        self.errors += 1
        self.error_details.append(
            SyncErrorDetail(record_id=record_id, message=message, field=field)
        )


class SyncRunSummary(BaseModel):
    """Per-phase results of one sync pass."""

    pull: SyncResult = Field(default_factory=SyncResult)
    push: SyncResult = Field(default_factory=SyncResult)
    activities: SyncResult = Field(default_factory=SyncResult)

    @property
    def total_synced(self) -> int:
        return self.pull.synced + self.push.synced + self.activities.synced

    @property
    def total_errors(self) -> int:
        return self.pull.errors + self.push.errors + self.activities.errors

    def all_error_details(self) -> list[SyncErrorDetail]:
        return [
            *self.pull.error_details,
            *self.push.error_details,
            *self.activities.error_details,
        ]


class SyncLogRead(BaseModel):
    """A crm_sync_log row."""

    id: str
    connection_id: str
    direction: SyncDirection
    records_synced: int
    errors: int
    duration_ms: int | None = None
    error_details: list[SyncErrorDetail] | None = None
    created_at: datetime | None = None


class ConnectionSyncOutcome(BaseModel):
    """Result of syncing one connection during a sync-all pass."""

    connection_id: str
    summary: SyncRunSummary | None = None
    error: str | None = None
