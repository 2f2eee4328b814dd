"""CRM repository -- async access to connections, sync logs, and cross-references.

Same session_factory callable pattern as LeadRepository. Credential
bundles and field mappings are stored as JSONB and converted to the
Pydantic schemas at the boundary.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import Select, and_, delete, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from src.leadsync.integrations.crm.models import (
    CrmConnectionModel,
    CrmCrossReferenceModel,
    CrmSyncLogModel,
)
from src.leadsync.integrations.crm.schemas import (
    ConnectionRead,
    ConnectionStatus,
    CrmProvider,
    Credentials,
    CrossReferenceKind,
    FieldMapping,
    SyncDirection,
    SyncErrorDetail,
    SyncLogRead,
)
from src.leadsync.leads.models import InteractionModel
from src.leadsync.leads.schemas import InteractionRead

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_connection(model: CrmConnectionModel) -> ConnectionRead:
    return ConnectionRead(
        id=str(model.id),
        org_id=str(model.org_id),
        crm_provider=CrmProvider(model.crm_provider),
        credentials=Credentials.model_validate(model.credentials),
        field_mapping=(
            FieldMapping.model_validate(model.field_mapping) if model.field_mapping else None
        ),
        status=ConnectionStatus(model.status),
        last_sync_at=model.last_sync_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_sync_log(model: CrmSyncLogModel) -> SyncLogRead:
    return SyncLogRead(
        id=str(model.id),
        connection_id=str(model.connection_id),
        direction=SyncDirection(model.direction),
        records_synced=model.records_synced,
        errors=model.errors,
        duration_ms=model.duration_ms,
        error_details=(
            [SyncErrorDetail.model_validate(d) for d in model.error_details]
            if model.error_details
            else None
        ),
        created_at=model.created_at,
    )


# ── Queries ─────────────────────────────────────────────────────────────────


def pushable_interactions_query(org_id: str, provider: CrmProvider, limit: int) -> Select:
    """Oldest "sent" interactions ready to be pushed as activities.

    An interaction qualifies when it has no ACTIVITY cross-reference yet and
    its lead already has a LEAD cross-reference for the same provider.
    Interactions of leads that were never pushed stay out of the window.
    """
    activity_ref = aliased(CrmCrossReferenceModel, name="activity_xref")
    lead_ref = aliased(CrmCrossReferenceModel, name="lead_xref")
    return (
        select(InteractionModel)
        .join(
            lead_ref,
            and_(
                lead_ref.local_id == InteractionModel.lead_id,
                lead_ref.org_id == InteractionModel.org_id,
                lead_ref.crm_provider == provider.value,
                lead_ref.entity_kind == CrossReferenceKind.LEAD.value,
            ),
        )
        .outerjoin(
            activity_ref,
            and_(
                activity_ref.local_id == InteractionModel.id,
                activity_ref.org_id == InteractionModel.org_id,
                activity_ref.crm_provider == provider.value,
                activity_ref.entity_kind == CrossReferenceKind.ACTIVITY.value,
            ),
        )
        .where(
            InteractionModel.org_id == uuid.UUID(org_id),
            InteractionModel.type == "sent",
            activity_ref.id.is_(None),
        )
        .order_by(InteractionModel.created_at.asc())
        .limit(limit)
    )


# ── Repository ──────────────────────────────────────────────────────────────


class CrmConnectionRepository:
    """Async operations on CRM connections and their sync bookkeeping.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Connections ─────────────────────────────────────────────────────────

    async def get_connection(self, connection_id: str) -> ConnectionRead | None:
        async for session in self._session_factory():
            stmt = select(CrmConnectionModel).where(
                CrmConnectionModel.id == uuid.UUID(connection_id)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_connection(model) if model else None

    async def get_connection_for_org(
        self, org_id: str, provider: CrmProvider
    ) -> ConnectionRead | None:
        async for session in self._session_factory():
            stmt = select(CrmConnectionModel).where(
                CrmConnectionModel.org_id == uuid.UUID(org_id),
                CrmConnectionModel.crm_provider == provider.value,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_connection(model) if model else None

    async def list_connections(self, org_id: str) -> list[ConnectionRead]:
        async for session in self._session_factory():
            stmt = (
                select(CrmConnectionModel)
                .where(CrmConnectionModel.org_id == uuid.UUID(org_id))
                .order_by(CrmConnectionModel.created_at.asc())
            )
            result = await session.execute(stmt)
            return [_model_to_connection(m) for m in result.scalars().all()]

    async def list_connected(self) -> list[ConnectionRead]:
        """List connections of every org whose status is connected."""
        async for session in self._session_factory():
            stmt = select(CrmConnectionModel).where(
                CrmConnectionModel.status == ConnectionStatus.CONNECTED.value
            )
            result = await session.execute(stmt)
            return [_model_to_connection(m) for m in result.scalars().all()]

    async def upsert_connection(
        self,
        org_id: str,
        provider: CrmProvider,
        credentials: Credentials,
        field_mapping: FieldMapping,
        status: ConnectionStatus = ConnectionStatus.CONNECTED,
    ) -> ConnectionRead:
        """Insert or replace the (org, provider) connection."""
        values = {
            "credentials": credentials.model_dump(mode="json"),
            "field_mapping": field_mapping.model_dump(mode="json"),
            "status": status.value,
            "updated_at": datetime.now(timezone.utc),
        }
        async for session in self._session_factory():
            stmt = (
                insert(CrmConnectionModel)
                .values(org_id=uuid.UUID(org_id), crm_provider=provider.value, **values)
                .on_conflict_do_update(
                    constraint="uq_crm_connections_org_provider",
                    set_=values,
                )
                .returning(CrmConnectionModel)
            )
            result = await session.execute(stmt)
            model = result.scalar_one()
            await session.commit()
            logger.info("crm.connection_upserted", org_id=org_id, provider=provider.value)
            return _model_to_connection(model)

    async def update_status(
        self,
        connection_id: str,
        status: ConnectionStatus,
        last_sync_at: datetime | None = None,
    ) -> None:
        """Set a connection's status, and last_sync_at when given."""
        values: dict = {"status": status.value, "updated_at": datetime.now(timezone.utc)}
        if last_sync_at is not None:
            values["last_sync_at"] = last_sync_at
        async for session in self._session_factory():
            stmt = (
                update(CrmConnectionModel)
                .where(CrmConnectionModel.id == uuid.UUID(connection_id))
                .values(**values)
            )
            await session.execute(stmt)
            await session.commit()

    async def update_credentials(self, connection_id: str, credentials: Credentials) -> None:
        async for session in self._session_factory():
            stmt = (
                update(CrmConnectionModel)
                .where(CrmConnectionModel.id == uuid.UUID(connection_id))
                .values(
                    credentials=credentials.model_dump(mode="json"),
                    updated_at=datetime.now(timezone.utc),
                )
            )
            await session.execute(stmt)
            await session.commit()

    async def update_field_mapping(
        self, org_id: str, provider: CrmProvider, mapping: FieldMapping
    ) -> ConnectionRead | None:
        async for session in self._session_factory():
            stmt = (
                update(CrmConnectionModel)
                .where(
                    CrmConnectionModel.org_id == uuid.UUID(org_id),
                    CrmConnectionModel.crm_provider == provider.value,
                )
                .values(
                    field_mapping=mapping.model_dump(mode="json"),
                    updated_at=datetime.now(timezone.utc),
                )
                .returning(CrmConnectionModel)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            await session.commit()
            return _model_to_connection(model) if model else None

    async def delete_connection(self, org_id: str, provider: CrmProvider) -> bool:
        """Delete the (org, provider) connection. Returns True if a row was removed."""
        async for session in self._session_factory():
            stmt = delete(CrmConnectionModel).where(
                CrmConnectionModel.org_id == uuid.UUID(org_id),
                CrmConnectionModel.crm_provider == provider.value,
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

    # ── Sync Log ────────────────────────────────────────────────────────────

    async def insert_sync_log(
        self,
        connection_id: str,
        direction: SyncDirection,
        records_synced: int,
        errors: int,
        duration_ms: int,
        error_details: list[SyncErrorDetail] | None,
    ) -> None:
        async for session in self._session_factory():
            session.add(
                CrmSyncLogModel(
                    connection_id=uuid.UUID(connection_id),
                    direction=direction.value,
                    records_synced=records_synced,
                    errors=errors,
                    duration_ms=duration_ms,
                    error_details=(
                        [d.model_dump(mode="json", exclude_none=True) for d in error_details]
                        if error_details
                        else None
                    ),
                )
            )
            await session.commit()

    async def list_sync_logs(self, connection_id: str, limit: int = 10) -> list[SyncLogRead]:
        """List a connection's sync runs, newest first."""
        async for session in self._session_factory():
            stmt = (
                select(CrmSyncLogModel)
                .where(CrmSyncLogModel.connection_id == uuid.UUID(connection_id))
                .order_by(CrmSyncLogModel.created_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_model_to_sync_log(m) for m in result.scalars().all()]

    # ── Cross-References ────────────────────────────────────────────────────

    async def get_cross_reference(
        self,
        org_id: str,
        provider: CrmProvider,
        kind: CrossReferenceKind,
        local_id: str,
    ) -> str | None:
        """Return the external id recorded for a local record, if any."""
        async for session in self._session_factory():
            stmt = select(CrmCrossReferenceModel.external_id).where(
                CrmCrossReferenceModel.org_id == uuid.UUID(org_id),
                CrmCrossReferenceModel.crm_provider == provider.value,
                CrmCrossReferenceModel.entity_kind == kind.value,
                CrmCrossReferenceModel.local_id == uuid.UUID(local_id),
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def save_cross_reference(
        self,
        org_id: str,
        provider: CrmProvider,
        kind: CrossReferenceKind,
        local_id: str,
        external_id: str,
    ) -> None:
        """Record a local -> external id link; an existing link is kept."""
        async for session in self._session_factory():
            stmt = (
                insert(CrmCrossReferenceModel)
                .values(
                    org_id=uuid.UUID(org_id),
                    crm_provider=provider.value,
                    entity_kind=kind.value,
                    local_id=uuid.UUID(local_id),
                    external_id=external_id,
                )
                .on_conflict_do_nothing(constraint="uq_crm_cross_references_local")
            )
            await session.execute(stmt)
            await session.commit()

    async def list_unsynced_sent_interactions(
        self, org_id: str, provider: CrmProvider, limit: int
    ) -> list[InteractionRead]:
        """List "sent" interactions not yet pushed whose lead is already in the CRM."""
        async for session in self._session_factory():
            result = await session.execute(pushable_interactions_query(org_id, provider, limit))
            return [
                InteractionRead(
                    id=str(m.id),
                    org_id=str(m.org_id),
                    lead_id=str(m.lead_id),
                    channel=m.channel,
                    type=m.type,
                    message_content=m.message_content,
                    created_at=m.created_at,
                )
                for m in result.scalars().all()
            ]
