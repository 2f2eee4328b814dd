"""Lead repository -- async access to leads, interactions, attempts, and rules.

Uses the session_factory callable pattern: each method opens one session
from the factory, does its work, and commits. Rows are converted to the
Pydantic schemas in src.leadsync.leads.schemas at the boundary so the
enrichment and sync engines never see ORM objects.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.leadsync.leads.models import (
    EnrichmentAttemptModel,
    FitScoreRuleModel,
    LeadModel,
)
from src.leadsync.leads.schemas import (
    EnrichmentAttemptCreate,
    EnrichmentStatus,
    FitScoreRule,
    LeadRead,
)

logger = structlog.get_logger(__name__)

# Lead columns that sync and enrichment may write directly.
WRITABLE_LEAD_FIELDS = frozenset({
    "legal_name",
    "trade_name",
    "address",
    "company_size",
    "cnae",
    "registration_status",
    "email",
    "phone",
    "estimated_revenue",
    "partners",
    "enrichment_status",
    "enriched_at",
    "fit_score",
    "notes",
})


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_lead(model: LeadModel) -> LeadRead:
    """Convert LeadModel to LeadRead schema."""
    return LeadRead(
        id=str(model.id),
        org_id=str(model.org_id),
        import_id=str(model.import_id) if model.import_id else None,
        cnpj=model.cnpj,
        legal_name=model.legal_name,
        trade_name=model.trade_name,
        address=model.address,
        company_size=model.company_size,
        cnae=model.cnae,
        registration_status=model.registration_status,
        email=model.email,
        phone=model.phone,
        estimated_revenue=model.estimated_revenue,
        partners=model.partners or [],
        enrichment_status=EnrichmentStatus(model.enrichment_status),
        enriched_at=model.enriched_at,
        fit_score=model.fit_score,
        notes=model.notes,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class LeadRepository:
    """Async operations on leads and their enrichment/scoring side tables.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Leads ───────────────────────────────────────────────────────────────

    async def get_lead(self, lead_id: str) -> LeadRead | None:
        """Get a lead by ID (deleted leads included)."""
        async for session in self._session_factory():
            stmt = select(LeadModel).where(LeadModel.id == uuid.UUID(lead_id))
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_lead(model)

    async def update_lead(self, lead_id: str, fields: dict[str, Any]) -> None:
        """Write the given columns onto a lead.

        Args:
            lead_id: Lead UUID string.
            fields: Column name to value. Unknown columns raise ValueError.
        """
        unknown = set(fields) - WRITABLE_LEAD_FIELDS
        if unknown:
            raise ValueError(f"Not writable lead fields: {sorted(unknown)}")
        if not fields:
            return

        async for session in self._session_factory():
            stmt = (
                update(LeadModel)
                .where(LeadModel.id == uuid.UUID(lead_id))
                .values(**fields, updated_at=datetime.now(timezone.utc))
            )
            await session.execute(stmt)
            await session.commit()

    async def set_enrichment_status(self, lead_id: str, status: EnrichmentStatus) -> None:
        """Set a lead's enrichment_status."""
        await self.update_lead(lead_id, {"enrichment_status": status.value})

    async def find_lead_ids(
        self, org_id: str, field: str, value: str, limit: int = 2
    ) -> list[str]:
        """Find non-deleted lead IDs in an org whose column equals value.

        Used by CRM pull matching; the default limit of 2 is enough for the
        caller to tell "unique" from "ambiguous".
        """
        if field not in ("cnpj", "email"):
            raise ValueError(f"Unsupported lookup field: {field}")

        async for session in self._session_factory():
            column = getattr(LeadModel, field)
            stmt = (
                select(LeadModel.id)
                .where(
                    LeadModel.org_id == uuid.UUID(org_id),
                    column == value,
                    LeadModel.deleted_at.is_(None),
                )
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [str(row) for row in result.scalars().all()]

    async def list_leads_updated_since(
        self, org_id: str, since: datetime | None, limit: int
    ) -> list[LeadRead]:
        """List non-deleted leads updated at or after since (all when None)."""
        async for session in self._session_factory():
            stmt = select(LeadModel).where(
                LeadModel.org_id == uuid.UUID(org_id),
                LeadModel.deleted_at.is_(None),
            )
            if since is not None:
                stmt = stmt.where(LeadModel.updated_at >= since)
            stmt = stmt.order_by(LeadModel.updated_at.asc()).limit(limit)
            result = await session.execute(stmt)
            return [_model_to_lead(m) for m in result.scalars().all()]

    async def list_pending_for_import(self, import_id: str, limit: int) -> list[LeadRead]:
        """List non-deleted leads of an import still awaiting enrichment."""
        async for session in self._session_factory():
            stmt = (
                select(LeadModel)
                .where(
                    LeadModel.import_id == uuid.UUID(import_id),
                    LeadModel.enrichment_status == EnrichmentStatus.PENDING.value,
                    LeadModel.deleted_at.is_(None),
                )
                .order_by(LeadModel.created_at.asc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_model_to_lead(m) for m in result.scalars().all()]

    async def list_active_leads(
        self, org_id: str, limit: int, after_id: str | None = None
    ) -> list[LeadRead]:
        """One page of an org's non-deleted leads, ordered by id.

        Pass the last id of the previous page as after_id to continue.
        """
        async for session in self._session_factory():
            stmt = select(LeadModel).where(
                LeadModel.org_id == uuid.UUID(org_id),
                LeadModel.deleted_at.is_(None),
            )
            if after_id is not None:
                stmt = stmt.where(LeadModel.id > uuid.UUID(after_id))
            stmt = stmt.order_by(LeadModel.id.asc()).limit(limit)
            result = await session.execute(stmt)
            return [_model_to_lead(m) for m in result.scalars().all()]

    # ── Enrichment Attempts ─────────────────────────────────────────────────

    async def record_enrichment_attempt(self, attempt: EnrichmentAttemptCreate) -> None:
        """Append one enrichment attempt row."""
        async for session in self._session_factory():
            session.add(
                EnrichmentAttemptModel(
                    lead_id=uuid.UUID(attempt.lead_id),
                    provider=attempt.provider,
                    status=attempt.status.value,
                    response_data=attempt.response_data,
                    error_message=attempt.error_message,
                    duration_ms=attempt.duration_ms,
                )
            )
            await session.commit()

    # ── Fit Score Rules ─────────────────────────────────────────────────────

    async def list_fit_score_rules(self, org_id: str) -> list[FitScoreRule]:
        """List an org's scoring rules in configured order."""
        async for session in self._session_factory():
            stmt = (
                select(FitScoreRuleModel)
                .where(FitScoreRuleModel.org_id == uuid.UUID(org_id))
                .order_by(FitScoreRuleModel.sort_order.asc())
            )
            result = await session.execute(stmt)
            return [
                FitScoreRule(
                    points=m.points,
                    field=m.field,
                    operator=m.operator,
                    value=m.value,
                )
                for m in result.scalars().all()
            ]
