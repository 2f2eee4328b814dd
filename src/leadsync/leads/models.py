"""Lead persistence models -- org-scoped tables for enrichment and scoring.

Four SQLAlchemy models:
- LeadModel: Company record being enriched, scored, and synced to CRMs
- InteractionModel: Cadence events (messages sent, calls, meetings) per lead
- EnrichmentAttemptModel: Append-only log of every provider call
- FitScoreRuleModel: Ordered per-org scoring rules

Referential integrity between leads and interactions is kept at the
application level (no FK constraints), consistent with the other tables.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.leadsync.core.database import Base


class LeadModel(Base):
    """Company lead identified by CNPJ.

    Canonical enrichment fields are merged in place by the enrichment
    orchestrator; partners is the JSON array of associated persons
    including any contact data found by the person stage.
    """

    __tablename__ = "leads"
    __table_args__ = (
        Index("ix_leads_org_cnpj", "org_id", "cnpj"),
        Index("ix_leads_org_email", "org_id", "email"),
        Index("ix_leads_org_updated", "org_id", "updated_at"),
        Index("ix_leads_import_status", "import_id", "enrichment_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    org_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    import_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    cnpj: Mapped[str] = mapped_column(String(14), nullable=False)
    legal_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    trade_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    address: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    company_size: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cnae: Mapped[str | None] = mapped_column(String(20), nullable=True)
    registration_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    estimated_revenue: Mapped[float | None] = mapped_column(Float, nullable=True)
    partners: Mapped[list] = mapped_column(
        JSONB, default=list, server_default=text("'[]'::jsonb")
    )
    enrichment_status: Mapped[str] = mapped_column(
        String(30), default="pending", server_default=text("'pending'")
    )
    enriched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    fit_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class InteractionModel(Base):
    """A cadence event on a lead (type "sent" events are pushed to CRMs)."""

    __tablename__ = "interactions"
    __table_args__ = (
        Index("ix_interactions_org_type", "org_id", "type"),
        Index("ix_interactions_lead", "lead_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    org_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    lead_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    channel: Mapped[str] = mapped_column(String(30), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    message_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class EnrichmentAttemptModel(Base):
    """Append-only record of a single enrichment provider call."""

    __tablename__ = "enrichment_attempts"
    __table_args__ = (Index("ix_enrichment_attempts_lead", "lead_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    lead_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    response_data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class FitScoreRuleModel(Base):
    """Scoring rule configured by an org manager."""

    __tablename__ = "fit_score_rules"
    __table_args__ = (Index("ix_fit_score_rules_org", "org_id", "sort_order"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    org_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    field: Mapped[str] = mapped_column(String(50), nullable=False)
    operator: Mapped[str] = mapped_column(String(20), nullable=False)
    value: Mapped[str | None] = mapped_column(String(300), nullable=True)
    sort_order: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0")
    )
