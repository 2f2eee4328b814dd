"""CRM persistence models.

Three SQLAlchemy models:
- CrmConnectionModel: One OAuth connection per (org, provider)
- CrmSyncLogModel: Append-only summary of every sync pass
- CrmCrossReferenceModel: Local lead/activity id to external CRM id
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.leadsync.core.database import Base


class CrmConnectionModel(Base):
    """OAuth connection to an external CRM.

    credentials holds the token bundle as JSON; encryption at rest is the
    database's concern.
    """

    __tablename__ = "crm_connections"
    __table_args__ = (
        UniqueConstraint("org_id", "crm_provider", name="uq_crm_connections_org_provider"),
        Index("ix_crm_connections_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    org_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    crm_provider: Mapped[str] = mapped_column(String(30), nullable=False)
    credentials: Mapped[dict] = mapped_column(JSONB, nullable=False)
    field_mapping: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default="connected", server_default=text("'connected'")
    )
    last_sync_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class CrmSyncLogModel(Base):
    """One row per sync pass, never updated."""

    __tablename__ = "crm_sync_log"
    __table_args__ = (Index("ix_crm_sync_log_connection_created", "connection_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    connection_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    direction: Mapped[str] = mapped_column(String(20), nullable=False)
    records_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_details: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class CrmCrossReferenceModel(Base):
    """Durable link between a local record and its external CRM id.

    Written once on the first successful push; its presence turns later
    pushes into updates.
    """

    __tablename__ = "crm_cross_references"
    __table_args__ = (
        UniqueConstraint(
            "org_id",
            "crm_provider",
            "entity_kind",
            "local_id",
            name="uq_crm_cross_references_local",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    org_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    crm_provider: Mapped[str] = mapped_column(String(30), nullable=False)
    entity_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    local_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    external_id: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
