"""Initial leadsync schema: leads, enrichment and CRM sync tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
    )


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def upgrade() -> None:
    # ── Leads ───────────────────────────────────────────────────────────
    op.create_table(
        "leads",
        _id_column(),
        sa.Column("org_id", UUID(as_uuid=True), nullable=False),
        sa.Column("import_id", UUID(as_uuid=True), nullable=True),
        sa.Column("cnpj", sa.String(14), nullable=False),
        sa.Column("legal_name", sa.String(300), nullable=True),
        sa.Column("trade_name", sa.String(300), nullable=True),
        sa.Column("address", JSONB(), nullable=True),
        sa.Column("company_size", sa.String(100), nullable=True),
        sa.Column("cnae", sa.String(20), nullable=True),
        sa.Column("registration_status", sa.String(50), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("estimated_revenue", sa.Float(), nullable=True),
        sa.Column("partners", JSONB(), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column(
            "enrichment_status", sa.String(30), server_default=sa.text("'pending'"), nullable=False
        ),
        sa.Column("enriched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fit_score", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_leads_org_cnpj", "leads", ["org_id", "cnpj"])
    op.create_index("ix_leads_org_email", "leads", ["org_id", "email"])
    op.create_index("ix_leads_org_updated", "leads", ["org_id", "updated_at"])
    op.create_index("ix_leads_import_status", "leads", ["import_id", "enrichment_status"])

    op.create_table(
        "interactions",
        _id_column(),
        sa.Column("org_id", UUID(as_uuid=True), nullable=False),
        sa.Column("lead_id", UUID(as_uuid=True), nullable=False),
        sa.Column("channel", sa.String(30), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("message_content", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_interactions_org_type", "interactions", ["org_id", "type"])
    op.create_index("ix_interactions_lead", "interactions", ["lead_id"])

    op.create_table(
        "enrichment_attempts",
        _id_column(),
        sa.Column("lead_id", UUID(as_uuid=True), nullable=False),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("response_data", JSONB(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=False),
        _created_at(),
    )
    op.create_index("ix_enrichment_attempts_lead", "enrichment_attempts", ["lead_id"])

    op.create_table(
        "fit_score_rules",
        _id_column(),
        sa.Column("org_id", UUID(as_uuid=True), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("field", sa.String(50), nullable=False),
        sa.Column("operator", sa.String(20), nullable=False),
        sa.Column("value", sa.String(300), nullable=True),
        sa.Column("sort_order", sa.Integer(), server_default=sa.text("0"), nullable=False),
    )
    op.create_index("ix_fit_score_rules_org", "fit_score_rules", ["org_id", "sort_order"])

    # ── CRM ─────────────────────────────────────────────────────────────
    op.create_table(
        "crm_connections",
        _id_column(),
        sa.Column("org_id", UUID(as_uuid=True), nullable=False),
        sa.Column("crm_provider", sa.String(30), nullable=False),
        sa.Column("credentials", JSONB(), nullable=False),
        sa.Column("field_mapping", JSONB(), nullable=True),
        sa.Column("status", sa.String(20), server_default=sa.text("'connected'"), nullable=False),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("org_id", "crm_provider", name="uq_crm_connections_org_provider"),
    )
    op.create_index("ix_crm_connections_status", "crm_connections", ["status"])

    op.create_table(
        "crm_sync_log",
        _id_column(),
        sa.Column("connection_id", UUID(as_uuid=True), nullable=False),
        sa.Column("direction", sa.String(20), nullable=False),
        sa.Column("records_synced", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("errors", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("error_details", JSONB(), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_crm_sync_log_connection_created", "crm_sync_log", ["connection_id", "created_at"]
    )

    op.create_table(
        "crm_cross_references",
        _id_column(),
        sa.Column("org_id", UUID(as_uuid=True), nullable=False),
        sa.Column("crm_provider", sa.String(30), nullable=False),
        sa.Column("entity_kind", sa.String(20), nullable=False),
        sa.Column("local_id", UUID(as_uuid=True), nullable=False),
        sa.Column("external_id", sa.String(100), nullable=False),
        _created_at(),
        sa.UniqueConstraint(
            "org_id",
            "crm_provider",
            "entity_kind",
            "local_id",
            name="uq_crm_cross_references_local",
        ),
    )


def downgrade() -> None:
    op.drop_table("crm_cross_references")
    op.drop_index("ix_crm_sync_log_connection_created", table_name="crm_sync_log")
    op.drop_table("crm_sync_log")
    op.drop_index("ix_crm_connections_status", table_name="crm_connections")
    op.drop_table("crm_connections")
    op.drop_index("ix_fit_score_rules_org", table_name="fit_score_rules")
    op.drop_table("fit_score_rules")
    op.drop_index("ix_enrichment_attempts_lead", table_name="enrichment_attempts")
    op.drop_table("enrichment_attempts")
    op.drop_index("ix_interactions_lead", table_name="interactions")
    op.drop_index("ix_interactions_org_type", table_name="interactions")
    op.drop_table("interactions")
    op.drop_index("ix_leads_import_status", table_name="leads")
    op.drop_index("ix_leads_org_updated", table_name="leads")
    op.drop_index("ix_leads_org_email", table_name="leads")
    op.drop_index("ix_leads_org_cnpj", table_name="leads")
    op.drop_table("leads")
