"""Bidirectional CRM sync pass for one connection.

A pass runs strictly in order:
1. Ensure token: refresh an expired access token and persist it at once
2. Pull: contacts changed since last_sync_at overwrite the mapped fields
   of the matching local lead (CNPJ first, then email); unmatched contacts
   are skipped, never created locally
3. Push: leads updated since last_sync_at are created or updated in the CRM
   depending on their cross-reference
4. Activities: "sent" interactions without a cross-reference are attached
   to their lead's CRM contact; interactions of unsynced leads wait
5. Finalize: connection back to connected, last_sync_at set to the time
   the pass finished

Per-record failures are collected into each phase's SyncResult and never
stop a batch. Anything escaping a phase is fatal: the connection is flipped
to error and the exception propagates. A crm_sync_log row is written in
both cases.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from src.leadsync.core.monitoring import record_sync_phase, track_sync_run
from src.leadsync.integrations.crm.adapter import CRMAdapter
from src.leadsync.integrations.crm.errors import (
    AmbiguousMatchError,
    ConnectionNotFoundError,
)
from src.leadsync.integrations.crm.field_mapping import (
    SYNCED_LEAD_FIELDS,
    from_provider_properties,
    invert_mapping,
    lead_sync_record,
)
from src.leadsync.integrations.crm.registry import CRMAdapterRegistry
from src.leadsync.integrations.crm.repository import CrmConnectionRepository
from src.leadsync.integrations.crm.schemas import (
    ActivityPush,
    ConnectionRead,
    ConnectionStatus,
    CrmContact,
    Credentials,
    CrossReferenceKind,
    FieldMapping,
    SyncDirection,
    SyncErrorDetail,
    SyncResult,
    SyncRunSummary,
)
from src.leadsync.leads.fit_score import FitScoreService
from src.leadsync.leads.repository import LeadRepository
from src.leadsync.leads.schemas import is_present

logger = structlog.get_logger(__name__)

# Lead fields a pulled contact may overwrite; the CNPJ is immutable.
PULL_WRITABLE_FIELDS = frozenset(SYNCED_LEAD_FIELDS) - {"cnpj"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncOrchestrator:
    """Runs sync passes for CRM connections.

    Args:
        connections: CrmConnectionRepository.
        leads: LeadRepository for matching, updating and selecting leads.
        registry: Resolves the connection's provider to its adapter.
        fit_scores: Optional FitScoreService; leads updated by a pull are
            rescored.
        push_batch_size: Max leads pushed per pass.
        activity_batch_size: Max interactions pushed per pass.
        now: Clock (tests inject a fixed time).
    """

    def __init__(
        self,
        connections: CrmConnectionRepository,
        leads: LeadRepository,
        registry: CRMAdapterRegistry,
        fit_scores: FitScoreService | None = None,
        push_batch_size: int = 200,
        activity_batch_size: int = 100,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._connections = connections
        self._leads = leads
        self._registry = registry
        self._fit_scores = fit_scores
        self._push_batch_size = push_batch_size
        self._activity_batch_size = activity_batch_size
        self._now = now

    async def sync_connection(self, connection_id: str) -> SyncRunSummary:
        """Run one full sync pass.

        Raises:
            ConnectionNotFoundError: No connection with that id.
            Exception: Any fatal error, after the connection is marked error.
        """
        connection = await self._connections.get_connection(connection_id)
        if connection is None:
            raise ConnectionNotFoundError(f"Connection not found: {connection_id}")

        provider = connection.crm_provider.value
        adapter = self._registry.get(connection.crm_provider)
        mapping = connection.field_mapping or FieldMapping()
        summary = SyncRunSummary()
        start = time.perf_counter()
        fatal: Exception | None = None

        log = logger.bind(connection_id=connection_id, provider=provider, org_id=connection.org_id)
        log.info("crm_sync.started", last_sync_at=connection.last_sync_at)

        async with track_sync_run(provider):
            try:
                credentials = await self._ensure_valid_token(connection, adapter)
                summary.pull = await self._pull_contacts(connection, adapter, credentials, mapping)
                summary.push = await self._push_leads(connection, adapter, credentials, mapping)
                summary.activities = await self._push_activities(connection, adapter, credentials)
                await self._connections.update_status(
                    connection_id, ConnectionStatus.CONNECTED, last_sync_at=self._now()
                )
            except Exception as exc:
                fatal = exc
                log.exception("crm_sync.failed", error=str(exc))
                await self._connections.update_status(connection_id, ConnectionStatus.ERROR)
                raise
            finally:
                await self._write_log(
                    connection_id, summary, int((time.perf_counter() - start) * 1000), fatal
                )

        for phase in ("pull", "push", "activities"):
            result: SyncResult = getattr(summary, phase)
            record_sync_phase(provider, phase, result.synced, result.errors)

        log.info(
            "crm_sync.completed",
            pulled=summary.pull.synced,
            pushed=summary.push.synced,
            activities=summary.activities.synced,
            errors=summary.total_errors,
        )
        return summary

    # ── Token ───────────────────────────────────────────────────────────────

    async def _ensure_valid_token(
        self, connection: ConnectionRead, adapter: CRMAdapter
    ) -> Credentials:
        credentials = connection.credentials

        if credentials.expires_at is None:
            logger.warning(
                "crm_sync.token_expiry_unknown",
                connection_id=connection.id,
                provider=connection.crm_provider.value,
            )
            return credentials

        if not credentials.is_expired(self._now()):
            return credentials

        refreshed = await adapter.refresh_token(credentials)
        await self._connections.update_credentials(connection.id, refreshed)
        logger.info(
            "crm_sync.token_refreshed",
            connection_id=connection.id,
            provider=connection.crm_provider.value,
        )
        return refreshed

    # ── Pull ────────────────────────────────────────────────────────────────

    async def _pull_contacts(
        self,
        connection: ConnectionRead,
        adapter: CRMAdapter,
        credentials: Credentials,
        mapping: FieldMapping,
    ) -> SyncResult:
        result = SyncResult()
        contacts = await adapter.pull_contacts(
            credentials, since=connection.last_sync_at, fields=mapping.leads.values()
        )
        reverse = invert_mapping(mapping.leads)

        for contact in contacts:
            try:
                matched = await self._apply_contact(connection.org_id, contact, reverse)
            except Exception as exc:
                result.record_error(contact.external_id, str(exc))
                logger.warning(
                    "crm_sync.pull_error",
                    connection_id=connection.id,
                    external_id=contact.external_id,
                    error=str(exc),
                )
                continue
            if matched:
                result.synced += 1

        return result

    async def _apply_contact(
        self, org_id: str, contact: CrmContact, reverse: dict[str, str]
    ) -> bool:
        """Overwrite the matching lead with the contact's fields.

        Returns:
            True if a local lead matched and was updated, False if skipped.

        Raises:
            AmbiguousMatchError: The CNPJ or email matches several leads.
        """
        fields = from_provider_properties(contact.properties, reverse)
        # Mapped properties win over the normalized top-level fields
        for name, value in (
            ("email", contact.email),
            ("phone", contact.phone),
            ("trade_name", contact.company_name),
        ):
            if is_present(value):
                fields.setdefault(name, value)

        lead_id = None
        cnpj = fields.get("cnpj")
        if cnpj:
            lead_id = await self._match_lead(org_id, "cnpj", str(cnpj))
        email = fields.get("email")
        if lead_id is None and email:
            lead_id = await self._match_lead(org_id, "email", str(email))

        if lead_id is None:
            logger.debug("crm_sync.pull_unmatched", external_id=contact.external_id)
            return False

        update = {k: v for k, v in fields.items() if k in PULL_WRITABLE_FIELDS}
        if update:
            await self._leads.update_lead(lead_id, update)
            if self._fit_scores is not None:
                await self._fit_scores.recalculate_lead(org_id, lead_id)
        return True

    async def _match_lead(self, org_id: str, field: str, value: str) -> str | None:
        ids = await self._leads.find_lead_ids(org_id, field, value, limit=2)
        if len(ids) > 1:
            raise AmbiguousMatchError(f"{field} {value!r} matches more than one lead")
        return ids[0] if ids else None

    # ── Push ────────────────────────────────────────────────────────────────

    async def _push_leads(
        self,
        connection: ConnectionRead,
        adapter: CRMAdapter,
        credentials: Credentials,
        mapping: FieldMapping,
    ) -> SyncResult:
        result = SyncResult()
        leads = await self._leads.list_leads_updated_since(
            connection.org_id, connection.last_sync_at, limit=self._push_batch_size
        )

        for lead in leads:
            try:
                external_id = await self._connections.get_cross_reference(
                    connection.org_id,
                    connection.crm_provider,
                    CrossReferenceKind.LEAD,
                    lead.id,
                )
                pushed = await adapter.push_contact(
                    credentials, lead_sync_record(lead), mapping.leads, external_id
                )
                if external_id is None:
                    await self._connections.save_cross_reference(
                        connection.org_id,
                        connection.crm_provider,
                        CrossReferenceKind.LEAD,
                        lead.id,
                        pushed.external_id,
                    )
                result.synced += 1
            except Exception as exc:
                result.record_error(lead.id, str(exc))
                logger.warning(
                    "crm_sync.push_error",
                    connection_id=connection.id,
                    lead_id=lead.id,
                    error=str(exc),
                )

        return result

    # ── Activities ──────────────────────────────────────────────────────────

    async def _push_activities(
        self,
        connection: ConnectionRead,
        adapter: CRMAdapter,
        credentials: Credentials,
    ) -> SyncResult:
        result = SyncResult()
        interactions = await self._connections.list_unsynced_sent_interactions(
            connection.org_id, connection.crm_provider, limit=self._activity_batch_size
        )

        for interaction in interactions:
            try:
                contact_id = await self._connections.get_cross_reference(
                    connection.org_id,
                    connection.crm_provider,
                    CrossReferenceKind.LEAD,
                    interaction.lead_id,
                )
                if contact_id is None:
                    logger.debug(
                        "crm_sync.activity_skipped",
                        interaction_id=interaction.id,
                        lead_id=interaction.lead_id,
                    )
                    continue

                pushed = await adapter.push_activity(
                    credentials,
                    ActivityPush(
                        contact_external_id=contact_id,
                        type=interaction.channel,
                        subject=f"Cadência - {interaction.channel}",
                        body=interaction.message_content or "",
                        timestamp=interaction.created_at,
                    ),
                )
                await self._connections.save_cross_reference(
                    connection.org_id,
                    connection.crm_provider,
                    CrossReferenceKind.ACTIVITY,
                    interaction.id,
                    pushed.external_id,
                )
                result.synced += 1
            except Exception as exc:
                result.record_error(interaction.id, str(exc))
                logger.warning(
                    "crm_sync.activity_error",
                    connection_id=connection.id,
                    interaction_id=interaction.id,
                    error=str(exc),
                )

        return result

    # ── Finalize ────────────────────────────────────────────────────────────

    async def _write_log(
        self,
        connection_id: str,
        summary: SyncRunSummary,
        duration_ms: int,
        fatal: Exception | None,
    ) -> None:
        details = summary.all_error_details()
        errors = summary.total_errors
        if fatal is not None:
            details.append(SyncErrorDetail(record_id=connection_id, message=str(fatal)))
            errors += 1

        await self._connections.insert_sync_log(
            connection_id=connection_id,
            direction=SyncDirection.BIDIRECTIONAL,
            records_synced=summary.total_synced,
            errors=errors,
            duration_ms=duration_ms,
            error_details=details or None,
        )
