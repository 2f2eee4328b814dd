"""Batch enrichment worker for imported leads.

Processes the pending leads of one import sequentially with provider pacing
(2s between leads on the premium provider, 20s on the free tier). When a
full batch was processed there may be more pending leads, so the worker
schedules the next batch for the same import on the BackgroundTaskRunner.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog
from pydantic import BaseModel

from src.leadsync.config import Settings
from src.leadsync.core.tasks import BackgroundTaskRunner
from src.leadsync.enrichment.orchestrator import (
    EnrichmentOrchestrator,
    TwoStageEnrichmentCoordinator,
)
from src.leadsync.enrichment.person import LemitCpfProvider
from src.leadsync.enrichment.providers import (
    CnpjWsProvider,
    EnrichmentProvider,
    LemitProvider,
)
from src.leadsync.leads.repository import LeadRepository
from src.leadsync.leads.schemas import EnrichmentResult

logger = structlog.get_logger(__name__)


class BatchSummary(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0


class EnrichmentWorker:
    """Sequential, paced enrichment of lead batches.

    Premium two-stage enrichment is used when Lemit credentials are
    configured, otherwise the free CNPJ.ws provider alone.

    Args:
        settings: Batch size, delays, retries and provider credentials.
        repository: LeadRepository.
        orchestrator: Company-stage orchestrator.
        coordinator: Two-stage coordinator used on the premium path.
        task_runner: Runner for self-chained batches (None disables chaining).
        company_provider: Override for the company provider.
        person_provider: Override for the person provider.
        sleep: Awaitable sleep used for pacing.
    """

    def __init__(
        self,
        settings: Settings,
        repository: LeadRepository,
        orchestrator: EnrichmentOrchestrator,
        coordinator: TwoStageEnrichmentCoordinator,
        task_runner: BackgroundTaskRunner | None = None,
        company_provider: EnrichmentProvider | None = None,
        person_provider: LemitCpfProvider | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._repo = repository
        self._orchestrator = orchestrator
        self._coordinator = coordinator
        self._runner = task_runner
        self._sleep = sleep

        if settings.premium_enrichment_enabled:
            self._company_provider = company_provider or LemitProvider(
                settings.LEMIT_API_URL, settings.LEMIT_API_TOKEN
            )
            self._person_provider = person_provider or LemitCpfProvider(
                settings.LEMIT_API_URL, settings.LEMIT_API_TOKEN
            )
            self._delay = settings.ENRICHMENT_PREMIUM_DELAY_SECONDS
        else:
            self._company_provider = company_provider or CnpjWsProvider(
                settings.CNPJ_WS_BASE_URL
            )
            self._person_provider = None
            self._delay = settings.ENRICHMENT_FREE_DELAY_SECONDS

    @property
    def company_provider(self) -> EnrichmentProvider:
        return self._company_provider

    async def enrich_one(self, lead_id: str, cnpj: str) -> EnrichmentResult:
        """Enrich a single lead with the configured provider chain."""
        if self._person_provider is not None:
            return await self._coordinator.enrich_full(
                lead_id,
                cnpj,
                self._company_provider,
                self._person_provider,
                max_retries=self._settings.ENRICHMENT_MAX_RETRIES,
            )
        return await self._orchestrator.enrich(
            lead_id,
            cnpj,
            self._company_provider,
            max_retries=self._settings.ENRICHMENT_MAX_RETRIES,
        )

    async def process_import(self, org_id: str, import_id: str) -> BatchSummary:
        """Enrich the next batch of pending leads of an import.

        Returns:
            Counts of processed, succeeded and failed leads.
        """
        batch_size = self._settings.ENRICHMENT_BATCH_SIZE
        leads = await self._repo.list_pending_for_import(import_id, limit=batch_size)
        summary = BatchSummary()

        if not leads:
            logger.info("enrichment_worker.no_pending", org_id=org_id, import_id=import_id)
            return summary

        logger.info(
            "enrichment_worker.batch_started",
            org_id=org_id,
            import_id=import_id,
            leads=len(leads),
            provider=self._company_provider.name,
        )

        for index, lead in enumerate(leads):
            if index > 0:
                await self._sleep(self._delay)

            summary.processed += 1
            try:
                result = await self.enrich_one(lead.id, lead.cnpj)
            except Exception:
                logger.exception(
                    "enrichment_worker.lead_error",
                    import_id=import_id,
                    lead_id=lead.id,
                )
                summary.failed += 1
                continue

            if result.success:
                summary.succeeded += 1
            else:
                summary.failed += 1

        logger.info(
            "enrichment_worker.batch_complete",
            org_id=org_id,
            import_id=import_id,
            **summary.model_dump(),
        )

        if len(leads) == batch_size and self._runner is not None:
            self._runner.submit(
                f"enrich-import:{import_id}",
                self.process_import(org_id, import_id),
            )

        return summary

    async def enrich_leads_batch(
        self,
        lead_ids: list[str],
        provider: EnrichmentProvider,
        delay: float,
    ) -> BatchSummary:
        """Enrich an explicit list of leads with one provider.

        A lead that no longer exists counts as failed. The delay is applied
        between leads, not after the last one.
        """
        summary = BatchSummary()

        for index, lead_id in enumerate(lead_ids):
            summary.processed += 1
            lead = await self._repo.get_lead(lead_id)
            if lead is None:
                summary.failed += 1
            else:
                result = await self._orchestrator.enrich(
                    lead_id,
                    lead.cnpj,
                    provider,
                    max_retries=self._settings.ENRICHMENT_MAX_RETRIES,
                )
                if result.success:
                    summary.succeeded += 1
                else:
                    summary.failed += 1

            if index < len(lead_ids) - 1:
                await self._sleep(delay)

        return summary
