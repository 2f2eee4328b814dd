"""Enrichment orchestration -- retry/backoff around providers and lead merging.

EnrichmentOrchestrator drives one company provider for one lead:
1. Mark the lead enriching
2. Call the provider up to max_retries times, waiting 1s, 2s, 4s... between
   attempts; every call is logged to enrichment_attempts
3. Not found is definitive: stop at once, status not_found
4. Success merges only present fields into the lead, status enriched
5. Exhausted retries leave status enrichment_failed
6. An unexpected error, such as a failed write, also leaves
   enrichment_failed and propagates

TwoStageEnrichmentCoordinator runs the company stage and then fans out to
a person provider for each partner that carries a full CPF.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.leadsync.core.monitoring import (
    enrichment_attempt_duration_seconds,
    enrichment_attempts_total,
)
from src.leadsync.enrichment.errors import (
    EnrichmentError,
    EnrichmentNotFoundError,
    EnrichmentProviderError,
)
from src.leadsync.enrichment.person import LemitCpfProvider
from src.leadsync.enrichment.providers import EnrichmentProvider
from src.leadsync.leads.fit_score import FitScoreService
from src.leadsync.leads.repository import LeadRepository
from src.leadsync.leads.schemas import (
    AttemptStatus,
    CanonicalCompany,
    ContactEnrichmentStatus,
    EnrichmentAttemptCreate,
    EnrichmentResult,
    EnrichmentStatus,
    Partner,
    is_present,
)

logger = structlog.get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


def merge_fields(company: CanonicalCompany) -> dict[str, Any]:
    """Build the lead column update for a successful enrichment.

    Only fields the provider actually returned are included; None and ""
    never overwrite stored data.
    """
    fields: dict[str, Any] = {}
    for name in CanonicalCompany.model_fields:
        value = getattr(company, name)
        if not is_present(value):
            continue
        if name == "address":
            value = value.model_dump(mode="json", exclude_none=True)
        elif name == "partners":
            value = [p.model_dump(mode="json", exclude_none=True) for p in value]
        fields[name] = value
    return fields


class EnrichmentOrchestrator:
    """Retrying company enrichment for single leads.

    Args:
        repository: LeadRepository for status updates, merges and attempt rows.
        fit_scores: Optional FitScoreService; when given, the lead is
            rescored after a successful merge.
        sleep: Awaitable sleep used between attempts (tests inject a recorder).
    """

    def __init__(
        self,
        repository: LeadRepository,
        fit_scores: FitScoreService | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._repo = repository
        self._fit_scores = fit_scores
        self._sleep = sleep

    async def enrich(
        self,
        lead_id: str,
        cnpj: str,
        provider: EnrichmentProvider,
        max_retries: int = 3,
    ) -> EnrichmentResult:
        """Enrich a lead from one provider with retry and exponential backoff.

        Args:
            lead_id: Lead UUID string.
            cnpj: Company tax id to look up.
            provider: Company data source.
            max_retries: Total number of provider calls allowed (>= 1).

        Returns:
            EnrichmentResult with the canonical data on success, or the last
            error message on failure.
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        await self._repo.set_enrichment_status(lead_id, EnrichmentStatus.ENRICHING)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1),
            retry=(
                retry_if_exception_type(EnrichmentError)
                & retry_if_not_exception_type(EnrichmentNotFoundError)
            ),
            before_sleep=self._log_retry(lead_id, provider.name),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            company = await retrying(self._attempt, lead_id, cnpj, provider)
        except EnrichmentNotFoundError as exc:
            await self._repo.set_enrichment_status(lead_id, EnrichmentStatus.NOT_FOUND)
            logger.info("enrichment.not_found", lead_id=lead_id, provider=provider.name)
            return EnrichmentResult(success=False, error=str(exc))
        except EnrichmentError as exc:
            await self._repo.set_enrichment_status(
                lead_id, EnrichmentStatus.ENRICHMENT_FAILED
            )
            logger.warning(
                "enrichment.exhausted",
                lead_id=lead_id,
                provider=provider.name,
                attempts=max_retries,
                error=str(exc),
            )
            return EnrichmentResult(success=False, error=str(exc))
        except Exception:
            await self._mark_failed(lead_id, provider.name)
            raise

        fields = merge_fields(company)
        fields["enrichment_status"] = EnrichmentStatus.ENRICHED.value
        fields["enriched_at"] = datetime.now(timezone.utc)
        try:
            await self._repo.update_lead(lead_id, fields)
        except Exception:
            await self._mark_failed(lead_id, provider.name)
            raise

        if self._fit_scores is not None:
            lead = await self._repo.get_lead(lead_id)
            if lead is not None:
                await self._fit_scores.rescore(lead)

        logger.info("enrichment.succeeded", lead_id=lead_id, provider=provider.name)
        return EnrichmentResult(success=True, data=company)

    async def _mark_failed(self, lead_id: str, provider: str) -> None:
        """Move a lead out of enriching after an unexpected error."""
        logger.exception("enrichment.unexpected_error", lead_id=lead_id, provider=provider)
        await self._repo.set_enrichment_status(lead_id, EnrichmentStatus.ENRICHMENT_FAILED)

    async def _attempt(
        self, lead_id: str, cnpj: str, provider: EnrichmentProvider
    ) -> CanonicalCompany:
        """One provider call, logged as an attempt row whatever the outcome."""
        start = time.perf_counter()
        company: CanonicalCompany | None = None
        error: EnrichmentError | None = None

        try:
            company = await provider.enrich(cnpj)
        except EnrichmentError as exc:
            error = exc
        except Exception as exc:
            error = EnrichmentProviderError(str(exc) or type(exc).__name__)
            error.__cause__ = exc

        duration = time.perf_counter() - start

        if error is None:
            status = AttemptStatus.ENRICHED
        elif isinstance(error, EnrichmentNotFoundError):
            status = AttemptStatus.NOT_FOUND
        else:
            status = AttemptStatus.ENRICHMENT_FAILED

        enrichment_attempts_total.labels(provider=provider.name, status=status.value).inc()
        enrichment_attempt_duration_seconds.labels(provider=provider.name).observe(duration)

        await self._repo.record_enrichment_attempt(
            EnrichmentAttemptCreate(
                lead_id=lead_id,
                provider=provider.name,
                status=status,
                response_data=(
                    company.model_dump(mode="json", exclude_none=True) if company else None
                ),
                error_message=str(error) if error else None,
                duration_ms=int(duration * 1000),
            )
        )

        if error is not None:
            raise error
        return company

    @staticmethod
    def _log_retry(lead_id: str, provider: str) -> Callable[[Any], None]:
        def before_sleep(retry_state: Any) -> None:
            outcome = retry_state.outcome
            logger.warning(
                "enrichment.attempt_failed",
                lead_id=lead_id,
                provider=provider,
                attempt=retry_state.attempt_number,
                error=str(outcome.exception()) if outcome else None,
                retry_in=retry_state.next_action.sleep if retry_state.next_action else None,
            )

        return before_sleep


class TwoStageEnrichmentCoordinator:
    """Company enrichment followed by per-partner person lookups.

    Args:
        orchestrator: Runs the company stage with retries.
        repository: LeadRepository used for the single partners write.
        person_delay: Seconds to wait before every person lookup but the first.
        sleep: Awaitable sleep (tests inject a recorder).
    """

    def __init__(
        self,
        orchestrator: EnrichmentOrchestrator,
        repository: LeadRepository,
        person_delay: float = 1.0,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._orchestrator = orchestrator
        self._repo = repository
        self._person_delay = person_delay
        self._sleep = sleep

    async def enrich_full(
        self,
        lead_id: str,
        cnpj: str,
        company_provider: EnrichmentProvider,
        person_provider: LemitCpfProvider,
        max_retries: int = 3,
    ) -> EnrichmentResult:
        """Run both stages; returns the company stage result.

        When the company stage fails or yields no partners its result is
        returned untouched. Otherwise the returned data carries the partners
        with their contact data and per-partner status.
        """
        result = await self._orchestrator.enrich(
            lead_id, cnpj, company_provider, max_retries=max_retries
        )
        if not result.success or result.data is None or not result.data.partners:
            return result

        partners = await self._enrich_partners(lead_id, result.data.partners, person_provider)
        await self._repo.update_lead(
            lead_id,
            {"partners": [p.model_dump(mode="json", exclude_none=True) for p in partners]},
        )

        return result.model_copy(
            update={"data": result.data.model_copy(update={"partners": partners})}
        )

    async def _enrich_partners(
        self,
        lead_id: str,
        partners: list[Partner],
        person_provider: LemitCpfProvider,
    ) -> list[Partner]:
        enriched: list[Partner] = []
        lookups = 0

        for partner in partners:
            if not partner.cpf:
                enriched.append(partner)
                continue

            if lookups > 0:
                await self._sleep(self._person_delay)
            lookups += 1

            try:
                contact = await person_provider.enrich(partner.cpf)
            except Exception as exc:
                logger.warning(
                    "enrichment.partner_failed",
                    lead_id=lead_id,
                    partner=partner.name,
                    error=str(exc),
                )
                enriched.append(
                    partner.model_copy(
                        update={"contact_enrichment_status": ContactEnrichmentStatus.FAILED}
                    )
                )
                continue

            enriched.append(
                partner.model_copy(
                    update={
                        "emails": contact.emails,
                        "phones": contact.phones,
                        "address": contact.address,
                        "contact_enrichment_status": ContactEnrichmentStatus.ENRICHED,
                    }
                )
            )

        logger.info(
            "enrichment.partners_processed",
            lead_id=lead_id,
            partners=len(partners),
            lookups=lookups,
        )
        return enriched
