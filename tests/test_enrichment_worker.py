"""Unit tests for EnrichmentWorker batch processing."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.leadsync.enrichment.person import LemitCpfProvider
from src.leadsync.enrichment.providers import CnpjWsProvider, LemitProvider
from src.leadsync.enrichment.worker import BatchSummary, EnrichmentWorker
from src.leadsync.leads.schemas import EnrichmentResult, LeadRead


def _leads(count: int) -> list[LeadRead]:
    return [
        LeadRead(id=f"lead-{i}", org_id="org-1", import_id="imp-1", cnpj=f"{i:014d}")
        for i in range(count)
    ]


def _worker(settings, sleep, repo=None, orchestrator=None, coordinator=None, runner=None):
    return EnrichmentWorker(
        settings,
        repo or AsyncMock(),
        orchestrator or AsyncMock(),
        coordinator or AsyncMock(),
        task_runner=runner,
        sleep=sleep,
    )


class TestProviderSelection:
    def test_free_tier_without_lemit_credentials(self, make_settings, sleep):
        worker = _worker(make_settings(), sleep)
        assert isinstance(worker.company_provider, CnpjWsProvider)

    def test_premium_with_lemit_credentials(self, make_settings, sleep):
        settings = make_settings(LEMIT_API_URL="https://api.lemit.test", LEMIT_API_TOKEN="t")
        worker = _worker(settings, sleep)
        assert isinstance(worker.company_provider, LemitProvider)

    @pytest.mark.asyncio
    async def test_premium_uses_two_stage_coordinator(self, make_settings, sleep):
        settings = make_settings(LEMIT_API_URL="https://api.lemit.test", LEMIT_API_TOKEN="t")
        orchestrator, coordinator = AsyncMock(), AsyncMock()
        coordinator.enrich_full.return_value = EnrichmentResult(success=True)
        worker = _worker(settings, sleep, orchestrator=orchestrator, coordinator=coordinator)

        await worker.enrich_one("lead-1", "12345678000190")

        args = coordinator.enrich_full.await_args.args
        assert args[:2] == ("lead-1", "12345678000190")
        assert isinstance(args[3], LemitCpfProvider)
        orchestrator.enrich.assert_not_awaited()


class TestProcessImport:
    """Paced, failure-tolerant, self-chaining import batches."""

    @pytest.mark.asyncio
    async def test_paces_between_leads_only(self, make_settings, sleep):
        repo = AsyncMock()
        repo.list_pending_for_import.return_value = _leads(3)
        orchestrator = AsyncMock()
        orchestrator.enrich.return_value = EnrichmentResult(success=True)
        worker = _worker(make_settings(), sleep, repo=repo, orchestrator=orchestrator)

        summary = await worker.process_import("org-1", "imp-1")

        assert summary == BatchSummary(processed=3, succeeded=3, failed=0)
        assert sleep.calls == [20.0, 20.0]
        repo.list_pending_for_import.assert_awaited_once_with("imp-1", limit=50)

    @pytest.mark.asyncio
    async def test_premium_pacing_is_two_seconds(self, make_settings, sleep):
        settings = make_settings(LEMIT_API_URL="https://api.lemit.test", LEMIT_API_TOKEN="t")
        repo = AsyncMock()
        repo.list_pending_for_import.return_value = _leads(2)
        coordinator = AsyncMock()
        coordinator.enrich_full.return_value = EnrichmentResult(success=True)
        worker = _worker(settings, sleep, repo=repo, coordinator=coordinator)

        await worker.process_import("org-1", "imp-1")

        assert sleep.calls == [2.0]

    @pytest.mark.asyncio
    async def test_one_lead_failure_does_not_stop_batch(self, make_settings, sleep):
        repo = AsyncMock()
        repo.list_pending_for_import.return_value = _leads(3)
        orchestrator = AsyncMock()
        orchestrator.enrich.side_effect = [
            EnrichmentResult(success=True),
            RuntimeError("database went away"),
            EnrichmentResult(success=False, error="CNPJ not found"),
        ]
        worker = _worker(make_settings(), sleep, repo=repo, orchestrator=orchestrator)

        summary = await worker.process_import("org-1", "imp-1")

        assert summary == BatchSummary(processed=3, succeeded=1, failed=2)
        assert orchestrator.enrich.await_count == 3

    @pytest.mark.asyncio
    async def test_full_batch_schedules_next_batch(self, make_settings, sleep):
        repo = AsyncMock()
        repo.list_pending_for_import.return_value = _leads(2)
        orchestrator = AsyncMock()
        orchestrator.enrich.return_value = EnrichmentResult(success=True)
        runner = MagicMock()
        worker = _worker(
            make_settings(ENRICHMENT_BATCH_SIZE=2),
            sleep,
            repo=repo,
            orchestrator=orchestrator,
            runner=runner,
        )

        await worker.process_import("org-1", "imp-1")

        runner.submit.assert_called_once()
        name, coro = runner.submit.call_args.args
        assert name == "enrich-import:imp-1"
        coro.close()

    @pytest.mark.asyncio
    async def test_partial_batch_does_not_chain(self, make_settings, sleep):
        repo = AsyncMock()
        repo.list_pending_for_import.return_value = _leads(1)
        orchestrator = AsyncMock()
        orchestrator.enrich.return_value = EnrichmentResult(success=True)
        runner = MagicMock()
        worker = _worker(make_settings(), sleep, repo=repo, orchestrator=orchestrator, runner=runner)

        await worker.process_import("org-1", "imp-1")

        runner.submit.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_pending_leads(self, make_settings, sleep):
        repo = AsyncMock()
        repo.list_pending_for_import.return_value = []
        worker = _worker(make_settings(), sleep, repo=repo)

        assert await worker.process_import("org-1", "imp-1") == BatchSummary()
        assert sleep.calls == []


class TestEnrichLeadsBatch:
    @pytest.mark.asyncio
    async def test_missing_lead_counts_as_failed(self, make_settings, sleep):
        repo = AsyncMock()
        repo.get_lead.side_effect = [_leads(1)[0], None]
        orchestrator = AsyncMock()
        orchestrator.enrich.return_value = EnrichmentResult(success=True)
        worker = _worker(make_settings(), sleep, repo=repo, orchestrator=orchestrator)
        provider = CnpjWsProvider()

        summary = await worker.enrich_leads_batch(["lead-0", "missing"], provider, delay=5.0)

        assert summary == BatchSummary(processed=2, succeeded=1, failed=1)
        assert sleep.calls == [5.0]
        assert orchestrator.enrich.await_args.args[2] is provider
