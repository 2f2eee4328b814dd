"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan wiring of the enrichment and CRM sync services, and the v1 API
router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.leadsync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.leadsync.api.v1.router import router as v1_router
from src.leadsync.config import get_settings
from src.leadsync.core.database import close_db, get_session
from src.leadsync.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.leadsync.core.tasks import BackgroundTaskRunner
from src.leadsync.enrichment.orchestrator import (
    EnrichmentOrchestrator,
    TwoStageEnrichmentCoordinator,
)
from src.leadsync.enrichment.worker import EnrichmentWorker
from src.leadsync.integrations.crm.connections import CrmConnectionService
from src.leadsync.integrations.crm.registry import CRMAdapterRegistry
from src.leadsync.integrations.crm.repository import CrmConnectionRepository
from src.leadsync.integrations.crm.sync import SyncOrchestrator
from src.leadsync.leads.fit_score import FitScoreService
from src.leadsync.leads.repository import LeadRepository


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build services on startup; cancel background work and close the DB on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Shared infrastructure ───────────────────────────────────────────
    task_runner = BackgroundTaskRunner()
    lead_repository = LeadRepository(get_session)
    connection_repository = CrmConnectionRepository(get_session)
    registry = CRMAdapterRegistry(settings)
    fit_scores = FitScoreService(lead_repository)

    # ── Enrichment ──────────────────────────────────────────────────────
    orchestrator = EnrichmentOrchestrator(lead_repository, fit_scores=fit_scores)
    coordinator = TwoStageEnrichmentCoordinator(
        orchestrator,
        lead_repository,
        person_delay=settings.ENRICHMENT_PERSON_DELAY_SECONDS,
    )
    worker = EnrichmentWorker(
        settings,
        lead_repository,
        orchestrator,
        coordinator,
        task_runner=task_runner,
    )

    # ── CRM sync ────────────────────────────────────────────────────────
    sync_orchestrator = SyncOrchestrator(
        connection_repository,
        lead_repository,
        registry,
        fit_scores=fit_scores,
        push_batch_size=settings.CRM_PUSH_BATCH_SIZE,
        activity_batch_size=settings.CRM_ACTIVITY_BATCH_SIZE,
    )
    connection_service = CrmConnectionService(
        settings,
        connection_repository,
        registry,
        sync_orchestrator,
        task_runner,
    )

    app.state.task_runner = task_runner
    app.state.lead_repository = lead_repository
    app.state.crm_registry = registry
    app.state.enrichment_worker = worker
    app.state.sync_orchestrator = sync_orchestrator
    app.state.connection_service = connection_service

    log.info(
        "app.started",
        environment=settings.ENVIRONMENT.value,
        premium_enrichment=settings.premium_enrichment_enabled,
        crm_providers=[p.value for p in registry.supported_providers()],
    )

    yield

    await task_runner.shutdown()
    await close_db()
    log.info("app.stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Leadsync API",
        version="0.1.0",
        description="Lead enrichment and external CRM synchronization",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(LoggingMiddleware)

    # Outermost, so metrics cover every request
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
