"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- Enrichment and CRM sync counters/histograms recorded by the orchestrators
- track_sync_run(): Context manager that times a sync pass and records its outcome
- init_sentry(): Initialize Sentry with org-aware event tagging
- get_metrics_response(): Prometheus exposition for the /metrics route
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger(__name__)

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Enrichment Metrics ───────────────────────────────────────────────────────

enrichment_attempts_total = Counter(
    "enrichment_attempts_total",
    "Enrichment provider calls, including retries",
    ["provider", "status"],
)

enrichment_attempt_duration_seconds = Histogram(
    "enrichment_attempt_duration_seconds",
    "Enrichment provider call duration in seconds",
    ["provider"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
)

# ── CRM Sync Metrics ─────────────────────────────────────────────────────────

crm_sync_runs_total = Counter(
    "crm_sync_runs_total",
    "CRM sync passes by provider and outcome",
    ["provider", "status"],
)

crm_sync_records_total = Counter(
    "crm_sync_records_total",
    "Records processed by CRM sync phase",
    ["provider", "phase", "outcome"],
)

crm_sync_duration_seconds = Histogram(
    "crm_sync_duration_seconds",
    "CRM sync pass duration in seconds",
    ["provider"],
    buckets=(1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0),
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = request.url.path

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Sync Metrics Helpers ─────────────────────────────────────────────────────


@asynccontextmanager
async def track_sync_run(provider: str) -> AsyncGenerator[None, None]:
    """Time a sync pass and count it as success or error.

    Usage:
        async with track_sync_run("hubspot"):
            await run_phases(...)
    """
    start_time = time.perf_counter()
    status = "success"

    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        crm_sync_runs_total.labels(provider=provider, status=status).inc()
        crm_sync_duration_seconds.labels(provider=provider).observe(
            time.perf_counter() - start_time
        )


def record_sync_phase(provider: str, phase: str, synced: int, errors: int) -> None:
    """Add one phase's synced/error counts to the sync record counter."""
    if synced:
        crm_sync_records_total.labels(provider=provider, phase=phase, outcome="synced").inc(synced)
    if errors:
        crm_sync_records_total.labels(provider=provider, phase=phase, outcome="error").inc(errors)


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Tag events with the org that triggered the request, when known."""
        request = event.get("request") or {}
        headers = {k.lower(): v for k, v in (request.get("headers") or {}).items()}
        org_id = headers.get("x-org-id")
        if org_id:
            event.setdefault("tags", {})["org_id"] = org_id
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
        before_send=before_send,
    )
    logger.info("monitoring.sentry_initialized", environment=environment)


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
