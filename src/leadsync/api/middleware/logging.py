"""Structured logging setup and per-request log context.

configure_structlog() picks JSON output in production and console output
elsewhere. LoggingMiddleware binds request_id, org_id and user_id into
structlog's context variables, so every event emitted while the request
runs (sync passes, enrichment attempts) carries them, then logs one
request_completed event with status and duration.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.leadsync.config import Environment, get_settings

logger = structlog.get_logger(__name__)

# Health and scrape endpoints; logged at debug only.
QUIET_PATHS = frozenset({"/health", "/health/ready", "/metrics"})


def configure_structlog() -> None:
    """Configure stdlib logging and the structlog processor chain."""
    settings = get_settings()
    logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL.upper())

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.ENVIRONMENT == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _level_for(path: str, status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code >= 400:
        return "warning"
    return "debug" if path in QUIET_PATHS else "info"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Bind org/request context for the duration of a request and log its outcome.

    The caller's X-Request-ID is reused when present; otherwise a UUID is
    generated. Either way it is echoed back on the response.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        path = request.url.path
        start = time.monotonic()

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            org_id=request.headers.get("X-Org-ID"),
            user_id=request.headers.get("X-User-ID"),
        )

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_error",
                method=request.method,
                path=path,
                duration_ms=round((time.monotonic() - start) * 1000, 2),
            )
            raise

        duration_ms = round((time.monotonic() - start) * 1000, 2)
        response.headers["X-Request-ID"] = request_id
        getattr(logger, _level_for(path, response.status_code))(
            "request_completed",
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        structlog.contextvars.clear_contextvars()
        return response
