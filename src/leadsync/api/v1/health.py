"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks.
"""

from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from src.leadsync.config import get_settings
from src.leadsync.core.database import check_db

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check.

    No external dependencies are checked -- just that the server is running.
    """
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


@router.get("/health/ready")
async def readiness_check():
    """Readiness check: verifies database connectivity.

    Returns 200 if the database answers, 503 otherwise.
    """
    checks: dict = {"database": "ok"}
    try:
        await check_db()
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    healthy = checks["database"] == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if healthy else "degraded", "checks": checks},
    )
