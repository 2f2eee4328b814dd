"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.leadsync.api.v1 import crm, enrichment, health

router = APIRouter()

router.include_router(health.router)
router.include_router(crm.router)
router.include_router(enrichment.router)
router.include_router(enrichment.workers_router)
