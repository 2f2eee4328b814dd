"""Shared fixtures for leadsync unit tests.

Everything here is in-memory: repositories are AsyncMocks, provider and
CRM HTTP goes through httpx.MockTransport, and sleeps are recorded instead
of awaited. No database or network is needed.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest


class SleepRecorder:
    """Awaitable stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


def _make_settings(**overrides) -> SimpleNamespace:
    defaults = {
        "APP_URL": "https://app.example.com",
        "HUBSPOT_CLIENT_ID": "hs-client",
        "HUBSPOT_CLIENT_SECRET": "hs-secret",
        "PIPEDRIVE_CLIENT_ID": "pd-client",
        "PIPEDRIVE_CLIENT_SECRET": "pd-secret",
        "RDSTATION_CLIENT_ID": "rd-client",
        "RDSTATION_CLIENT_SECRET": "rd-secret",
        "CRM_HTTP_TIMEOUT": 30.0,
        "CRM_MAX_PAGES": 10,
        "CNPJ_WS_BASE_URL": "https://publica.cnpj.ws/cnpj",
        "LEMIT_API_URL": "",
        "LEMIT_API_TOKEN": "",
        "ENRICHMENT_BATCH_SIZE": 50,
        "ENRICHMENT_MAX_RETRIES": 3,
        "ENRICHMENT_PREMIUM_DELAY_SECONDS": 2.0,
        "ENRICHMENT_FREE_DELAY_SECONDS": 20.0,
        "ENRICHMENT_PERSON_DELAY_SECONDS": 1.0,
    }
    defaults.update(overrides)
    settings = SimpleNamespace(**defaults)
    settings.premium_enrichment_enabled = bool(
        settings.LEMIT_API_URL and settings.LEMIT_API_TOKEN
    )
    settings.crm_redirect_uri = (
        lambda provider: f"{settings.APP_URL}/api/auth/callback/{provider}"
    )
    return settings


@pytest.fixture
def make_settings():
    """Factory for a Settings double carrying only what the services read."""
    return _make_settings
