"""CRM adapter registry -- resolves a provider name to its adapter.

The registry is built once at application start (see main.create_app) and
handed to the services that need adapters. Each adapter is created lazily
on first use and then reused for the lifetime of the registry.
"""

from __future__ import annotations

import httpx
import structlog

from src.leadsync.config import Settings
from src.leadsync.integrations.crm.adapter import CRMAdapter
from src.leadsync.integrations.crm.errors import UnsupportedProviderError
from src.leadsync.integrations.crm.hubspot import HubSpotAdapter
from src.leadsync.integrations.crm.pipedrive import PipedriveAdapter
from src.leadsync.integrations.crm.rdstation import RDStationAdapter
from src.leadsync.integrations.crm.schemas import CrmProvider

logger = structlog.get_logger(__name__)

_ADAPTER_CLASSES: dict[CrmProvider, type[CRMAdapter]] = {
    CrmProvider.HUBSPOT: HubSpotAdapter,
    CrmProvider.PIPEDRIVE: PipedriveAdapter,
    CrmProvider.RDSTATION: RDStationAdapter,
}


class CRMAdapterRegistry:
    """Provider name -> adapter instance, one instance per provider.

    Args:
        settings: Supplies OAuth client credentials, timeout and page cap.
        transport: Optional httpx transport shared by all adapters (tests).
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._adapters: dict[CrmProvider, CRMAdapter] = {}

    @staticmethod
    def supported_providers() -> list[CrmProvider]:
        return list(_ADAPTER_CLASSES)

    @staticmethod
    def is_supported(provider: str) -> bool:
        """Return True if an adapter exists for the provider name."""
        return provider in {p.value for p in _ADAPTER_CLASSES}

    def get(self, provider: str | CrmProvider) -> CRMAdapter:
        """Return the adapter for a provider, creating it on first use.

        Raises:
            UnsupportedProviderError: Unknown provider name.
        """
        try:
            key = CrmProvider(provider)
        except ValueError:
            raise UnsupportedProviderError(str(provider)) from None

        adapter = self._adapters.get(key)
        if adapter is None:
            client_id, client_secret = self._client_credentials(key)
            adapter = _ADAPTER_CLASSES[key](
                client_id=client_id,
                client_secret=client_secret,
                timeout=self._settings.CRM_HTTP_TIMEOUT,
                max_pages=self._settings.CRM_MAX_PAGES,
                transport=self._transport,
            )
            self._adapters[key] = adapter
            logger.debug("crm.adapter_created", provider=key.value)
        return adapter

    def _client_credentials(self, provider: CrmProvider) -> tuple[str, str]:
        prefix = provider.value.upper()
        return (
            getattr(self._settings, f"{prefix}_CLIENT_ID"),
            getattr(self._settings, f"{prefix}_CLIENT_SECRET"),
        )
