"""CRM connection management -- OAuth lifecycle, mappings, logs, sync triggers.

CrmConnectionService is what the HTTP layer talks to. OAuth consent and
org resolution happen upstream; this service receives the org id and the
authorization code and owns everything after that.
"""

from __future__ import annotations

import structlog

from src.leadsync.config import Settings
from src.leadsync.core.tasks import BackgroundTaskRunner
from src.leadsync.integrations.crm.errors import (
    ConnectionNotFoundError,
    ConnectionValidationError,
    SyncAlreadyRunningError,
    UnsupportedProviderError,
)
from src.leadsync.integrations.crm.field_mapping import default_mapping
from src.leadsync.integrations.crm.registry import CRMAdapterRegistry
from src.leadsync.integrations.crm.repository import CrmConnectionRepository
from src.leadsync.integrations.crm.schemas import (
    ConnectionSafe,
    ConnectionStatus,
    ConnectionSyncOutcome,
    CrmProvider,
    FieldMapping,
    SyncLogRead,
)
from src.leadsync.integrations.crm.sync import SyncOrchestrator

logger = structlog.get_logger(__name__)


def parse_provider(provider: str) -> CrmProvider:
    """Convert a provider name to CrmProvider or raise UnsupportedProviderError."""
    try:
        return CrmProvider(provider)
    except ValueError:
        raise UnsupportedProviderError(provider) from None


class CrmConnectionService:
    """Manage an org's CRM connections.

    Args:
        settings: Provides APP_URL for redirect URIs.
        repository: CrmConnectionRepository.
        registry: CRMAdapterRegistry.
        orchestrator: SyncOrchestrator used for sync triggers.
        task_runner: Runs triggered syncs in the background.
    """

    def __init__(
        self,
        settings: Settings,
        repository: CrmConnectionRepository,
        registry: CRMAdapterRegistry,
        orchestrator: SyncOrchestrator,
        task_runner: BackgroundTaskRunner,
    ) -> None:
        self._settings = settings
        self._repo = repository
        self._registry = registry
        self._orchestrator = orchestrator
        self._runner = task_runner

    def get_auth_url(self, provider: str) -> str:
        """Build the OAuth consent URL for a provider."""
        key = parse_provider(provider)
        adapter = self._registry.get(key)
        return adapter.auth_url(self._settings.crm_redirect_uri(key.value))

    async def handle_callback(self, org_id: str, provider: str, code: str) -> ConnectionSafe:
        """Finish OAuth: exchange the code, validate, and store the connection.

        Re-authorizing keeps the stored refresh token when the provider
        does not send a new one.

        Raises:
            ConnectionValidationError: The new credentials failed validation;
                nothing is persisted.
        """
        key = parse_provider(provider)
        adapter = self._registry.get(key)
        credentials = await adapter.exchange_code(code, self._settings.crm_redirect_uri(key.value))

        if not await adapter.validate_connection(credentials):
            raise ConnectionValidationError(f"Could not validate the {key.value} connection")

        if not credentials.refresh_token:
            existing = await self._repo.get_connection_for_org(org_id, key)
            if existing is not None and existing.credentials.refresh_token:
                credentials = credentials.model_copy(
                    update={"refresh_token": existing.credentials.refresh_token}
                )

        connection = await self._repo.upsert_connection(
            org_id,
            key,
            credentials,
            default_mapping(key),
            status=ConnectionStatus.CONNECTED,
        )
        logger.info("crm.connected", org_id=org_id, provider=key.value)
        return ConnectionSafe.from_connection(connection)

    async def disconnect(self, org_id: str, provider: str) -> bool:
        """Delete the org's connection for a provider."""
        key = parse_provider(provider)
        removed = await self._repo.delete_connection(org_id, key)
        logger.info("crm.disconnected", org_id=org_id, provider=key.value, removed=removed)
        return removed

    async def update_field_mapping(
        self, org_id: str, provider: str, mapping: FieldMapping
    ) -> ConnectionSafe:
        key = parse_provider(provider)
        connection = await self._repo.update_field_mapping(org_id, key, mapping)
        if connection is None:
            raise ConnectionNotFoundError(f"No {key.value} connection for org {org_id}")
        return ConnectionSafe.from_connection(connection)

    async def list_connections(self, org_id: str) -> list[ConnectionSafe]:
        connections = await self._repo.list_connections(org_id)
        return [ConnectionSafe.from_connection(c) for c in connections]

    async def list_sync_logs(
        self, org_id: str, provider: str, limit: int = 10
    ) -> list[SyncLogRead]:
        """Newest-first sync runs of the org's connection; empty if none exists."""
        key = parse_provider(provider)
        connection = await self._repo.get_connection_for_org(org_id, key)
        if connection is None:
            return []
        return await self._repo.list_sync_logs(connection.id, limit=limit)

    async def trigger_sync(self, org_id: str, provider: str) -> str:
        """Start a background sync of the org's connection.

        Returns:
            The connection id being synced.

        Raises:
            ConnectionNotFoundError: The org has no connection for the provider.
            SyncAlreadyRunningError: A sync is already in progress.
        """
        key = parse_provider(provider)
        connection = await self._repo.get_connection_for_org(org_id, key)
        if connection is None:
            raise ConnectionNotFoundError(f"No {key.value} connection for org {org_id}")
        if connection.status == ConnectionStatus.SYNCING:
            raise SyncAlreadyRunningError(f"Sync already running for {key.value}")

        await self._repo.update_status(connection.id, ConnectionStatus.SYNCING)
        self._runner.submit(
            f"crm-sync:{connection.id}",
            self._orchestrator.sync_connection(connection.id),
        )
        logger.info("crm.sync_triggered", org_id=org_id, provider=key.value)
        return connection.id

    async def sync_all_connected(self) -> list[ConnectionSyncOutcome]:
        """Sync every connected connection in turn, collecting outcomes."""
        outcomes: list[ConnectionSyncOutcome] = []
        for connection in await self._repo.list_connected():
            try:
                summary = await self._orchestrator.sync_connection(connection.id)
            except Exception as exc:
                outcomes.append(ConnectionSyncOutcome(connection_id=connection.id, error=str(exc)))
                continue
            outcomes.append(ConnectionSyncOutcome(connection_id=connection.id, summary=summary))
        return outcomes
