"""Unit tests for CrmConnectionService."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.leadsync.integrations.crm.connections import CrmConnectionService, parse_provider
from src.leadsync.integrations.crm.errors import (
    ConnectionNotFoundError,
    ConnectionValidationError,
    SyncAlreadyRunningError,
    UnsupportedProviderError,
)
from src.leadsync.integrations.crm.field_mapping import default_mapping
from src.leadsync.integrations.crm.schemas import (
    ConnectionRead,
    ConnectionStatus,
    CrmProvider,
    Credentials,
    SyncRunSummary,
)


def _make_connection(**overrides) -> ConnectionRead:
    defaults = {
        "id": "conn-1",
        "org_id": "org-1",
        "crm_provider": CrmProvider.PIPEDRIVE,
        "credentials": Credentials(access_token="a", refresh_token="stored-refresh"),
        "field_mapping": default_mapping(CrmProvider.PIPEDRIVE),
        "status": ConnectionStatus.CONNECTED,
        "last_sync_at": datetime(2026, 3, 1, tzinfo=timezone.utc),
    }
    defaults.update(overrides)
    return ConnectionRead(**defaults)


@pytest.fixture
def adapter():
    adapter = MagicMock()
    adapter.auth_url.return_value = "https://oauth.pipedrive.com/oauth/authorize?client_id=pd"
    adapter.exchange_code = AsyncMock()
    adapter.validate_connection = AsyncMock(return_value=True)
    return adapter


@pytest.fixture
def repo():
    repo = AsyncMock()
    repo.get_connection_for_org.return_value = None
    repo.upsert_connection.side_effect = (
        lambda org_id, provider, credentials, mapping, status: _make_connection(
            org_id=org_id, crm_provider=provider, credentials=credentials, status=status
        )
    )
    return repo


@pytest.fixture
def service(make_settings, repo, adapter):
    registry = MagicMock()
    registry.get.return_value = adapter
    orchestrator = AsyncMock()
    runner = MagicMock()
    svc = CrmConnectionService(make_settings(), repo, registry, orchestrator, runner)
    svc.orchestrator = orchestrator
    svc.runner = runner
    return svc


class TestParseProvider:
    def test_known(self):
        assert parse_provider("rdstation") is CrmProvider.RDSTATION

    def test_unknown(self):
        with pytest.raises(UnsupportedProviderError):
            parse_provider("salesforce")


class TestAuthUrl:
    def test_uses_provider_redirect_uri(self, service, adapter):
        url = service.get_auth_url("pipedrive")
        assert url.startswith("https://oauth.pipedrive.com")
        adapter.auth_url.assert_called_once_with(
            "https://app.example.com/api/auth/callback/pipedrive"
        )

    def test_unsupported_provider(self, service):
        with pytest.raises(UnsupportedProviderError):
            service.get_auth_url("salesforce")


class TestHandleCallback:
    """OAuth completion: exchange, validate, persist."""

    @pytest.mark.asyncio
    async def test_stores_connected_connection_with_default_mapping(self, service, repo, adapter):
        adapter.exchange_code.return_value = Credentials(access_token="new", refresh_token="new-r")

        result = await service.handle_callback("org-1", "pipedrive", "code-1")

        assert result.status == ConnectionStatus.CONNECTED
        assert not hasattr(result, "credentials")
        adapter.exchange_code.assert_awaited_once_with(
            "code-1", "https://app.example.com/api/auth/callback/pipedrive"
        )
        args = repo.upsert_connection.await_args
        assert args.args[0] == "org-1"
        assert args.args[1] is CrmProvider.PIPEDRIVE
        assert args.args[2].refresh_token == "new-r"
        assert args.args[3] == default_mapping(CrmProvider.PIPEDRIVE)
        assert args.kwargs["status"] == ConnectionStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_keeps_stored_refresh_token_when_none_returned(self, service, repo, adapter):
        adapter.exchange_code.return_value = Credentials(access_token="new")
        repo.get_connection_for_org.return_value = _make_connection()

        await service.handle_callback("org-1", "pipedrive", "code-1")

        stored = repo.upsert_connection.await_args.args[2]
        assert stored.access_token == "new"
        assert stored.refresh_token == "stored-refresh"

    @pytest.mark.asyncio
    async def test_validation_failure_persists_nothing(self, service, repo, adapter):
        adapter.exchange_code.return_value = Credentials(access_token="bad")
        adapter.validate_connection.return_value = False

        with pytest.raises(ConnectionValidationError):
            await service.handle_callback("org-1", "pipedrive", "code-1")
        repo.upsert_connection.assert_not_awaited()


class TestConnectionManagement:
    @pytest.mark.asyncio
    async def test_disconnect(self, service, repo):
        repo.delete_connection.return_value = True
        assert await service.disconnect("org-1", "hubspot") is True
        repo.delete_connection.assert_awaited_once_with("org-1", CrmProvider.HUBSPOT)

    @pytest.mark.asyncio
    async def test_update_field_mapping_missing_connection(self, service, repo):
        repo.update_field_mapping.return_value = None
        with pytest.raises(ConnectionNotFoundError):
            await service.update_field_mapping(
                "org-1", "hubspot", default_mapping(CrmProvider.HUBSPOT)
            )

    @pytest.mark.asyncio
    async def test_list_connections_hides_credentials(self, service, repo):
        repo.list_connections.return_value = [_make_connection()]
        connections = await service.list_connections("org-1")
        assert [c.id for c in connections] == ["conn-1"]
        assert "credentials" not in connections[0].model_dump()

    @pytest.mark.asyncio
    async def test_sync_logs_empty_without_connection(self, service, repo):
        assert await service.list_sync_logs("org-1", "pipedrive") == []
        repo.list_sync_logs.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sync_logs_for_connection(self, service, repo):
        repo.get_connection_for_org.return_value = _make_connection()
        repo.list_sync_logs.return_value = []
        await service.list_sync_logs("org-1", "pipedrive", limit=5)
        repo.list_sync_logs.assert_awaited_once_with("conn-1", limit=5)


class TestTriggerSync:
    @pytest.mark.asyncio
    async def test_marks_syncing_and_submits(self, service, repo):
        repo.get_connection_for_org.return_value = _make_connection()

        connection_id = await service.trigger_sync("org-1", "pipedrive")

        assert connection_id == "conn-1"
        repo.update_status.assert_awaited_once_with("conn-1", ConnectionStatus.SYNCING)
        name, coro = service.runner.submit.call_args.args
        coro.close()
        assert name == "crm-sync:conn-1"
        service.orchestrator.sync_connection.assert_called_once_with("conn-1")

    @pytest.mark.asyncio
    async def test_missing_connection(self, service):
        with pytest.raises(ConnectionNotFoundError):
            await service.trigger_sync("org-1", "pipedrive")
        service.runner.submit.assert_not_called()

    @pytest.mark.asyncio
    async def test_already_syncing(self, service, repo):
        repo.get_connection_for_org.return_value = _make_connection(
            status=ConnectionStatus.SYNCING
        )
        with pytest.raises(SyncAlreadyRunningError):
            await service.trigger_sync("org-1", "pipedrive")
        repo.update_status.assert_not_awaited()
        service.runner.submit.assert_not_called()


class TestSyncAllConnected:
    @pytest.mark.asyncio
    async def test_collects_successes_and_failures(self, service, repo):
        repo.list_connected.return_value = [
            _make_connection(id="conn-1"),
            _make_connection(id="conn-2"),
        ]
        service.orchestrator.sync_connection.side_effect = [
            SyncRunSummary(),
            RuntimeError("token revoked"),
        ]

        outcomes = await service.sync_all_connected()

        assert [o.connection_id for o in outcomes] == ["conn-1", "conn-2"]
        assert outcomes[0].summary is not None
        assert outcomes[0].error is None
        assert outcomes[1].summary is None
        assert outcomes[1].error == "token revoked"
