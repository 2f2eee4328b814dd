"""Unit tests for HubSpotAdapter over httpx.MockTransport."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from src.leadsync.integrations.crm.errors import (
    CRMAPIError,
    CRMConfigurationError,
    NoRefreshTokenError,
)
from src.leadsync.integrations.crm.hubspot import HubSpotAdapter, engagement_type
from src.leadsync.integrations.crm.schemas import ActivityPush, Credentials


class RecordingTransport(httpx.MockTransport):
    """MockTransport that records requests and answers through a handler."""

    def __init__(self, handler) -> None:
        self.requests: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)


def _adapter(handler, **kwargs) -> tuple[HubSpotAdapter, RecordingTransport]:
    transport = RecordingTransport(handler)
    adapter = HubSpotAdapter(
        client_id=kwargs.pop("client_id", "hs-client"),
        client_secret=kwargs.pop("client_secret", "hs-secret"),
        transport=transport,
        **kwargs,
    )
    return adapter, transport


CREDS = Credentials(access_token="access-1", refresh_token="refresh-1")


class TestHubSpotOAuth:
    def test_auth_url(self):
        adapter, _ = _adapter(lambda r: httpx.Response(200))
        url = adapter.auth_url("https://app.example.com/api/auth/callback/hubspot")
        query = parse_qs(urlparse(url).query)

        assert url.startswith("https://app.hubspot.com/oauth/authorize?")
        assert query["client_id"] == ["hs-client"]
        assert query["redirect_uri"] == ["https://app.example.com/api/auth/callback/hubspot"]
        assert "crm.objects.contacts.write" in query["scope"][0].split(" ")

    @pytest.mark.asyncio
    async def test_exchange_code_keeps_hub_id(self):
        adapter, transport = _adapter(
            lambda r: httpx.Response(
                200,
                json={
                    "access_token": "new-access",
                    "refresh_token": "new-refresh",
                    "expires_in": 1800,
                    "hub_id": 4242,
                },
            )
        )

        creds = await adapter.exchange_code("code-1", "https://cb")

        form = parse_qs(transport.requests[0].content.decode())
        assert form["grant_type"] == ["authorization_code"]
        assert form["code"] == ["code-1"]
        assert creds.access_token == "new-access"
        assert creds.refresh_token == "new-refresh"
        assert creds.portal_id == "4242"
        assert creds.expires_at > datetime.now(timezone.utc)

    @pytest.mark.asyncio
    async def test_refresh_keeps_old_refresh_token_when_omitted(self):
        adapter, transport = _adapter(
            lambda r: httpx.Response(200, json={"access_token": "fresh", "expires_in": 1800})
        )

        creds = await adapter.refresh_token(CREDS)

        form = parse_qs(transport.requests[0].content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["refresh-1"]
        assert creds.access_token == "fresh"
        assert creds.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_refresh_without_token_fails(self):
        adapter, transport = _adapter(lambda r: httpx.Response(200))
        with pytest.raises(NoRefreshTokenError):
            await adapter.refresh_token(Credentials(access_token="a"))
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_missing_client_config(self):
        adapter, _ = _adapter(lambda r: httpx.Response(200), client_id="")
        with pytest.raises(CRMConfigurationError):
            await adapter.exchange_code("code", "https://cb")


class TestHubSpotPull:
    @pytest.mark.asyncio
    async def test_since_filter_in_milliseconds(self):
        adapter, transport = _adapter(lambda r: httpx.Response(200, json={"results": []}))
        since = datetime(2026, 3, 1, tzinfo=timezone.utc)

        await adapter.pull_contacts(CREDS, since=since)

        body = json.loads(transport.requests[0].content)
        flt = body["filterGroups"][0]["filters"][0]
        assert flt == {
            "propertyName": "lastmodifieddate",
            "operator": "GTE",
            "value": str(int(since.timestamp() * 1000)),
        }
        assert transport.requests[0].headers["Authorization"] == "Bearer access-1"

    @pytest.mark.asyncio
    async def test_pagination_stops_at_page_cap(self):
        page = {
            "results": [{"id": "1", "properties": {"email": "a@b.com", "company": "Acme"}}],
            "paging": {"next": {"after": "next-cursor"}},
        }
        adapter, transport = _adapter(lambda r: httpx.Response(200, json=page), max_pages=2)

        contacts = await adapter.pull_contacts(CREDS)

        assert len(transport.requests) == 2
        assert len(contacts) == 2
        assert json.loads(transport.requests[1].content)["after"] == "next-cursor"
        assert contacts[0].email == "a@b.com"
        assert contacts[0].company_name == "Acme"

    @pytest.mark.asyncio
    async def test_requests_custom_mapped_properties(self):
        adapter, transport = _adapter(lambda r: httpx.Response(200, json={"results": []}))

        await adapter.pull_contacts(CREDS, fields=["company", "cnpj_custom", "porte"])

        requested = json.loads(transport.requests[0].content)["properties"]
        assert "cnpj_custom" in requested
        assert "porte" in requested
        assert "email" in requested
        assert requested.count("company") == 1

    @pytest.mark.asyncio
    async def test_pagination_stops_without_cursor(self):
        adapter, transport = _adapter(
            lambda r: httpx.Response(200, json={"results": [{"id": "1", "properties": {}}]})
        )
        contacts = await adapter.pull_contacts(CREDS)
        assert len(transport.requests) == 1
        assert contacts[0].external_id == "1"


class TestHubSpotPush:
    @pytest.mark.asyncio
    async def test_create_when_no_external_id(self):
        adapter, transport = _adapter(lambda r: httpx.Response(201, json={"id": "901"}))

        result = await adapter.push_contact(
            CREDS, {"trade_name": "Acme", "email": None}, {"trade_name": "company", "email": "email"}
        )

        request = transport.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/crm/v3/objects/contacts"
        assert json.loads(request.content) == {"properties": {"company": "Acme"}}
        assert result.external_id == "901"

    @pytest.mark.asyncio
    async def test_update_when_external_id_known(self):
        adapter, transport = _adapter(lambda r: httpx.Response(200, json={"id": "901"}))

        result = await adapter.push_contact(
            CREDS, {"trade_name": "Acme"}, {"trade_name": "company"}, external_id="901"
        )

        request = transport.requests[0]
        assert request.method == "PATCH"
        assert request.url.path == "/crm/v3/objects/contacts/901"
        assert result.external_id == "901"

    @pytest.mark.asyncio
    async def test_api_error_carries_status(self):
        adapter, _ = _adapter(lambda r: httpx.Response(400, text="bad property"))
        with pytest.raises(CRMAPIError) as exc_info:
            await adapter.push_contact(CREDS, {"trade_name": "Acme"}, {"trade_name": "company"})
        assert exc_info.value.status_code == 400
        assert "bad property" in str(exc_info.value)


class TestHubSpotActivities:
    def test_engagement_type_mapping(self):
        assert engagement_type("email") == "EMAIL"
        assert engagement_type("meeting_scheduled") == "MEETING"
        assert engagement_type("call") == "CALL"
        assert engagement_type("whatsapp") == "NOTE"

    @pytest.mark.asyncio
    async def test_email_activity_goes_to_emails_object(self):
        adapter, transport = _adapter(lambda r: httpx.Response(201, json={"id": "e-1"}))
        activity = ActivityPush(
            contact_external_id="901",
            type="email",
            subject="Cadência - email",
            body="Olá",
            timestamp=datetime(2026, 3, 2, tzinfo=timezone.utc),
        )

        result = await adapter.push_activity(CREDS, activity)

        request = transport.requests[0]
        body = json.loads(request.content)
        assert request.url.path == "/crm/v3/objects/emails"
        assert body["associations"][0]["to"] == {"id": "901"}
        assert body["associations"][0]["types"][0]["associationTypeId"] == 198
        assert body["properties"]["hs_body_preview"] == "Olá"
        assert result.external_id == "e-1"

    @pytest.mark.asyncio
    async def test_other_channels_become_notes(self):
        adapter, transport = _adapter(lambda r: httpx.Response(201, json={"id": "n-1"}))
        activity = ActivityPush(
            contact_external_id="901",
            type="whatsapp",
            subject="Cadência - whatsapp",
            body="Oi",
            timestamp=datetime(2026, 3, 2, tzinfo=timezone.utc),
        )

        await adapter.push_activity(CREDS, activity)

        body = json.loads(transport.requests[0].content)
        assert transport.requests[0].url.path == "/crm/v3/objects/notes"
        assert body["properties"]["hs_note_body"] == "Cadência - whatsapp\n\nOi"


class TestHubSpotValidation:
    @pytest.mark.asyncio
    async def test_valid_credentials(self):
        adapter, transport = _adapter(lambda r: httpx.Response(200, json={"portalId": 1}))
        assert await adapter.validate_connection(CREDS) is True
        assert transport.requests[0].url.path == "/integrations/v1/me"

    @pytest.mark.asyncio
    async def test_unauthorized_is_invalid(self):
        adapter, _ = _adapter(lambda r: httpx.Response(401, json={"message": "expired"}))
        assert await adapter.validate_connection(CREDS) is False
