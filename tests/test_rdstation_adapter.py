"""Unit tests for RDStationAdapter over httpx.MockTransport."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from src.leadsync.integrations.crm.field_mapping import default_mapping
from src.leadsync.integrations.crm.rdstation import RDStationAdapter
from src.leadsync.integrations.crm.schemas import ActivityPush, CrmProvider, Credentials


def _adapter(handler, max_pages: int = 10) -> tuple[RDStationAdapter, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    adapter = RDStationAdapter(
        client_id="rd-client",
        client_secret="rd-secret",
        max_pages=max_pages,
        transport=httpx.MockTransport(record),
    )
    return adapter, requests


CREDS = Credentials(access_token="access-1", refresh_token="refresh-1")


class TestRDStationOAuth:
    @pytest.mark.asyncio
    async def test_refresh_sends_json(self):
        adapter, requests = _adapter(
            lambda r: httpx.Response(200, json={"access_token": "fresh", "expires_in": 86400})
        )

        creds = await adapter.refresh_token(CREDS)

        assert json.loads(requests[0].content) == {
            "client_id": "rd-client",
            "client_secret": "rd-secret",
            "refresh_token": "refresh-1",
        }
        assert creds.refresh_token == "refresh-1"


class TestRDStationPull:
    @pytest.mark.asyncio
    async def test_custom_fields_merged_into_properties(self):
        body = {
            "contacts": [
                {
                    "uuid": "c-1",
                    "name": "Acme",
                    "email": "a@acme.com",
                    "company": "ACME LTDA",
                    "custom_fields": {"cf_cnpj": "12345678000190"},
                }
            ],
            "has_more": False,
        }
        adapter, requests = _adapter(lambda r: httpx.Response(200, json=body))

        contacts = await adapter.pull_contacts(
            CREDS, since=datetime(2026, 3, 1, tzinfo=timezone.utc)
        )

        assert requests[0].url.params["updated_since"] == "2026-03-01T00:00:00+00:00"
        assert contacts[0].properties["cf_cnpj"] == "12345678000190"
        assert contacts[0].company_name == "ACME LTDA"

    @pytest.mark.asyncio
    async def test_page_cap(self):
        adapter, requests = _adapter(
            lambda r: httpx.Response(200, json={"contacts": [], "has_more": True}), max_pages=3
        )

        await adapter.pull_contacts(CREDS)

        assert [r.url.params["page"] for r in requests] == ["1", "2", "3"]


class TestRDStationPush:
    @pytest.mark.asyncio
    async def test_cnpj_goes_under_custom_fields(self):
        adapter, requests = _adapter(lambda r: httpx.Response(200, json={"uuid": "c-9"}))

        result = await adapter.push_contact(
            CREDS,
            {"cnpj": "12345678000190", "trade_name": "Acme", "email": "a@acme.com"},
            default_mapping(CrmProvider.RDSTATION).leads,
        )

        body = json.loads(requests[0].content)
        assert body == {
            "name": "Acme",
            "email": "a@acme.com",
            "custom_fields": {"cf_cnpj": "12345678000190"},
        }
        assert result.external_id == "c-9"

    @pytest.mark.asyncio
    async def test_update_uses_patch(self):
        adapter, requests = _adapter(lambda r: httpx.Response(200, json={}))

        result = await adapter.push_contact(CREDS, {"trade_name": "Acme"}, {"trade_name": "name"}, "c-9")

        assert requests[0].method == "PATCH"
        assert requests[0].url.path == "/platform/contacts/c-9"
        assert result.external_id == "c-9"

    @pytest.mark.asyncio
    async def test_activity_is_conversion_event(self):
        adapter, requests = _adapter(lambda r: httpx.Response(200, json={"event_uuid": "ev-1"}))
        timestamp = datetime(2026, 3, 2, tzinfo=timezone.utc)

        result = await adapter.push_activity(
            CREDS,
            ActivityPush(
                contact_external_id="c-9",
                type="email",
                subject="Cadência - email",
                body="x" * 800,
                timestamp=timestamp,
            ),
        )

        payload = json.loads(requests[0].content)["payload"]
        assert payload["conversion_identifier"] == f"leadsync_email_{int(timestamp.timestamp() * 1000)}"
        assert payload["contact_uuid"] == "c-9"
        assert len(payload["cf_activity_body"]) == 500
        assert result.external_id == "ev-1"
