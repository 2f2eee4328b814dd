"""RD Station CRM adapter.

RD Station's token endpoint takes a JSON body. Custom fields use the cf_
prefix and travel nested under custom_fields, both when pushing contacts
and when reading them back. Activities are recorded as conversion events.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any
from urllib.parse import urlencode

import structlog

from src.leadsync.integrations.crm.adapter import DEFAULT_PAGE_SIZE, CRMAdapter
from src.leadsync.integrations.crm.errors import NoRefreshTokenError
from src.leadsync.integrations.crm.field_mapping import to_provider_payload
from src.leadsync.integrations.crm.schemas import (
    ActivityPush,
    CrmContact,
    CrmProvider,
    Credentials,
    PushResult,
)

logger = structlog.get_logger(__name__)

RD_AUTH_URL = "https://api.rd.services/auth/dialog"
RD_TOKEN_URL = "https://api.rd.services/auth/token"
RD_API_BASE = "https://api.rd.services"

CUSTOM_FIELD_PREFIX = "cf_"
ACTIVITY_BODY_LIMIT = 500


class RDStationAdapter(CRMAdapter):
    """RD Station implementation of CRMAdapter."""

    provider = CrmProvider.RDSTATION

    def auth_url(self, redirect_uri: str) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
        }
        return f"{RD_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> Credentials:
        client_id, client_secret = self._require_client()
        tokens = await self._request(
            "POST",
            RD_TOKEN_URL,
            json={
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )
        return self._credentials_from_tokens(tokens)

    async def refresh_token(self, credentials: Credentials) -> Credentials:
        if not credentials.refresh_token:
            raise NoRefreshTokenError(self.provider.value)
        client_id, client_secret = self._require_client()
        tokens = await self._request(
            "POST",
            RD_TOKEN_URL,
            json={
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": credentials.refresh_token,
            },
        )
        return self._credentials_from_tokens(tokens, previous=credentials)

    async def pull_contacts(
        self,
        credentials: Credentials,
        since: datetime | None = None,
        fields: Iterable[str] = (),
    ) -> list[CrmContact]:
        contacts: list[CrmContact] = []
        page = 1

        for _ in range(self._max_pages):
            params: dict[str, Any] = {"page": page, "page_size": DEFAULT_PAGE_SIZE}
            if since is not None:
                params["updated_since"] = since.isoformat()

            result = await self._request(
                "GET",
                f"{RD_API_BASE}/platform/contacts",
                access_token=credentials.access_token,
                params=params,
            )

            for contact in result.get("contacts", []):
                contacts.append(
                    CrmContact(
                        external_id=str(contact["uuid"]),
                        email=contact.get("email"),
                        company_name=contact.get("company"),
                        phone=contact.get("mobile_phone"),
                        properties={
                            "name": contact.get("name"),
                            "company": contact.get("company"),
                            **(contact.get("custom_fields") or {}),
                        },
                        updated_at=contact.get("updated_at"),
                    )
                )

            if not result.get("has_more"):
                break
            page += 1

        logger.debug("rdstation.contacts_pulled", count=len(contacts))
        return contacts

    async def push_contact(
        self,
        credentials: Credentials,
        record: dict[str, Any],
        mapping: dict[str, str],
        external_id: str | None = None,
    ) -> PushResult:
        body = to_provider_payload(record, mapping, custom_prefix=CUSTOM_FIELD_PREFIX)

        if external_id:
            await self._request(
                "PATCH",
                f"{RD_API_BASE}/platform/contacts/{external_id}",
                access_token=credentials.access_token,
                json=body,
            )
            return PushResult(external_id=external_id)

        result = await self._request(
            "POST",
            f"{RD_API_BASE}/platform/contacts",
            access_token=credentials.access_token,
            json=body,
        )
        return PushResult(external_id=str(result["uuid"]))

    async def push_activity(self, credentials: Credentials, activity: ActivityPush) -> PushResult:
        timestamp_ms = int(activity.timestamp.timestamp() * 1000)
        result = await self._request(
            "POST",
            f"{RD_API_BASE}/platform/events",
            access_token=credentials.access_token,
            json={
                "event_type": "CONVERSION",
                "event_family": "CDP",
                "payload": {
                    "conversion_identifier": f"leadsync_{activity.type}_{timestamp_ms}",
                    "contact_uuid": activity.contact_external_id,
                    "cf_activity_type": activity.type,
                    "cf_activity_subject": activity.subject,
                    "cf_activity_body": activity.body[:ACTIVITY_BODY_LIMIT],
                },
            },
        )
        return PushResult(external_id=str(result["event_uuid"]))

    async def _check_credentials(self, credentials: Credentials) -> None:
        await self._request(
            "GET",
            f"{RD_API_BASE}/marketing/account_info",
            access_token=credentials.access_token,
        )
