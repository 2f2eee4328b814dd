"""Pipedrive CRM adapter.

Pipedrive authenticates token requests with HTTP Basic (client id/secret)
and returns a per-company api_domain that all later calls must use; it is
kept on the credential bundle. Contacts are Pipedrive "persons".
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
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

PIPEDRIVE_AUTH_URL = "https://oauth.pipedrive.com/oauth/authorize"
PIPEDRIVE_TOKEN_URL = "https://oauth.pipedrive.com/oauth/token"
PIPEDRIVE_DEFAULT_API = "https://api.pipedrive.com"

ACTIVITY_TYPES = {
    "email": "email",
    "call": "call",
    "meeting": "meeting",
    "meeting_scheduled": "meeting",
}


def activity_type(internal_type: str) -> str:
    """Map an internal activity type onto a Pipedrive activity type key."""
    return ACTIVITY_TYPES.get(internal_type, "task")


def _primary(entries: list[dict[str, Any]] | None) -> str | None:
    """Pick the primary value of a Pipedrive email/phone list, else the first."""
    if not entries:
        return None
    for entry in entries:
        if entry.get("primary"):
            return entry.get("value")
    return entries[0].get("value")


def _parse_update_time(value: str | None) -> datetime | None:
    """Parse Pipedrive's "YYYY-MM-DD HH:MM:SS" UTC timestamps."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class PipedriveAdapter(CRMAdapter):
    """Pipedrive implementation of CRMAdapter."""

    provider = CrmProvider.PIPEDRIVE

    def _api_base(self, credentials: Credentials) -> str:
        return (credentials.api_domain or PIPEDRIVE_DEFAULT_API).rstrip("/")

    def auth_url(self, redirect_uri: str) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "state": self.provider.value,
        }
        return f"{PIPEDRIVE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> Credentials:
        client = self._require_client()
        tokens = await self._request(
            "POST",
            PIPEDRIVE_TOKEN_URL,
            auth=client,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )
        credentials = self._credentials_from_tokens(tokens)
        credentials.api_domain = tokens.get("api_domain")
        return credentials

    async def refresh_token(self, credentials: Credentials) -> Credentials:
        if not credentials.refresh_token:
            raise NoRefreshTokenError(self.provider.value)
        client = self._require_client()
        tokens = await self._request(
            "POST",
            PIPEDRIVE_TOKEN_URL,
            auth=client,
            data={
                "grant_type": "refresh_token",
                "refresh_token": credentials.refresh_token,
            },
        )
        refreshed = self._credentials_from_tokens(tokens, previous=credentials)
        if tokens.get("api_domain"):
            refreshed.api_domain = tokens["api_domain"]
        return refreshed

    async def pull_contacts(
        self,
        credentials: Credentials,
        since: datetime | None = None,
        fields: Iterable[str] = (),
    ) -> list[CrmContact]:
        contacts: list[CrmContact] = []
        base = self._api_base(credentials)
        start = 0

        for _ in range(self._max_pages):
            params: dict[str, Any] = {"limit": DEFAULT_PAGE_SIZE, "start": start}
            if since is not None:
                params["since_timestamp"] = since.astimezone(timezone.utc).strftime(
                    "%Y-%m-%d %H:%M:%S"
                )

            result = await self._request(
                "GET",
                f"{base}/api/v1/persons",
                access_token=credentials.access_token,
                params=params,
            )

            for person in result.get("data") or []:
                contacts.append(
                    CrmContact(
                        external_id=str(person["id"]),
                        email=_primary(person.get("email")),
                        company_name=person.get("org_name"),
                        phone=_primary(person.get("phone")),
                        properties={
                            "name": person.get("name"),
                            "org_name": person.get("org_name"),
                        },
                        updated_at=_parse_update_time(person.get("update_time")),
                    )
                )

            pagination = (result.get("additional_data") or {}).get("pagination") or {}
            if not pagination.get("more_items_in_collection"):
                break
            start = pagination.get("next_start") or start + DEFAULT_PAGE_SIZE

        logger.debug("pipedrive.contacts_pulled", count=len(contacts))
        return contacts

    async def push_contact(
        self,
        credentials: Credentials,
        record: dict[str, Any],
        mapping: dict[str, str],
        external_id: str | None = None,
    ) -> PushResult:
        body = to_provider_payload(record, mapping)
        # Persons take email/phone as lists of labelled values
        for list_field in ("email", "phone"):
            if list_field in body:
                body[list_field] = [{"value": body[list_field], "primary": True}]

        base = self._api_base(credentials)
        if external_id:
            await self._request(
                "PUT",
                f"{base}/api/v1/persons/{external_id}",
                access_token=credentials.access_token,
                json=body,
            )
            return PushResult(external_id=external_id)

        result = await self._request(
            "POST",
            f"{base}/api/v1/persons",
            access_token=credentials.access_token,
            json=body,
        )
        return PushResult(external_id=str(result["data"]["id"]))

    async def push_activity(self, credentials: Credentials, activity: ActivityPush) -> PushResult:
        result = await self._request(
            "POST",
            f"{self._api_base(credentials)}/api/v1/activities",
            access_token=credentials.access_token,
            json={
                "subject": activity.subject,
                "note": activity.body,
                "type": activity_type(activity.type),
                "person_id": int(activity.contact_external_id),
                "due_date": activity.timestamp.date().isoformat(),
                "done": 1,
            },
        )
        return PushResult(external_id=str(result["data"]["id"]))

    async def _check_credentials(self, credentials: Credentials) -> None:
        await self._request(
            "GET",
            f"{self._api_base(credentials)}/api/v1/users/me",
            access_token=credentials.access_token,
        )
