"""HubSpot CRM adapter.

- OAuth: app.hubspot.com consent, form-encoded token endpoint; the hub id
  returned on exchange is kept as portal_id.
- Pull: CRM v3 contact search, 100 per page, sorted by lastmodifieddate,
  with a lastmodifieddate >= since filter when since is given.
- Push: contacts are created/patched with the mapped properties.
- Activities: emails, notes, calls and meetings are separate engagement
  objects, each with its own contact association type id.
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

HUBSPOT_AUTH_URL = "https://app.hubspot.com/oauth/authorize"
HUBSPOT_TOKEN_URL = "https://api.hubapi.com/oauth/v1/token"
HUBSPOT_API_BASE = "https://api.hubapi.com"

HUBSPOT_SCOPES = [
    "crm.objects.contacts.read",
    "crm.objects.contacts.write",
    "crm.objects.companies.read",
    "crm.objects.companies.write",
    "crm.objects.deals.read",
    "crm.schemas.contacts.read",
    "sales-email-read",
    "timeline",
]

CONTACT_PROPERTIES = [
    "email",
    "firstname",
    "lastname",
    "company",
    "phone",
    "hs_additional_id",
    "hs_lead_status",
    "company_size",
    "industry",
]

# Engagement type -> (v3 object type, contact association type id)
ENGAGEMENT_OBJECTS: dict[str, tuple[str, int]] = {
    "EMAIL": ("emails", 198),
    "NOTE": ("notes", 202),
    "CALL": ("calls", 194),
    "MEETING": ("meetings", 200),
}


def engagement_type(activity_type: str) -> str:
    """Map an internal activity type onto HubSpot's engagement taxonomy."""
    if activity_type in ("email", "sent"):
        return "EMAIL"
    if activity_type in ("meeting", "meeting_scheduled"):
        return "MEETING"
    if activity_type == "call":
        return "CALL"
    return "NOTE"


class HubSpotAdapter(CRMAdapter):
    """HubSpot implementation of CRMAdapter."""

    provider = CrmProvider.HUBSPOT

    def auth_url(self, redirect_uri: str) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(HUBSPOT_SCOPES),
            "response_type": "code",
        }
        return f"{HUBSPOT_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> Credentials:
        client_id, client_secret = self._require_client()
        tokens = await self._request(
            "POST",
            HUBSPOT_TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            },
        )
        credentials = self._credentials_from_tokens(tokens)
        if tokens.get("hub_id") is not None:
            credentials.portal_id = str(tokens["hub_id"])
        return credentials

    async def refresh_token(self, credentials: Credentials) -> Credentials:
        if not credentials.refresh_token:
            raise NoRefreshTokenError(self.provider.value)
        client_id, client_secret = self._require_client()
        tokens = await self._request(
            "POST",
            HUBSPOT_TOKEN_URL,
            data={
                "grant_type": "refresh_token",
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
        after: str | None = None
        requested = list(dict.fromkeys([*CONTACT_PROPERTIES, *fields]))

        for _ in range(self._max_pages):
            body: dict[str, Any] = {
                "limit": DEFAULT_PAGE_SIZE,
                "properties": requested,
                "sorts": [{"propertyName": "lastmodifieddate", "direction": "DESCENDING"}],
            }
            if since is not None:
                body["filterGroups"] = [
                    {
                        "filters": [
                            {
                                "propertyName": "lastmodifieddate",
                                "operator": "GTE",
                                "value": str(int(since.timestamp() * 1000)),
                            }
                        ]
                    }
                ]
            if after:
                body["after"] = after

            result = await self._request(
                "POST",
                f"{HUBSPOT_API_BASE}/crm/v3/objects/contacts/search",
                access_token=credentials.access_token,
                json=body,
            )

            for item in result.get("results", []):
                properties = item.get("properties") or {}
                contacts.append(
                    CrmContact(
                        external_id=str(item["id"]),
                        email=properties.get("email"),
                        company_name=properties.get("company"),
                        phone=properties.get("phone"),
                        properties=properties,
                        updated_at=item.get("updatedAt"),
                    )
                )

            after = ((result.get("paging") or {}).get("next") or {}).get("after")
            if not after:
                break

        logger.debug("hubspot.contacts_pulled", count=len(contacts))
        return contacts

    async def push_contact(
        self,
        credentials: Credentials,
        record: dict[str, Any],
        mapping: dict[str, str],
        external_id: str | None = None,
    ) -> PushResult:
        properties = to_provider_payload(record, mapping)

        if external_id:
            await self._request(
                "PATCH",
                f"{HUBSPOT_API_BASE}/crm/v3/objects/contacts/{external_id}",
                access_token=credentials.access_token,
                json={"properties": properties},
            )
            return PushResult(external_id=external_id)

        result = await self._request(
            "POST",
            f"{HUBSPOT_API_BASE}/crm/v3/objects/contacts",
            access_token=credentials.access_token,
            json={"properties": properties},
        )
        return PushResult(external_id=str(result["id"]))

    async def push_activity(self, credentials: Credentials, activity: ActivityPush) -> PushResult:
        kind = engagement_type(activity.type)
        object_type, association_type_id = ENGAGEMENT_OBJECTS[kind]

        properties: dict[str, Any] = {
            "hs_timestamp": str(int(activity.timestamp.timestamp() * 1000)),
            "hs_activity_type": kind,
        }
        if kind == "NOTE":
            properties["hs_note_body"] = f"{activity.subject}\n\n{activity.body}"
        else:
            properties["hs_body_preview"] = activity.body

        engagement = {
            "properties": properties,
            "associations": [
                {
                    "to": {"id": activity.contact_external_id},
                    "types": [
                        {
                            "associationCategory": "HUBSPOT_DEFINED",
                            "associationTypeId": association_type_id,
                        }
                    ],
                }
            ],
        }

        result = await self._request(
            "POST",
            f"{HUBSPOT_API_BASE}/crm/v3/objects/{object_type}",
            access_token=credentials.access_token,
            json=engagement,
        )
        return PushResult(external_id=str(result["id"]))

    async def _check_credentials(self, credentials: Credentials) -> None:
        await self._request(
            "GET",
            f"{HUBSPOT_API_BASE}/integrations/v1/me",
            access_token=credentials.access_token,
        )
