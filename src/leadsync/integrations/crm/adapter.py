"""CRM adapter abstract base class -- the contract every CRM provider implements.

Every provider (HubSpot, Pipedrive, RD Station) implements this ABC and is
resolved by name through CRMAdapterRegistry. The SyncOrchestrator only ever
talks to this interface.

Adapters make one HTTP exchange per operation and never retry. Failures
surface as CRMAPIError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import structlog

from src.leadsync.integrations.crm.errors import CRMAPIError, CRMConfigurationError
from src.leadsync.integrations.crm.schemas import (
    ActivityPush,
    CrmContact,
    CrmProvider,
    Credentials,
    PushResult,
)

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 100


class CRMAdapter(ABC):
    """Abstract interface for one external CRM.

    Args:
        client_id: OAuth client id for the provider.
        client_secret: OAuth client secret for the provider.
        timeout: Per-request timeout in seconds.
        max_pages: Upper bound on pages fetched by one pull_contacts call.
        transport: Optional httpx transport (tests inject a MockTransport).

    Methods:
        auth_url: Build the OAuth consent URL.
        exchange_code: Trade an authorization code for credentials.
        refresh_token: Renew an access token.
        pull_contacts: Fetch contacts, optionally only those modified since a time.
        push_contact: Create or update a contact from an internal record.
        push_activity: Attach an activity to a synced contact.
        validate_connection: Cheap authenticated call to check credentials.
    """

    provider: CrmProvider

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        timeout: float = 30.0,
        max_pages: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._max_pages = max_pages
        self._transport = transport

    # ── Contract ────────────────────────────────────────────────────────────

    @abstractmethod
    def auth_url(self, redirect_uri: str) -> str:
        """Return the provider's OAuth authorization URL."""
        ...

    @abstractmethod
    async def exchange_code(self, code: str, redirect_uri: str) -> Credentials:
        """Exchange an authorization code for a credential bundle."""
        ...

    @abstractmethod
    async def refresh_token(self, credentials: Credentials) -> Credentials:
        """Return renewed credentials; raises NoRefreshTokenError if none is stored."""
        ...

    @abstractmethod
    async def pull_contacts(
        self,
        credentials: Credentials,
        since: datetime | None = None,
        fields: Iterable[str] = (),
    ) -> list[CrmContact]:
        """Fetch contacts, paginating up to the page cap.

        fields names extra provider properties the caller needs (its mapped
        fields). Adapters whose API returns whole records may ignore it.
        """
        ...

    @abstractmethod
    async def push_contact(
        self,
        credentials: Credentials,
        record: dict[str, Any],
        mapping: dict[str, str],
        external_id: str | None = None,
    ) -> PushResult:
        """Update the contact when external_id is given, else create it."""
        ...

    @abstractmethod
    async def push_activity(self, credentials: Credentials, activity: ActivityPush) -> PushResult:
        """Create an activity on the provider, associated with the contact."""
        ...

    @abstractmethod
    async def _check_credentials(self, credentials: Credentials) -> None:
        """Authenticated no-op request used by validate_connection."""
        ...

    async def validate_connection(self, credentials: Credentials) -> bool:
        """Return True if the credentials work against the provider API."""
        try:
            await self._check_credentials(credentials)
        except CRMAPIError as exc:
            logger.warning(
                "crm.validation_failed",
                provider=self.provider.value,
                status_code=exc.status_code,
            )
            return False
        return True

    # ── Helpers ─────────────────────────────────────────────────────────────

    def _require_client(self) -> tuple[str, str]:
        """Return (client_id, client_secret) or raise CRMConfigurationError."""
        if not self._client_id or not self._client_secret:
            raise CRMConfigurationError(
                f"OAuth client id/secret not configured for {self.provider.value}"
            )
        return self._client_id, self._client_secret

    async def _request(
        self,
        method: str,
        url: str,
        access_token: str | None = None,
        **kwargs: Any,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Raises:
            CRMAPIError: Transport failure (status_code None) or non-2xx status.
        """
        headers = dict(kwargs.pop("headers", None) or {})
        if access_token is not None:
            headers["Authorization"] = f"Bearer {access_token}"

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise CRMAPIError(self.provider.value, None, str(exc)) from exc

        if not response.is_success:
            raise CRMAPIError(self.provider.value, response.status_code, response.text)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise CRMAPIError(
                self.provider.value, response.status_code, response.text
            ) from exc

    @staticmethod
    def _credentials_from_tokens(
        tokens: dict[str, Any], previous: Credentials | None = None
    ) -> Credentials:
        """Build a credential bundle from a token endpoint response.

        Fields the response omits (refresh token, provider extras) are
        carried over from previous.
        """
        base = previous.model_dump() if previous else {}
        expires_in = tokens.get("expires_in")
        base.update(
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token") or base.get("refresh_token"),
            expires_at=(
                datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
                if expires_in is not None
                else None
            ),
        )
        return Credentials(**base)
