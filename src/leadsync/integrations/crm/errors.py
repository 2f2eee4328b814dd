"""CRM integration error taxonomy.

Adapters never retry; every failed HTTP exchange surfaces as CRMAPIError
carrying the status code (None for transport failures) and the provider's
response body. Configuration problems and missing refresh tokens have
their own types.
"""

from __future__ import annotations


class CRMError(Exception):
    """Base class for CRM integration failures."""


class CRMAPIError(CRMError):
    """A provider HTTP call failed.

    Attributes:
        provider: Provider name.
        status_code: HTTP status, or None when no response was received.
        body: Raw response body (or transport error message).
    """

    def __init__(self, provider: str, status_code: int | None, body: str) -> None:
        self.provider = provider
        self.status_code = status_code
        self.body = body
        status = status_code if status_code is not None else "network"
        super().__init__(f"{provider} API error ({status}): {body}")


class NoRefreshTokenError(CRMError):
    """The credential bundle carries no refresh token."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"No refresh token available for {provider}")


class CRMConfigurationError(CRMError):
    """OAuth client id/secret for a provider is not configured."""


class UnsupportedProviderError(CRMError):
    """No adapter is registered for the requested provider name."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f'CRM provider "{provider}" is not supported')


class ConnectionNotFoundError(CRMError):
    """No CRM connection matches the given id or (org, provider)."""


class AmbiguousMatchError(CRMError):
    """A pulled contact matched more than one local lead."""


class SyncAlreadyRunningError(CRMError):
    """A sync was requested for a connection that is already syncing."""


class ConnectionValidationError(CRMError):
    """Freshly exchanged credentials failed the provider's validation call."""
