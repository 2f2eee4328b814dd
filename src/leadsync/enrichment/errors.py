"""Enrichment provider error taxonomy.

Providers raise these instead of returning status codes so the
orchestrator's retry policy can key off the exception type:
EnrichmentNotFoundError is definitive and never retried, everything else
is transient.
"""

from __future__ import annotations


class EnrichmentError(Exception):
    """Base class for enrichment provider failures."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EnrichmentNotFoundError(EnrichmentError):
    """The provider has no record for the requested tax id (HTTP 404)."""


class EnrichmentRateLimitedError(EnrichmentError):
    """The provider throttled the request (HTTP 429)."""


class EnrichmentProviderError(EnrichmentError):
    """Any other failure: non-2xx status, timeout, or network error."""
