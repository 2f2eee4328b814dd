"""Company and person enrichment -- providers, retrying orchestrator, batch worker.

Company providers (CnpjWsProvider free tier, LemitProvider premium) map
CNPJ lookups onto CanonicalCompany. EnrichmentOrchestrator retries them with
exponential backoff and merges results into the lead; the two-stage
coordinator adds per-partner contact data from LemitCpfProvider.
"""

from src.leadsync.enrichment.errors import (
    EnrichmentError,
    EnrichmentNotFoundError,
    EnrichmentProviderError,
    EnrichmentRateLimitedError,
)
from src.leadsync.enrichment.orchestrator import (
    EnrichmentOrchestrator,
    TwoStageEnrichmentCoordinator,
)
from src.leadsync.enrichment.person import LemitCpfProvider
from src.leadsync.enrichment.providers import (
    CnpjWsProvider,
    EnrichmentProvider,
    LemitProvider,
)
from src.leadsync.enrichment.worker import BatchSummary, EnrichmentWorker

__all__ = [
    "EnrichmentError",
    "EnrichmentNotFoundError",
    "EnrichmentProviderError",
    "EnrichmentRateLimitedError",
    "EnrichmentProvider",
    "CnpjWsProvider",
    "LemitProvider",
    "LemitCpfProvider",
    "EnrichmentOrchestrator",
    "TwoStageEnrichmentCoordinator",
    "EnrichmentWorker",
    "BatchSummary",
]
