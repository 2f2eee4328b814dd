"""CRM integration layer -- provider adapters and bidirectional lead sync.

Provides the abstract CRMAdapter interface with concrete implementations:
- HubSpotAdapter, PipedriveAdapter, RDStationAdapter
- CRMAdapterRegistry: provider name -> adapter, built once per process
- SyncOrchestrator: pull, push and activity phases for one connection
- CrmConnectionService: OAuth callback handling, mappings, sync triggers

Local leads are the source of record; CRM contacts are linked to them
through cross-references written on first push.
"""

from src.leadsync.integrations.crm.adapter import CRMAdapter
from src.leadsync.integrations.crm.connections import CrmConnectionService
from src.leadsync.integrations.crm.field_mapping import (
    DEFAULT_FIELD_MAPPINGS,
    from_provider_properties,
    invert_mapping,
    to_provider_payload,
)
from src.leadsync.integrations.crm.hubspot import HubSpotAdapter
from src.leadsync.integrations.crm.pipedrive import PipedriveAdapter
from src.leadsync.integrations.crm.rdstation import RDStationAdapter
from src.leadsync.integrations.crm.registry import CRMAdapterRegistry
from src.leadsync.integrations.crm.sync import SyncOrchestrator

__all__ = [
    "CRMAdapter",
    "HubSpotAdapter",
    "PipedriveAdapter",
    "RDStationAdapter",
    "CRMAdapterRegistry",
    "SyncOrchestrator",
    "CrmConnectionService",
    "DEFAULT_FIELD_MAPPINGS",
    "to_provider_payload",
    "invert_mapping",
    "from_provider_properties",
]
