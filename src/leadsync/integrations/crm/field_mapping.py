"""Field mapping between lead attributes and CRM properties.

Defines:
- DEFAULT_FIELD_MAPPINGS: Built-in internal -> provider field table per CRM,
  stored on a connection when it is first authorized.
- SYNCED_LEAD_FIELDS: Lead attributes that participate in CRM sync.
- lead_sync_record(): Flatten a lead into the internal field dict.
- to_provider_payload(): Forward mapping for pushes, with custom-field nesting.
- invert_mapping(): Reverse table (provider field -> internal field) for pulls.
- from_provider_properties(): Reverse mapping of pulled properties.
"""

from __future__ import annotations

from typing import Any

from src.leadsync.integrations.crm.schemas import CrmProvider, FieldMapping
from src.leadsync.leads.schemas import LeadRead, is_present


# ── Default Mappings ───────────────────────────────────────────────────────
# cf_ is RD Station's custom-field namespace.

DEFAULT_FIELD_MAPPINGS: dict[CrmProvider, FieldMapping] = {
    CrmProvider.HUBSPOT: FieldMapping(
        leads={
            "trade_name": "company",
            "legal_name": "name",
            "cnpj": "hs_additional_id",
            "email": "email",
            "phone": "phone",
            "company_size": "company_size",
            "cnae": "industry",
            "registration_status": "hs_lead_status",
        },
        activities={
            "channel": "hs_activity_type",
            "message_content": "hs_body_preview",
            "type": "hs_engagement_type",
        },
    ),
    CrmProvider.PIPEDRIVE: FieldMapping(
        leads={
            "trade_name": "name",
            "legal_name": "org_name",
            "cnpj": "custom_cnpj",
            "email": "email",
            "phone": "phone",
            "company_size": "custom_porte",
        },
    ),
    CrmProvider.RDSTATION: FieldMapping(
        leads={
            "trade_name": "name",
            "legal_name": "company",
            "cnpj": "cf_cnpj",
            "email": "email",
            "phone": "mobile_phone",
            "company_size": "cf_porte",
        },
    ),
}

SYNCED_LEAD_FIELDS = (
    "trade_name",
    "legal_name",
    "cnpj",
    "email",
    "phone",
    "company_size",
    "cnae",
    "registration_status",
)


def default_mapping(provider: CrmProvider) -> FieldMapping:
    """Return a copy of the provider's default mapping."""
    return DEFAULT_FIELD_MAPPINGS[provider].model_copy(deep=True)


# ── Conversion Functions ───────────────────────────────────────────────────


def lead_sync_record(lead: LeadRead) -> dict[str, Any]:
    """Flatten the syncable attributes of a lead."""
    return {name: getattr(lead, name) for name in SYNCED_LEAD_FIELDS}


def to_provider_payload(
    record: dict[str, Any],
    mapping: dict[str, str],
    custom_prefix: str | None = None,
    custom_container: str = "custom_fields",
) -> dict[str, Any]:
    """Map an internal record onto provider field names.

    Args:
        record: Internal field name to value.
        mapping: Internal field name to provider field name.
        custom_prefix: Provider field prefix that denotes a custom field.
            Matching fields are nested under custom_container instead of
            being written at the top level.
        custom_container: Key of the nested custom-field object.

    Returns:
        Payload dict; null values and unmapped fields are left out.
    """
    payload: dict[str, Any] = {}
    custom: dict[str, Any] = {}

    for internal_field, provider_field in mapping.items():
        value = record.get(internal_field)
        if value is None:
            continue
        if custom_prefix and provider_field.startswith(custom_prefix):
            custom[provider_field] = value
        else:
            payload[provider_field] = value

    if custom:
        payload[custom_container] = custom
    return payload


def invert_mapping(mapping: dict[str, str]) -> dict[str, str]:
    """Build the provider field -> internal field table.

    When two internal fields map to the same provider field, the later
    entry wins.
    """
    return {provider_field: internal for internal, provider_field in mapping.items()}


def from_provider_properties(
    properties: dict[str, Any],
    reverse_mapping: dict[str, str],
) -> dict[str, Any]:
    """Map pulled provider properties back to internal field names.

    Unmapped properties are ignored, and so are empty values: a blank CRM
    property never erases local data.
    """
    result: dict[str, Any] = {}
    for provider_field, value in properties.items():
        internal = reverse_mapping.get(provider_field)
        if internal is None or not is_present(value):
            continue
        result[internal] = value
    return result
