"""Unit tests for CRM field mapping helpers."""

from __future__ import annotations

from src.leadsync.integrations.crm.field_mapping import (
    DEFAULT_FIELD_MAPPINGS,
    default_mapping,
    from_provider_properties,
    invert_mapping,
    lead_sync_record,
    to_provider_payload,
)
from src.leadsync.integrations.crm.schemas import CrmProvider
from src.leadsync.leads.schemas import LeadRead


class TestDefaultMappings:
    def test_every_provider_has_a_mapping(self):
        assert set(DEFAULT_FIELD_MAPPINGS) == set(CrmProvider)

    def test_default_mapping_is_a_copy(self):
        mapping = default_mapping(CrmProvider.HUBSPOT)
        mapping.leads["cnpj"] = "changed"
        assert DEFAULT_FIELD_MAPPINGS[CrmProvider.HUBSPOT].leads["cnpj"] == "hs_additional_id"

    def test_hubspot_activity_mapping(self):
        activities = default_mapping(CrmProvider.HUBSPOT).activities
        assert activities["message_content"] == "hs_body_preview"


class TestToProviderPayload:
    def test_rdstation_custom_fields_are_nested(self):
        mapping = default_mapping(CrmProvider.RDSTATION).leads
        payload = to_provider_payload(
            {"cnpj": "12345678000190", "trade_name": "Acme", "company_size": "EPP"},
            mapping,
            custom_prefix="cf_",
        )
        assert payload == {
            "name": "Acme",
            "custom_fields": {"cf_cnpj": "12345678000190", "cf_porte": "EPP"},
        }

    def test_null_values_are_left_out(self):
        payload = to_provider_payload({"email": None, "phone": "123"}, {"email": "email", "phone": "phone"})
        assert payload == {"phone": "123"}

    def test_without_prefix_everything_is_top_level(self):
        payload = to_provider_payload({"cnpj": "1"}, {"cnpj": "cf_cnpj"})
        assert payload == {"cf_cnpj": "1"}


class TestReverseMapping:
    def test_invert_mapping(self):
        assert invert_mapping({"trade_name": "company", "email": "email"}) == {
            "company": "trade_name",
            "email": "email",
        }

    def test_blank_and_unmapped_properties_ignored(self):
        reverse = {"company": "trade_name", "phone": "phone", "email": "email"}
        fields = from_provider_properties(
            {"company": "Acme", "phone": "", "email": None, "lifecyclestage": "lead"},
            reverse,
        )
        assert fields == {"trade_name": "Acme"}


class TestLeadSyncRecord:
    def test_flattens_synced_fields_only(self):
        lead = LeadRead(id="l", org_id="o", cnpj="1", trade_name="Acme", notes="private")
        record = lead_sync_record(lead)
        assert record["trade_name"] == "Acme"
        assert record["cnpj"] == "1"
        assert "notes" not in record
