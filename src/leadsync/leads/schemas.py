"""Pydantic schemas for leads, canonical enrichment data, and fit score rules.

Defines:
- Enums: EnrichmentStatus, ContactEnrichmentStatus, AttemptStatus
- Canonical enrichment shapes: Address, PersonEmail, PersonPhone, Partner,
  CanonicalCompany, PersonContactData, EnrichmentResult
- Persistence payloads: LeadRead, InteractionRead, EnrichmentAttemptCreate
- Scoring: FitScoreRule
- is_present(): the single "has a value worth writing" predicate used by merges
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class EnrichmentStatus(str, Enum):
    """Lifecycle of a lead's company enrichment."""

    PENDING = "pending"
    ENRICHING = "enriching"
    ENRICHED = "enriched"
    ENRICHMENT_FAILED = "enrichment_failed"
    NOT_FOUND = "not_found"


class ContactEnrichmentStatus(str, Enum):
    """Per-partner outcome of the second (person) enrichment stage."""

    ENRICHED = "enriched"
    FAILED = "failed"


class AttemptStatus(str, Enum):
    """Outcome stored on each enrichment_attempts row."""

    ENRICHED = "enriched"
    NOT_FOUND = "not_found"
    ENRICHMENT_FAILED = "enrichment_failed"


def is_present(value: Any) -> bool:
    """Return True if a value should overwrite stored data.

    None and the empty string both mean "nothing returned". Zero, False and
    empty collections are real values.
    """
    return value is not None and value != ""


# ── Canonical Enrichment Data ───────────────────────────────────────────────


class Address(BaseModel):
    """Postal address (company headquarters or person residence)."""

    street: str | None = None
    number: str | None = None
    complement: str | None = None
    district: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None


class PersonEmail(BaseModel):
    email: str
    ranking: int = 99


class PersonPhone(BaseModel):
    area_code: int | None = None
    number: str
    whatsapp: bool = False
    ranking: int = 99

    @property
    def formatted(self) -> str:
        if self.area_code is None:
            return self.number
        return f"({self.area_code}) {self.number}"


class Partner(BaseModel):
    """A person associated with a company (partner/administrator).

    The free provider only knows name and role. The premium provider adds
    masked and full CPF plus ownership data; the person stage then attaches
    contact channels and sets contact_enrichment_status.
    """

    name: str
    role: str | None = None
    cpf_masked: str | None = None
    cpf: str | None = None
    ownership_share: float | None = None
    capital: float | None = None
    emails: list[PersonEmail] | None = None
    phones: list[PersonPhone] | None = None
    address: Address | None = None
    contact_enrichment_status: ContactEnrichmentStatus | None = None


class CanonicalCompany(BaseModel):
    """Provider-independent company data produced by every enrichment provider."""

    legal_name: str | None = None
    trade_name: str | None = None
    address: Address | None = None
    company_size: str | None = None
    cnae: str | None = None
    registration_status: str | None = None
    email: str | None = None
    phone: str | None = None
    partners: list[Partner] | None = None
    estimated_revenue: float | None = None


class PersonContactData(BaseModel):
    """Contact channels returned by a person (CPF) lookup."""

    name: str = ""
    emails: list[PersonEmail] = Field(default_factory=list)
    phones: list[PersonPhone] = Field(default_factory=list)
    address: Address | None = None


class EnrichmentResult(BaseModel):
    """Outcome of enriching one lead."""

    success: bool
    data: CanonicalCompany | None = None
    error: str | None = None


# ── Persistence Payloads ────────────────────────────────────────────────────


class LeadRead(BaseModel):
    """A lead row as seen by the enrichment and sync engines."""

    id: str
    org_id: str
    import_id: str | None = None
    cnpj: str
    legal_name: str | None = None
    trade_name: str | None = None
    address: Address | None = None
    company_size: str | None = None
    cnae: str | None = None
    registration_status: str | None = None
    email: str | None = None
    phone: str | None = None
    estimated_revenue: float | None = None
    partners: list[Partner] = Field(default_factory=list)
    enrichment_status: EnrichmentStatus = EnrichmentStatus.PENDING
    enriched_at: datetime | None = None
    fit_score: int | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class InteractionRead(BaseModel):
    """A cadence interaction (message sent, call made, meeting booked)."""

    id: str
    org_id: str
    lead_id: str
    channel: str
    type: str
    message_content: str | None = None
    created_at: datetime


class EnrichmentAttemptCreate(BaseModel):
    """One provider call, logged whether it succeeded or not."""

    lead_id: str
    provider: str
    status: AttemptStatus
    response_data: dict[str, Any] | None = None
    error_message: str | None = None
    duration_ms: int


# ── Scoring ─────────────────────────────────────────────────────────────────


class FitScoreRule(BaseModel):
    """One configurable scoring rule.

    operator is kept as a plain string: rules are user-configured and an
    unknown operator must load fine and simply never match.
    """

    points: int
    field: str
    operator: str
    value: str | None = None
