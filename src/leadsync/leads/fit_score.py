"""Fit score engine -- rule-based lead quality score.

score_lead() is pure: it receives the lead's attribute view and the org's
rules and returns the sum of points of every matching rule, or None when
the org has no rules configured (unscored is not the same as zero).

FitScoreService wires the engine to the lead repository and recomputes
stored scores after enrichment or CRM pulls change scoring attributes.

Operators (all case-insensitive):
- contains: substring match
- equals: exact match
- not_empty: value present and not blank after trimming
- starts_with: prefix match
Unknown operators never match.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from src.leadsync.leads.repository import LeadRepository
from src.leadsync.leads.schemas import FitScoreRule, LeadRead

logger = structlog.get_logger(__name__)

RECALC_CHUNK_SIZE = 100


def _field_as_text(lead: Mapping[str, Any], field: str) -> str | None:
    """Read a field and coerce it to text; None when absent or null."""
    value = lead.get(field)
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _matches(field_value: str | None, operator: str, rule_value: str | None) -> bool:
    if operator == "not_empty":
        return field_value is not None and field_value.strip() != ""

    if not field_value or not rule_value:
        return False

    haystack = field_value.lower()
    needle = rule_value.lower()

    if operator == "contains":
        return needle in haystack
    if operator == "equals":
        return haystack == needle
    if operator == "starts_with":
        return haystack.startswith(needle)
    return False


def score_lead(lead: Mapping[str, Any], rules: Sequence[FitScoreRule]) -> int | None:
    """Calculate the fit score of a lead.

    Args:
        lead: Field name to value (see scoring_view()).
        rules: Rules to evaluate; points may be negative.

    Returns:
        Sum of points of matching rules, or None if rules is empty.
    """
    if not rules:
        return None

    score = 0
    for rule in rules:
        if _matches(_field_as_text(lead, rule.field), rule.operator, rule.value):
            score += rule.points
    return score


def scoring_view(lead: LeadRead) -> dict[str, Any]:
    """Flatten the lead attributes rules can reference.

    uf (state) is lifted out of the address so rules can target it.
    """
    return {
        "email": lead.email,
        "phone": lead.phone,
        "legal_name": lead.legal_name,
        "trade_name": lead.trade_name,
        "company_size": lead.company_size,
        "cnae": lead.cnae,
        "registration_status": lead.registration_status,
        "estimated_revenue": lead.estimated_revenue,
        "notes": lead.notes,
        "uf": lead.address.state if lead.address else None,
    }


class FitScoreService:
    """Recompute and persist fit scores.

    Args:
        repository: LeadRepository used to load rules and leads and store scores.
    """

    def __init__(self, repository: LeadRepository) -> None:
        self._repo = repository

    async def recalculate_lead(self, org_id: str, lead_id: str) -> int | None:
        """Recompute one lead's score and store it. Returns the new score."""
        lead = await self._repo.get_lead(lead_id)
        if lead is None:
            logger.warning("fit_score.lead_missing", lead_id=lead_id, org_id=org_id)
            return None
        return await self.rescore(lead)

    async def rescore(self, lead: LeadRead) -> int | None:
        """Score an already-loaded lead against its org's rules and store it."""
        rules = await self._repo.list_fit_score_rules(lead.org_id)
        score = score_lead(scoring_view(lead), rules)
        await self._repo.update_lead(lead.id, {"fit_score": score})
        return score

    async def recalculate_org(self, org_id: str) -> int:
        """Recompute the score of every active lead in an org.

        Returns:
            Number of leads updated.
        """
        rules = await self._repo.list_fit_score_rules(org_id)

        updated = 0
        after_id: str | None = None
        while True:
            chunk = await self._repo.list_active_leads(
                org_id, limit=RECALC_CHUNK_SIZE, after_id=after_id
            )
            for lead in chunk:
                score = score_lead(scoring_view(lead), rules)
                await self._repo.update_lead(lead.id, {"fit_score": score})
                updated += 1
            if len(chunk) < RECALC_CHUNK_SIZE:
                break
            after_id = chunk[-1].id

        logger.info("fit_score.org_recalculated", org_id=org_id, updated=updated)
        return updated
