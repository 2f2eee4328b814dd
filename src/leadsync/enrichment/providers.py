"""Company enrichment providers -- CNPJ lookups normalized to CanonicalCompany.

Provides:
- EnrichmentProvider: ABC every company data source implements
- CnpjWsProvider: free tier (publica.cnpj.ws), cadastral and address data
  only, partners without CPF. Rate limit: 3 requests/minute.
- LemitProvider: premium, adds company email/phone, estimated revenue,
  and partners with full CPF (which feeds the person stage).

Each provider performs exactly one HTTP call per enrich() and classifies the
response: 404 -> EnrichmentNotFoundError, 429 -> EnrichmentRateLimitedError,
other non-2xx / timeout / network -> EnrichmentProviderError. Retrying is the
orchestrator's job.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog

from src.leadsync.enrichment.errors import (
    EnrichmentNotFoundError,
    EnrichmentProviderError,
    EnrichmentRateLimitedError,
)
from src.leadsync.leads.schemas import Address, CanonicalCompany, Partner

logger = structlog.get_logger(__name__)


class EnrichmentProvider(ABC):
    """Abstract company data source keyed by CNPJ.

    Attributes:
        name: Stable provider identifier stored on enrichment_attempts rows.
    """

    name: str

    @abstractmethod
    async def enrich(self, cnpj: str) -> CanonicalCompany:
        """Look up a company by CNPJ and return canonical data."""
        ...


class JSONLookupClient:
    """GET-and-classify helper shared by all enrichment providers.

    Args:
        timeout: Per-request timeout in seconds.
        headers: Extra headers (e.g. Authorization) sent on every request.
        not_found_message: Message carried by EnrichmentNotFoundError.
        transport: Optional httpx transport (tests inject a MockTransport).
    """

    def __init__(
        self,
        timeout: float,
        headers: dict[str, str] | None = None,
        not_found_message: str = "CNPJ not found",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._headers = {"Accept": "application/json", **(headers or {})}
        self._not_found_message = not_found_message
        self._transport = transport

    async def get_json(self, url: str) -> dict[str, Any]:
        """GET url and return the decoded JSON body or raise a classified error."""
        try:
            async with httpx.AsyncClient(
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException as exc:
            raise EnrichmentProviderError(f"Request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise EnrichmentProviderError(f"Request failed: {exc}") from exc

        if response.status_code == 429:
            raise EnrichmentRateLimitedError("Rate limit exceeded", status_code=429)
        if response.status_code == 404:
            raise EnrichmentNotFoundError(self._not_found_message, status_code=404)
        if not response.is_success:
            raise EnrichmentProviderError(
                f"HTTP {response.status_code}", status_code=response.status_code
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise EnrichmentProviderError("Invalid JSON response") from exc
        if not isinstance(payload, dict):
            raise EnrichmentProviderError("Unexpected response shape")
        return payload


def _nested(raw: dict[str, Any] | None, *keys: str) -> Any:
    """Walk nested dicts, returning None at the first missing level."""
    current: Any = raw
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


class CnpjWsProvider(EnrichmentProvider):
    """Free CNPJ.ws public API.

    Args:
        base_url: Lookup base URL; the CNPJ is appended as a path segment.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport for tests.
    """

    name = "cnpj_ws"

    def __init__(
        self,
        base_url: str = "https://publica.cnpj.ws/cnpj",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = JSONLookupClient(timeout=timeout, transport=transport)

    async def enrich(self, cnpj: str) -> CanonicalCompany:
        raw = await self._http.get_json(f"{self._base_url}/{cnpj}")
        return self._map_response(raw)

    @staticmethod
    def _map_response(raw: dict[str, Any]) -> CanonicalCompany:
        establishment = raw.get("estabelecimento")
        if not isinstance(establishment, dict):
            establishment = None

        address = None
        if establishment is not None:
            address = Address(
                street=_text(establishment.get("logradouro")),
                number=_text(establishment.get("numero")),
                complement=_text(establishment.get("complemento")),
                district=_text(establishment.get("bairro")),
                city=_text(_nested(establishment, "cidade", "nome")),
                state=_text(_nested(establishment, "estado", "sigla")),
                postal_code=_text(establishment.get("cep")),
            )

        partners = None
        if isinstance(raw.get("socios"), list):
            partners = [
                Partner(
                    name=str(s.get("nome") or ""),
                    role=_text(_nested(s, "qualificacao", "descricao")),
                )
                for s in raw["socios"]
            ]

        return CanonicalCompany(
            legal_name=_text(raw.get("razao_social")),
            trade_name=_text(_nested(establishment, "nome_fantasia")) or None,
            address=address,
            company_size=_text(_nested(raw, "porte", "descricao")),
            cnae=_text(_nested(establishment, "atividade_principal", "id")),
            registration_status=_text(_nested(establishment, "situacao_cadastral")) or None,
            partners=partners,
        )


class LemitProvider(EnrichmentProvider):
    """Premium Lemit company lookup ({api_url}/consulta/empresa/{cnpj}).

    Args:
        api_url: Lemit API base URL.
        token: Bearer token.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport for tests.
    """

    name = "lemit"

    def __init__(
        self,
        api_url: str,
        token: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._http = JSONLookupClient(
            timeout=timeout,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
        )

    async def enrich(self, cnpj: str) -> CanonicalCompany:
        raw = await self._http.get_json(f"{self._api_url}/consulta/empresa/{cnpj}")
        return self._map_response(raw)

    @staticmethod
    def _map_response(raw: dict[str, Any]) -> CanonicalCompany:
        company = raw.get("empresa")
        if not isinstance(company, dict):
            company = raw

        address_raw = company.get("endereco")
        address = None
        if isinstance(address_raw, dict):
            address = Address(
                street=_text(address_raw.get("logradouro")),
                number=_text(address_raw.get("numero")),
                complement=_text(address_raw.get("complemento")),
                district=_text(address_raw.get("bairro")),
                city=_text(address_raw.get("cidade")),
                state=_text(address_raw.get("uf")),
                postal_code=_text(address_raw.get("cep")),
            )

        # Best phone is the lowest-ranked mobile entry
        phone = None
        mobiles = company.get("celulares") or []
        if mobiles:
            best = sorted(mobiles, key=lambda c: c.get("ranking", 99))[0]
            phone = f"({best.get('ddd')}) {best.get('numero')}"

        emails = company.get("emails") or []
        email = _text(emails[0].get("email")) if emails else None

        partners = None
        if isinstance(company.get("socios"), list):
            partners = [
                Partner(
                    name=str(s.get("nome") or ""),
                    role=_text(s.get("qualificacao")),
                    cpf_masked=_text(s.get("cpf_masked")),
                    cpf=_text(s.get("cpf")),
                    ownership_share=s.get("participacao"),
                    capital=s.get("capital_social"),
                )
                for s in company["socios"]
            ]

        return CanonicalCompany(
            legal_name=_text(company.get("razao_social")),
            trade_name=_text(company.get("nome_fantasia")),
            address=address,
            company_size=_text(company.get("tipo")),
            cnae=_text(_nested(company, "cnae", "numero")),
            registration_status=_text(company.get("situacao")),
            email=email,
            phone=phone,
            partners=partners,
            estimated_revenue=company.get("faturamento_estimado"),
        )
