"""Person (CPF) enrichment provider -- the second stage of premium enrichment.

LemitCpfProvider looks up a partner by full CPF and returns personal
contact channels: ranked emails, mobile phones with WhatsApp flag, and the
first known residential address.
"""

from __future__ import annotations

from typing import Any

import httpx

from src.leadsync.enrichment.providers import JSONLookupClient, _text
from src.leadsync.leads.schemas import (
    Address,
    PersonContactData,
    PersonEmail,
    PersonPhone,
)


class LemitCpfProvider:
    """Lemit person lookup ({api_url}/consulta/pessoa/{cpf}).

    Args:
        api_url: Lemit API base URL.
        token: Bearer token.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport for tests.
    """

    name = "lemit_cpf"

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
            not_found_message="CPF not found",
            transport=transport,
        )

    async def enrich(self, cpf: str) -> PersonContactData:
        """Look up a person by CPF.

        Raises:
            EnrichmentNotFoundError: CPF unknown to the provider.
            EnrichmentRateLimitedError: Provider returned 429.
            EnrichmentProviderError: Any other failure.
        """
        raw = await self._http.get_json(f"{self._api_url}/consulta/pessoa/{cpf}")
        return self._map_response(raw)

    @staticmethod
    def _map_response(raw: dict[str, Any]) -> PersonContactData:
        person = raw.get("pessoa")
        if not isinstance(person, dict):
            person = raw

        emails = [
            PersonEmail(email=e["email"], ranking=e.get("ranking", 99))
            for e in person.get("emails") or []
            if e.get("email")
        ]
        phones = [
            PersonPhone(
                area_code=c.get("ddd"),
                number=str(c.get("numero", "")),
                whatsapp=bool(c.get("whatsapp", False)),
                ranking=c.get("ranking", 99),
            )
            for c in person.get("celulares") or []
        ]

        address = None
        addresses = person.get("enderecos") or []
        if addresses:
            first = addresses[0]
            address = Address(
                street=_text(first.get("endereco")),
                district=_text(first.get("bairro")),
                city=_text(first.get("cidade")),
                state=_text(first.get("uf")),
                postal_code=_text(first.get("cep")),
            )

        return PersonContactData(
            name=person.get("nome") or "",
            emails=emails,
            phones=phones,
            address=address,
        )
