"""Unit tests for the CNPJ.ws, Lemit and Lemit CPF providers.

HTTP is served by httpx.MockTransport; each test checks the request the
provider sends and how the response is classified or mapped.
"""

from __future__ import annotations

import httpx
import pytest

from src.leadsync.enrichment.errors import (
    EnrichmentNotFoundError,
    EnrichmentProviderError,
    EnrichmentRateLimitedError,
)
from src.leadsync.enrichment.person import LemitCpfProvider
from src.leadsync.enrichment.providers import CnpjWsProvider, LemitProvider


CNPJ_WS_BODY = {
    "razao_social": "ACME TECNOLOGIA LTDA",
    "porte": {"descricao": "Demais"},
    "estabelecimento": {
        "nome_fantasia": "Acme",
        "logradouro": "Rua das Flores",
        "numero": "100",
        "complemento": None,
        "bairro": "Centro",
        "cidade": {"nome": "Campinas"},
        "estado": {"sigla": "SP"},
        "cep": "13010000",
        "atividade_principal": {"id": "6201501"},
        "situacao_cadastral": "Ativa",
    },
    "socios": [
        {"nome": "MARIA SILVA", "qualificacao": {"descricao": "Socio-Administrador"}},
    ],
}

LEMIT_BODY = {
    "empresa": {
        "razao_social": "ACME TECNOLOGIA LTDA",
        "nome_fantasia": "Acme",
        "tipo": "EPP",
        "cnae": {"numero": "6201501"},
        "situacao": "ATIVA",
        "faturamento_estimado": 1500000.0,
        "endereco": {"logradouro": "Rua das Flores", "numero": 100, "uf": "SP", "cep": "13010000"},
        "celulares": [
            {"ddd": 11, "numero": "98888-0000", "ranking": 3},
            {"ddd": 19, "numero": "97777-0000", "ranking": 1},
        ],
        "emails": [{"email": "contato@acme.com.br"}],
        "socios": [
            {
                "nome": "MARIA SILVA",
                "qualificacao": "Socio",
                "cpf_masked": "***.111.111-**",
                "cpf": "11111111111",
                "participacao": 50.0,
                "capital_social": 100000.0,
            }
        ],
    }
}


def _transport(status_code: int, json_body=None, seen: list | None = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=json_body)

    return httpx.MockTransport(handler)


class TestCnpjWsProvider:
    @pytest.mark.asyncio
    async def test_maps_response_to_canonical_company(self):
        seen: list[httpx.Request] = []
        provider = CnpjWsProvider(transport=_transport(200, CNPJ_WS_BODY, seen))

        company = await provider.enrich("12345678000190")

        assert str(seen[0].url) == "https://publica.cnpj.ws/cnpj/12345678000190"
        assert seen[0].headers["Accept"] == "application/json"
        assert company.legal_name == "ACME TECNOLOGIA LTDA"
        assert company.trade_name == "Acme"
        assert company.company_size == "Demais"
        assert company.cnae == "6201501"
        assert company.registration_status == "Ativa"
        assert company.address.city == "Campinas"
        assert company.address.state == "SP"
        assert company.partners[0].name == "MARIA SILVA"
        assert company.partners[0].role == "Socio-Administrador"
        assert company.partners[0].cpf is None

    @pytest.mark.asyncio
    async def test_404_is_not_found(self):
        provider = CnpjWsProvider(transport=_transport(404, {"detail": "not found"}))
        with pytest.raises(EnrichmentNotFoundError) as exc_info:
            await provider.enrich("00000000000000")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_429_is_rate_limited(self):
        provider = CnpjWsProvider(transport=_transport(429, {}))
        with pytest.raises(EnrichmentRateLimitedError):
            await provider.enrich("12345678000190")

    @pytest.mark.asyncio
    async def test_500_is_provider_error(self):
        provider = CnpjWsProvider(transport=_transport(500, {}))
        with pytest.raises(EnrichmentProviderError, match="HTTP 500"):
            await provider.enrich("12345678000190")

    @pytest.mark.asyncio
    async def test_network_failure_is_provider_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = CnpjWsProvider(transport=httpx.MockTransport(handler))
        with pytest.raises(EnrichmentProviderError, match="Request failed"):
            await provider.enrich("12345678000190")

    @pytest.mark.asyncio
    async def test_timeout_is_provider_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        provider = CnpjWsProvider(transport=httpx.MockTransport(handler))
        with pytest.raises(EnrichmentProviderError, match="timed out"):
            await provider.enrich("12345678000190")


class TestLemitProvider:
    @pytest.mark.asyncio
    async def test_maps_premium_fields(self):
        seen: list[httpx.Request] = []
        provider = LemitProvider(
            "https://api.lemit.test/", "secret-token", transport=_transport(200, LEMIT_BODY, seen)
        )

        company = await provider.enrich("12345678000190")

        assert str(seen[0].url) == "https://api.lemit.test/consulta/empresa/12345678000190"
        assert seen[0].headers["Authorization"] == "Bearer secret-token"
        assert company.company_size == "EPP"
        assert company.estimated_revenue == 1500000.0
        assert company.email == "contato@acme.com.br"
        assert company.address.number == "100"
        partner = company.partners[0]
        assert partner.cpf == "11111111111"
        assert partner.ownership_share == 50.0
        assert partner.capital == 100000.0

    @pytest.mark.asyncio
    async def test_best_phone_is_lowest_ranking(self):
        provider = LemitProvider("https://api.lemit.test", "t", transport=_transport(200, LEMIT_BODY))
        company = await provider.enrich("12345678000190")
        assert company.phone == "(19) 97777-0000"

    @pytest.mark.asyncio
    async def test_accepts_unwrapped_body(self):
        provider = LemitProvider(
            "https://api.lemit.test", "t", transport=_transport(200, LEMIT_BODY["empresa"])
        )
        company = await provider.enrich("12345678000190")
        assert company.legal_name == "ACME TECNOLOGIA LTDA"


class TestLemitCpfProvider:
    @pytest.mark.asyncio
    async def test_maps_person_contacts(self):
        body = {
            "pessoa": {
                "nome": "MARIA SILVA",
                "emails": [{"email": "maria@acme.com.br", "ranking": 1}, {"email": ""}],
                "celulares": [{"ddd": 11, "numero": "99999-0000", "whatsapp": True, "ranking": 1}],
                "enderecos": [
                    {"endereco": "Rua A, 10", "bairro": "Centro", "cidade": "Campinas",
                     "uf": "SP", "cep": 13010000},
                    {"endereco": "Rua B, 20"},
                ],
            }
        }
        seen: list[httpx.Request] = []
        provider = LemitCpfProvider("https://api.lemit.test", "t", transport=_transport(200, body, seen))

        person = await provider.enrich("11111111111")

        assert str(seen[0].url) == "https://api.lemit.test/consulta/pessoa/11111111111"
        assert person.name == "MARIA SILVA"
        assert [e.email for e in person.emails] == ["maria@acme.com.br"]
        assert person.phones[0].formatted == "(11) 99999-0000"
        assert person.phones[0].whatsapp is True
        assert person.address.street == "Rua A, 10"
        assert person.address.postal_code == "13010000"

    @pytest.mark.asyncio
    async def test_404_is_cpf_not_found(self):
        provider = LemitCpfProvider("https://api.lemit.test", "t", transport=_transport(404, {}))
        with pytest.raises(EnrichmentNotFoundError, match="CPF not found"):
            await provider.enrich("00000000000")
