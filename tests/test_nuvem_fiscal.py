"""Tests for the Nuvem Fiscal gateway (HTTP session mocked)."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests
from fakes import make_client, make_company

from fiscalia.domain.errors import (
    FiscalProviderDefect,
    FiscalProviderError,
    FiscalProviderUnavailable,
)
from fiscalia.domain.invoices import InvoiceIssuanceRequest, InvoiceStatus
from fiscalia.fiscal.nuvem_fiscal import NuvemFiscalGateway
from fiscalia.infra.settings import FiscalProviderConfig

CONFIG = FiscalProviderConfig(client_id="cid", client_secret="secret")


def _response(status=200, body=None, content=True):
    response = MagicMock()
    response.status_code = status
    response.content = b"{...}" if content else b""
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body if body is not None else {}
    return response


@pytest.fixture
def session():
    session = MagicMock()
    session.post.return_value = _response(body={"access_token": "tok-1", "expires_in": 3600})
    return session


@pytest.fixture
def gateway(session, clock):
    return NuvemFiscalGateway(CONFIG, clock=clock, session=session)


class TestToken:
    def test_token_is_cached_until_close_to_expiry(self, gateway, session, clock):
        session.request.return_value = _response(body={"status": "autorizada"})

        gateway.check_status("nfse-1")
        gateway.check_status("nfse-1")
        assert session.post.call_count == 1

        clock.advance(seconds=3600 - 59)
        gateway.check_status("nfse-1")
        assert session.post.call_count == 2

    def test_client_credentials_grant(self, gateway, session):
        session.request.return_value = _response(body={"status": "autorizada"})

        gateway.check_status("nfse-1")

        url = session.post.call_args[0][0]
        data = session.post.call_args.kwargs["data"]
        assert url == "https://auth.nuvemfiscal.com.br/oauth/token"
        assert data["grant_type"] == "client_credentials"
        assert session.request.call_args.kwargs["headers"] == {"Authorization": "Bearer tok-1"}

    def test_401_invalidates_token(self, gateway, session):
        session.request.return_value = _response(status=401, body={"error": "invalid_token"})

        with pytest.raises(FiscalProviderError):
            gateway.check_status("nfse-1")
        session.request.return_value = _response(body={"status": "autorizada"})
        gateway.check_status("nfse-1")

        assert session.post.call_count == 2

    def test_bad_credentials(self, gateway, session):
        session.post.return_value = _response(status=401)

        with pytest.raises(FiscalProviderError) as exc_info:
            gateway.check_status("nfse-1")

        assert exc_info.value.provider_code == "INVALID_CREDENTIALS"
        session.request.assert_not_called()


class TestErrorMapping:
    def test_timeout_is_unavailable(self, gateway, session):
        session.request.side_effect = requests.Timeout()

        with pytest.raises(FiscalProviderUnavailable) as exc_info:
            gateway.cancel("nfse-1", "motivo")

        assert exc_info.value.retryable

    def test_5xx_is_unavailable(self, gateway, session):
        session.request.return_value = _response(status=503, body={"message": "manutenção"})

        with pytest.raises(FiscalProviderUnavailable) as exc_info:
            gateway.cancel("nfse-1", "motivo")

        assert exc_info.value.status == 503

    def test_4xx_carries_provider_details(self, gateway, session):
        body = {
            "error": {
                "code": "ValidationFailed",
                "message": "Dados inválidos",
                "errors": [{"code": "E042", "message": "Código de serviço inválido"}],
            }
        }
        session.request.return_value = _response(status=400, body=body)

        with pytest.raises(FiscalProviderError) as exc_info:
            gateway.cancel("nfse-1", "motivo")

        assert exc_info.value.status == 400
        assert exc_info.value.provider_code == "ValidationFailed"
        assert exc_info.value.message == "Dados inválidos: Código de serviço inválido"

    def test_non_json_success_is_defect(self, gateway, session):
        session.request.return_value = _response(body=ValueError("html"))

        with pytest.raises(FiscalProviderDefect):
            gateway.cancel("nfse-1", "motivo")


class TestNfse:
    def _request(self, **overrides):
        values = dict(
            company_id="comp-1",
            amount=Decimal("1500.00"),
            service_description="Consultoria",
            service_code="1701",
        )
        values.update(overrides)
        return InvoiceIssuanceRequest(**values)

    def test_emit_builds_dps(self, gateway, session):
        session.request.return_value = _response(
            body={"id": "nfse-9", "status": "autorizada", "numero": 77, "codigo_verificacao": "ABC"}
        )

        result = gateway.emit_invoice(make_company(), make_client(), self._request())

        assert result.provider_id == "nfse-9"
        assert result.status is InvoiceStatus.AUTHORIZED
        assert result.number == "77"
        method, url = session.request.call_args[0]
        payload = session.request.call_args.kwargs["json"]
        assert (method, url) == ("POST", "https://api.sandbox.nuvemfiscal.com.br/nfse/dps")
        assert payload["ambiente"] == "homologacao"
        dps = payload["infDPS"]
        assert dps["toma"] == {"xNome": "João Silva", "CPF": "52998224725"}
        assert dps["serv"]["cServ"]["cTribNac"] == "1701"
        assert dps["valores"]["vServPrest"]["vServ"] == 1500.0
        assert dps["valores"]["trib"]["tribMun"]["pAliq"] == 5.0

    def test_emit_without_id_is_defect(self, gateway, session):
        session.request.return_value = _response(body={"status": "processando"})

        with pytest.raises(FiscalProviderDefect):
            gateway.emit_invoice(make_company(), make_client(), self._request())

    def test_status_message_from_mensagens(self, gateway, session):
        session.request.return_value = _response(
            body={"status": "erro", "mensagens": [{"descricao": "CNPJ do tomador inválido"}]}
        )

        result = gateway.check_status("nfse-1")

        assert result.status is InvoiceStatus.REJECTED
        assert result.message == "CNPJ do tomador inválido"

    def test_status_404_means_processing(self, gateway, session):
        session.request.return_value = _response(status=404, body={})

        assert gateway.check_status("nfse-1").status is InvoiceStatus.PROCESSING

    @pytest.mark.parametrize(
        "raw, expected",
        [("concluido", InvoiceStatus.CANCELED), ("pendente", InvoiceStatus.PROCESSING)],
    )
    def test_cancel_status(self, gateway, session, raw, expected):
        session.request.return_value = _response(body={"status": raw})

        result = gateway.cancel("nfse-1", "serviço não prestado")

        assert result.status is expected
        assert session.request.call_args.kwargs["json"] == {"motivo": "serviço não prestado"}

    def test_cancel_refused(self, gateway, session):
        session.request.return_value = _response(body={"status": "erro", "message": "Prazo expirado"})

        with pytest.raises(FiscalProviderError, match="Prazo expirado"):
            gateway.cancel("nfse-1", "motivo")


class TestCompanies:
    def test_register(self, gateway, session):
        session.request.return_value = _response(body={"id": "emp-77"})

        result = gateway.register_company(make_company(provider_id=None))

        assert result.provider_id == "emp-77"
        assert session.request.call_args.kwargs["json"]["cpf_cnpj"] == "11222333000181"

    def test_register_existing_company(self, gateway, session):
        session.request.side_effect = [
            _response(status=409, body={"message": "Empresa já existe"}),
            _response(body={"cpf_cnpj": "11222333000181"}),
        ]

        result = gateway.register_company(make_company(provider_id=None))

        assert result.provider_id == "11222333000181"
        assert session.request.call_args_list[1][0] == (
            "GET",
            "https://api.sandbox.nuvemfiscal.com.br/empresas/11222333000181",
        )

    def test_connection(self, gateway, session):
        session.request.return_value = _response(body={"status": "ativo"})

        assert gateway.check_connection(make_company()).connected

    def test_inactive_company(self, gateway, session):
        session.request.return_value = _response(body={"status": "suspenso"})

        result = gateway.check_connection(make_company())

        assert not result.connected
        assert "suspenso" in result.message

    def test_unregistered_company(self, gateway, session):
        assert not gateway.check_connection(make_company(provider_id=None)).connected
        session.request.assert_not_called()


class TestMunicipalities:
    def test_supported_answer_is_cached(self, gateway, session):
        session.request.return_value = _response(body={"codigo_ibge": "3550308"})

        assert gateway.is_municipality_supported("3550308") is True
        assert gateway.is_municipality_supported("3550308") is True
        assert session.request.call_count == 1

    def test_not_found_is_unsupported(self, gateway, session):
        session.request.return_value = _response(status=404, body={})

        assert gateway.is_municipality_supported("9999999") is False

    def test_provider_failure_is_unknown(self, gateway, session):
        session.request.return_value = _response(status=503, body={})

        assert gateway.is_municipality_supported("3550308") is None
        assert gateway.is_municipality_supported("3550308") is None
        assert session.request.call_count == 2
