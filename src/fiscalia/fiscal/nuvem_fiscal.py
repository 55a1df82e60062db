"""Nuvem Fiscal REST gateway (NFS-e Padrão Nacional).

Authentication is OAuth2 client credentials; the access token is cached
until shortly before it expires. Municipality support answers are cached
for MUNICIPALITY_CACHE_TTL.

Error mapping:
- timeout, connection error, 5xx -> FiscalProviderUnavailable (retryable)
- body that is not the JSON we expect -> FiscalProviderDefect
- other 4xx -> FiscalProviderError with the provider status and code

Payloads carry client documents: never log them, only ids and status.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import requests

from fiscalia.domain.clients import ClientRecord
from fiscalia.domain.companies import Company
from fiscalia.domain.entities import DocumentKind
from fiscalia.domain.errors import (
    FiscalProviderDefect,
    FiscalProviderError,
    FiscalProviderUnavailable,
)
from fiscalia.domain.extraction import DEFAULT_SERVICE_TEXT
from fiscalia.domain.invoices import (
    EmissionResult,
    InvoiceIssuanceRequest,
    InvoiceStatus,
    StatusResult,
)
from fiscalia.domain.ports import ConnectionResult, RegistrationResult
from fiscalia.domain.regimes import default_iss_rate
from fiscalia.infra.cache import TTLCache
from fiscalia.infra.settings import FiscalProviderConfig
from fiscalia.infra.time import Clock, SystemClock
from fiscalia.observability.logging import get_logger
from fiscalia.observability.redaction import safe_log_context, shorten_technical

logger = get_logger(__name__)

OAUTH_SCOPE = "empresa nfse cep cnpj"
TOKEN_SAFETY_MARGIN = timedelta(seconds=60)
MUNICIPALITY_CACHE_TTL = timedelta(hours=24)

# National service-list code used when none is chosen
DEFAULT_NATIONAL_SERVICE_CODE = "010601"

_ALREADY_EXISTS_MARKERS = ("já existe", "already exists", "duplicado", "duplicate")
_INACTIVE_STATUSES = frozenset({"inativo", "suspenso", "cancelado", "bloqueado", "desabilitado"})

_CANCELLATION_STATUS = {
    "concluido": InvoiceStatus.CANCELED,
    "cancelada": InvoiceStatus.CANCELED,
    "cancelado": InvoiceStatus.CANCELED,
    "pendente": InvoiceStatus.PROCESSING,
    "processando": InvoiceStatus.PROCESSING,
}


def _provider_message(body: Any, fallback: str) -> tuple[str, str | None]:
    """Pull (message, code) out of a provider error body."""
    if not isinstance(body, dict):
        return fallback, None
    error = body.get("error")
    if isinstance(error, str):
        return error, None
    if isinstance(error, dict):
        message = error.get("message") or fallback
        code = error.get("code")
        details = error.get("errors")
        if isinstance(details, list) and details:
            parts = []
            for item in details:
                if isinstance(item, dict):
                    parts.append(str(item.get("message") or item.get("code") or ""))
                    code = code or item.get("code")
                else:
                    parts.append(str(item))
            joined = "; ".join(p for p in parts if p)
            if joined:
                message = f"{message}: {joined}"
        return message, code
    if body.get("message"):
        return str(body["message"]), body.get("code")
    return fallback, None


def _digits(value: str | None) -> str:
    return "".join(ch for ch in (value or "") if ch.isdigit())


class NuvemFiscalGateway:
    """FiscalGateway backed by the Nuvem Fiscal API.

    Args:
        config: Credentials, environment and timeout.
        clock: Drives token and municipality cache expiry.
        session: Optional requests session (tests inject one).
    """

    def __init__(
        self,
        config: FiscalProviderConfig,
        *,
        clock: Clock | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._config = config
        self._clock = clock or SystemClock()
        self._session = session or requests.Session()
        self._token_cache: TTLCache[str] = TTLCache(timedelta(minutes=30), clock=self._clock, max_entries=1)
        self._municipality_cache: TTLCache[bool] = TTLCache(
            MUNICIPALITY_CACHE_TTL, clock=self._clock, max_entries=1000
        )

    @property
    def ambiente(self) -> str:
        return "producao" if self._config.environment == "production" else "homologacao"

    # ── Transport ──────────────────────────────────────────────

    def _fetch_token(self) -> str:
        try:
            response = self._session.post(
                self._config.auth_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._config.client_id,
                    "client_secret": self._config.client_secret,
                    "scope": OAUTH_SCOPE,
                },
                timeout=self._config.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise FiscalProviderUnavailable(
                "Falha ao autenticar na Nuvem Fiscal.", code="network_error", data={"error": type(exc).__name__}
            )

        if response.status_code >= 500:
            raise FiscalProviderUnavailable("Falha ao autenticar na Nuvem Fiscal.", status=response.status_code)
        if response.status_code >= 400:
            raise FiscalProviderError(
                "Credenciais da Nuvem Fiscal inválidas.",
                status=response.status_code,
                provider_code="INVALID_CREDENTIALS",
            )
        try:
            body = response.json()
            token = body["access_token"]
            expires_in = int(body.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError):
            raise FiscalProviderDefect("Resposta de autenticação inválida da Nuvem Fiscal.")

        ttl = timedelta(seconds=expires_in) - TOKEN_SAFETY_MARGIN
        if ttl > timedelta(0):
            self._token_cache.set("access_token", token, ttl)
        return token

    def _token(self) -> str:
        return self._token_cache.get("access_token") or self._fetch_token()

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Authenticated JSON request.

        Raises:
            FiscalProviderUnavailable: Timeout, connection error or 5xx.
            FiscalProviderDefect: Success status with a non-JSON or non-object body.
            FiscalProviderError: Any other 4xx.
        """
        url = f"{self._config.api_base_url}{path}"
        log_ctx = safe_log_context(method=method, path=path.split("/")[1] if "/" in path else path)

        try:
            response = self._session.request(
                method,
                url,
                json=payload,
                headers={"Authorization": f"Bearer {self._token()}"},
                timeout=self._config.timeout_seconds,
            )
        except requests.Timeout:
            logger.warning("fiscal provider timeout", extra={"extra_fields": log_ctx})
            raise FiscalProviderUnavailable("Timeout ao conectar com a Nuvem Fiscal.", code="timeout")
        except requests.RequestException as exc:
            logger.warning(
                "fiscal provider unreachable",
                extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(exc).__name__)},
            )
            raise FiscalProviderUnavailable("Falha de rede ao conectar com a Nuvem Fiscal.", code="network_error")

        if response.status_code == 401:
            # Token revoked before its expiry
            self._token_cache.invalidate("access_token")

        try:
            body: Any = response.json() if response.content else {}
        except ValueError:
            body = None

        if response.status_code >= 500:
            message, provider_code = _provider_message(body, f"Nuvem Fiscal respondeu {response.status_code}")
            logger.warning(
                "fiscal provider server error",
                extra={"extra_fields": safe_log_context(**log_ctx, status=response.status_code)},
            )
            raise FiscalProviderUnavailable(message, status=response.status_code, provider_code=provider_code)

        if response.status_code >= 400:
            message, provider_code = _provider_message(body, f"Nuvem Fiscal respondeu {response.status_code}")
            logger.info(
                "fiscal provider rejected request",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx,
                        status=response.status_code,
                        provider_code=provider_code,
                        detail=shorten_technical(message),
                    )
                },
            )
            raise FiscalProviderError(message, status=response.status_code, provider_code=provider_code)

        if not isinstance(body, dict):
            logger.error(
                "fiscal provider returned malformed body",
                extra={"extra_fields": safe_log_context(**log_ctx, status=response.status_code)},
            )
            raise FiscalProviderDefect("Resposta inválida da Nuvem Fiscal.", status=response.status_code)
        return body

    # ── Companies ──────────────────────────────────────────────

    def register_company(self, company: Company) -> RegistrationResult:
        cnpj = _digits(company.cnpj)
        payload = {
            "cpf_cnpj": cnpj,
            "nome_razao_social": company.name,
            "nome_fantasia": company.name,
            "endereco": {
                "codigo_municipio": company.municipality_code,
                "cidade": company.municipality,
            },
        }
        try:
            body = self._request("POST", "/empresas", payload)
        except FiscalProviderError as exc:
            already_exists = exc.status in (400, 409, 422) and any(
                marker in exc.message.lower() for marker in _ALREADY_EXISTS_MARKERS
            )
            if not already_exists:
                raise
            logger.info(
                "company already registered at provider",
                extra={"extra_fields": safe_log_context(company_id=company.id)},
            )
            try:
                body = self._request("GET", f"/empresas/{cnpj}")
            except FiscalProviderError:
                body = {}

        provider_id = str(body.get("id") or body.get("cpf_cnpj") or cnpj)
        return RegistrationResult(provider_id=provider_id, status="not_connected")

    def check_connection(self, company: Company) -> ConnectionResult:
        if not company.provider_id:
            return ConnectionResult(
                status="failed",
                message="Empresa não registrada na Nuvem Fiscal. Registre a empresa primeiro.",
            )
        try:
            body = self._request("GET", f"/empresas/{company.provider_id}")
        except FiscalProviderError as exc:
            if exc.status == 404:
                return ConnectionResult(status="failed", message="Empresa não encontrada na Nuvem Fiscal.")
            if exc.status in (401, 403):
                return ConnectionResult(status="failed", message="Erro de autorização com a Nuvem Fiscal.")
            raise

        status = str(body.get("status") or "").lower()
        if status in _INACTIVE_STATUSES:
            return ConnectionResult(status="failed", message=f"Empresa com status: {status}.")
        return ConnectionResult(status="connected", message="Conexão com a prefeitura estabelecida com sucesso.")

    def is_municipality_supported(self, ibge_code: str) -> bool | None:
        """True/False from the provider's city list; None when it cannot tell."""
        cached = self._municipality_cache.get(ibge_code)
        if cached is not None:
            return cached
        try:
            self._request("GET", f"/nfse/cidades/{ibge_code}")
            supported = True
        except FiscalProviderError as exc:
            if exc.status != 404:
                logger.warning(
                    "municipality support unknown",
                    extra={"extra_fields": safe_log_context(ibge_code=ibge_code, error_code=exc.code)},
                )
                return None
            supported = False
        self._municipality_cache.set(ibge_code, supported)
        return supported

    # ── NFS-e ──────────────────────────────────────────────────

    def _dps_payload(
        self, company: Company, client: ClientRecord, request: InvoiceIssuanceRequest
    ) -> dict[str, Any]:
        iss_rate = request.iss_rate if request.iss_rate is not None else default_iss_rate(company.regime)
        tomador: dict[str, Any] = {"xNome": client.name}
        if client.kind is DocumentKind.CPF:
            tomador["CPF"] = client.document
        else:
            tomador["CNPJ"] = client.document

        today = self._clock.now()
        return {
            "provedor": "padrao",
            "ambiente": self.ambiente,
            "infDPS": {
                "tpAmb": 1 if self._config.environment == "production" else 2,
                "dhEmi": today.isoformat(),
                "verAplic": "1.0",
                "dCompet": today.date().isoformat(),
                "prest": {"CNPJ": _digits(company.cnpj)},
                "toma": tomador,
                "serv": {
                    "cServ": {
                        "cTribNac": request.service_code or DEFAULT_NATIONAL_SERVICE_CODE,
                        "xDescServ": request.service_description or DEFAULT_SERVICE_TEXT,
                    }
                },
                "valores": {
                    "vServPrest": {"vServ": float(request.amount)},
                    "trib": {"tribMun": {"tribISSQN": 1, "pAliq": float(iss_rate)}},
                },
            },
        }

    def emit_invoice(
        self,
        company: Company,
        client: ClientRecord,
        request: InvoiceIssuanceRequest,
    ) -> EmissionResult:
        body = self._request("POST", "/nfse/dps", self._dps_payload(company, client, request))
        provider_id = body.get("id")
        if not provider_id:
            raise FiscalProviderDefect("Nuvem Fiscal não retornou o identificador da nota.")

        status = InvoiceStatus.from_provider(body.get("status") or "processando")
        logger.info(
            "nfse submitted",
            extra={
                "extra_fields": safe_log_context(
                    company_id=company.id, provider_id=provider_id, status=status.value
                )
            },
        )
        return EmissionResult(
            provider_id=str(provider_id),
            status=status,
            number=str(body["numero"]) if body.get("numero") else None,
            verification_code=body.get("codigo_verificacao"),
            pdf_url=body.get("pdf_url"),
            xml_url=body.get("xml_url"),
            message=body.get("mensagem") or body.get("message"),
        )

    def check_status(self, provider_id: str) -> StatusResult:
        try:
            body = self._request("GET", f"/nfse/{provider_id}")
        except FiscalProviderError as exc:
            if exc.status == 404:
                return StatusResult(
                    status=InvoiceStatus.PROCESSING,
                    message="Nota fiscal ainda em processamento na prefeitura.",
                )
            raise

        message = body.get("mensagem") or body.get("message")
        mensagens = body.get("mensagens")
        if not message and isinstance(mensagens, list) and mensagens:
            first = mensagens[0]
            message = first.get("descricao") if isinstance(first, dict) else str(first)

        return StatusResult(
            status=InvoiceStatus.from_provider(body.get("status")),
            number=str(body["numero"]) if body.get("numero") else None,
            verification_code=body.get("codigo_verificacao") or body.get("codigoVerificacao"),
            pdf_url=body.get("pdf_url") or body.get("pdfUrl"),
            xml_url=body.get("xml_url") or body.get("xmlUrl"),
            message=message,
            raw={"status": body.get("status")},
        )

    def cancel(self, provider_id: str, reason: str) -> StatusResult:
        body = self._request("POST", f"/nfse/{provider_id}/cancelamento", {"motivo": reason})
        raw_status = str(body.get("status") or "").lower()
        if raw_status in ("erro", "rejeitado", "rejeitada"):
            message, provider_code = _provider_message(body, "Cancelamento recusado pela prefeitura.")
            raise FiscalProviderError(message, status=200, provider_code=provider_code)

        status = _CANCELLATION_STATUS.get(raw_status, InvoiceStatus.PROCESSING)
        logger.info(
            "nfse cancellation submitted",
            extra={"extra_fields": safe_log_context(provider_id=provider_id, status=status.value)},
        )
        return StatusResult(status=status, message=body.get("mensagem"), raw={"status": raw_status})
