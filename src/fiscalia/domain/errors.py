"""Domain errors with stable codes.

Each error carries a stable ``code``, a message and optional ``data``.
Errors marked ``user_facing`` have messages written for the end user;
anything else must go through the error translator before display.
"""

from __future__ import annotations

from typing import Any


class FiscaliaError(Exception):
    """Base error. Subclasses set ``code`` and ``http_status``."""

    code = "INTERNAL_ERROR"
    http_status = 500
    user_facing = True
    default_message = "Erro ao processar solicitação."

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        self.data = data or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self.message, "code": self.code}
        if self.data:
            payload["data"] = self.data
        return payload


# Issuance gate failures


class IssuanceError(FiscaliaError):
    """Raised by an issuance gate. ``gate`` names the failed state."""

    gate = "requested"
    http_status = 400


class InvalidIssuanceRequest(IssuanceError):
    code = "INVALID_REQUEST"
    gate = "requested"
    default_message = "Dados da nota fiscal incompletos."


class CompanyNotFound(IssuanceError):
    code = "COMPANY_NOT_FOUND"
    gate = "requested"
    http_status = 404
    default_message = "Empresa não encontrada."


class InvoiceQuotaExceeded(IssuanceError):
    code = "INVOICE_LIMIT_REACHED"
    gate = "limit_checked"
    http_status = 403
    default_message = "Limite de notas fiscais do plano atingido."


class PaymentMethodRequired(IssuanceError):
    code = "PAYMENT_METHOD_REQUIRED"
    gate = "paid"
    http_status = 402
    default_message = "Cadastre um cartão de crédito para emitir notas no plano Pay per Use."


class PaymentDeclined(IssuanceError):
    code = "PAYMENT_DECLINED"
    gate = "paid"
    http_status = 402
    default_message = "O pagamento da emissão foi recusado."


class CompanyNotRegistered(IssuanceError):
    code = "COMPANY_NOT_REGISTERED"
    gate = "registered"
    default_message = "A empresa ainda não está registrada no provedor fiscal."


class MunicipalityNotSupported(IssuanceError):
    code = "MUNICIPALITY_NOT_SUPPORTED"
    gate = "municipality_supported"
    default_message = "O município da empresa não é suportado para emissão de NFS-e."


class FiscalCredentialsMissing(IssuanceError):
    code = "FISCAL_NOT_CONNECTED"
    gate = "credential_valid"
    default_message = "Configure o certificado digital ou as credenciais municipais da empresa."


class CertificateExpired(IssuanceError):
    code = "CERTIFICATE_EXPIRED"
    gate = "credential_valid"
    default_message = "O certificado digital da empresa está expirado."


class ClientUnresolved(IssuanceError):
    code = "CLIENT_NOT_RESOLVED"
    gate = "client_resolved"
    default_message = "Não foi possível identificar o cliente. Informe o CPF ou CNPJ."


class RegimeViolation(IssuanceError):
    """``code`` is the regime rule's code (e.g. MEI_ANNUAL_LIMIT_EXCEEDED)."""

    code = "REGIME_VALIDATION_ERROR"
    gate = "regime_validated"
    http_status = 422


class EmissionFailed(IssuanceError):
    code = "INVOICE_EMISSION_ERROR"
    gate = "emitted"
    http_status = 502
    default_message = "Não foi possível emitir a nota fiscal."


# Fiscal provider failures


class FiscalProviderError(FiscaliaError):
    """Error reported by the fiscal provider.

    Attributes:
        status: HTTP status from the provider, when there was one.
        provider_code: Provider error code, when present.
        retryable: Transport-level failure; retrying later may succeed.
    """

    code = "FISCAL_PROVIDER_ERROR"
    http_status = 502
    user_facing = False
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        provider_code: str | None = None,
        code: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=code, data=data)
        self.status = status
        self.provider_code = provider_code


class FiscalProviderUnavailable(FiscalProviderError):
    """Timeout, connection error or 5xx from the provider."""

    code = "FISCAL_PROVIDER_UNAVAILABLE"
    http_status = 503
    retryable = True


class FiscalProviderDefect(FiscalProviderError):
    """Provider answered with something we cannot interpret."""

    code = "FISCAL_PROVIDER_DEFECT"
    http_status = 502


class FiscalServiceNotConfigured(FiscaliaError):
    code = "SERVICE_NOT_CONFIGURED"
    http_status = 503
    default_message = "Integração fiscal não configurada."


# Action execution


class InvoiceNotFound(FiscaliaError):
    code = "INVOICE_NOT_FOUND"
    http_status = 404
    default_message = "Nota fiscal não encontrada."


class CancellationNotAllowed(FiscaliaError):
    """``code`` is the cancellation rule's code (e.g. TIME_LIMIT_EXCEEDED)."""

    code = "CANCELLATION_NOT_ALLOWED"
    http_status = 422


class InvalidMessage(FiscaliaError):
    code = "INVALID_MESSAGE"
    http_status = 400
    default_message = "Mensagem é obrigatória."


class InvalidActionData(FiscaliaError):
    code = "INVALID_ACTION_DATA"
    http_status = 400
    default_message = "Dados da ação inválidos."


class UnsupportedAction(FiscaliaError):
    code = "UNSUPPORTED_ACTION"
    http_status = 400
    default_message = "Ação não suportada."


# Collaborator failures


class LanguageModelError(FiscaliaError):
    """Generative model call failed (transport, timeout or malformed answer)."""

    code = "LANGUAGE_MODEL_ERROR"
    http_status = 502
    user_facing = False
