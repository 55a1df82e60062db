"""Error translation: technical errors -> stable category and pt-BR text.

Matching precedence:
1. known error code (exact, then normalised)
2. exact message
3. HTTP status, disambiguated by context (401 means user auth outside a
   fiscal operation and provider auth inside one)
4. substring heuristics over the message
5. generic fallback

The raw error text never reaches the user. A redacted, shortened copy is
kept in ``technical`` for server-side logs only.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from fiscalia.observability.redaction import shorten_technical


@dataclass(frozen=True)
class KnownError:
    category: str
    message: str
    explanation: str
    action: str


@dataclass(frozen=True)
class ErrorContext:
    """Where the error happened.

    Attributes:
        fiscal_operation: The failing call was made to the fiscal provider
            or the municipality.
        municipality: City name, substituted into the explanation.
        company_name: Company name, substituted into the explanation.
    """

    fiscal_operation: bool = False
    municipality: str | None = None
    company_name: str | None = None


@dataclass(frozen=True)
class ErrorTranslation:
    message: str
    explanation: str
    action: str
    category: str
    technical: str = ""

    def to_dict(self) -> dict[str, str]:
        """User-facing fields only."""
        return {
            "message": self.message,
            "explanation": self.explanation,
            "action": self.action,
            "category": self.category,
        }

    def for_user(self) -> str:
        return f"{self.message}\n\n{self.explanation}\n\n{self.action}"

    def for_assistant(self) -> str:
        return f"Ocorreu um problema: {self.message}. {self.explanation} {self.action}"


KNOWLEDGE_BASE: dict[str, KnownError] = {
    # User authentication
    "INVALID_CREDENTIALS": KnownError(
        "user_auth",
        "Email ou senha incorretos",
        "As credenciais informadas não correspondem a nenhuma conta cadastrada.",
        "Verifique se digitou o email e a senha corretamente.",
    ),
    "TOKEN_EXPIRED": KnownError(
        "user_auth",
        "Sessão expirada",
        "Sua sessão expirou por inatividade.",
        "Faça login novamente para continuar usando o sistema.",
    ),
    "NO_TOKEN": KnownError(
        "user_auth",
        "Sessão expirada",
        "Sua sessão expirou ou você não está logado.",
        "Faça login novamente para continuar.",
    ),
    # Fiscal authentication / authorization
    "MUNICIPALITY_AUTH_401": KnownError(
        "fiscal_auth",
        "Erro de autenticação com a prefeitura",
        "As credenciais de acesso não foram aceitas pelo sistema da prefeitura.",
        "Verifique suas credenciais (certificado digital ou usuário/senha municipal) e tente novamente.",
    ),
    "403": KnownError(
        "authorization",
        "Sem permissão para realizar esta operação",
        "Sua conta não tem permissão para emitir notas fiscais neste município.",
        "Entre em contato com a prefeitura para verificar suas permissões de emissão de NFS-e.",
    ),
    "404": KnownError(
        "not_found",
        "Recurso não encontrado",
        "A empresa ou nota fiscal não foi encontrada no sistema.",
        "Verifique se a empresa está corretamente registrada.",
    ),
    "405": KnownError(
        "api_error",
        "Serviço temporariamente indisponível",
        "O sistema de emissão de notas fiscais está em manutenção ou não suporta esta operação.",
        "Tente novamente em alguns instantes ou entre em contato com o suporte.",
    ),
    "400": KnownError(
        "validation",
        "Dados inválidos para emissão",
        "Alguns dados informados não estão no formato esperado pela prefeitura.",
        "Verifique os dados da nota fiscal (CNPJ, valores, código de serviço) e tente novamente.",
    ),
    # Validation
    "invalid_municipal_registration": KnownError(
        "validation",
        "Inscrição municipal inválida",
        "O número da inscrição municipal informado não é válido ou não está cadastrado na prefeitura.",
        "Verifique o número da inscrição municipal da empresa.",
    ),
    "invalidjson": KnownError(
        "validation",
        "Formato de dados inválido",
        "Os dados enviados para a prefeitura não estão no formato correto.",
        "Entre em contato com o suporte técnico para verificar a configuração.",
    ),
    "validationfailed": KnownError(
        "validation",
        "Validação de dados falhou",
        "Alguns dados não passaram na validação do provedor fiscal.",
        "Verifique se todos os campos obrigatórios estão preenchidos corretamente.",
    ),
    "service_code_not_allowed": KnownError(
        "validation",
        "Código de serviço não permitido",
        "O código de serviço informado não é permitido para este município ou regime tributário.",
        "Verifique o código de serviço e escolha um código válido para seu município.",
    ),
    "municipality_not_supported": KnownError(
        "validation",
        "Município não suportado",
        "Este município ainda não está disponível para emissão de NFS-e.",
        "Verifique se o município está correto ou entre em contato com o suporte.",
    ),
    "cpf_cnpj_diferente": KnownError(
        "certificate",
        "Certificado pertence a outra empresa",
        "O certificado digital foi emitido para um CNPJ diferente da empresa cadastrada.",
        "Faça o upload de um certificado digital que corresponda ao CNPJ da empresa.",
    ),
    "empresa_nao_encontrada": KnownError(
        "validation",
        "Empresa não registrada",
        "A empresa não foi encontrada no provedor fiscal.",
        "Use \"Verificar conexão com prefeitura\" para registrar a empresa primeiro.",
    ),
    # Plan and payment
    "INVOICE_LIMIT_REACHED": KnownError(
        "plan_limit",
        "Limite de notas fiscais atingido",
        "Você atingiu o limite mensal de notas fiscais do seu plano atual.",
        "Faça upgrade do seu plano ou use a opção Pay per Use para continuar emitindo.",
    ),
    "COMPANY_LIMIT_REACHED": KnownError(
        "plan_limit",
        "Limite de empresas atingido",
        "Você atingiu o limite de empresas permitidas no seu plano atual.",
        "Faça upgrade do seu plano para adicionar mais empresas.",
    ),
    "PAYMENT_METHOD_REQUIRED": KnownError(
        "payment",
        "Forma de pagamento não cadastrada",
        "No plano Pay per Use cada nota emitida é cobrada individualmente.",
        "Cadastre um cartão de crédito nas configurações de cobrança.",
    ),
    "PAYMENT_DECLINED": KnownError(
        "payment",
        "Pagamento recusado",
        "A cobrança desta emissão não foi aprovada pela operadora do cartão.",
        "Verifique os dados do cartão ou use outra forma de pagamento.",
    ),
    # Regime
    "MEI_ANNUAL_LIMIT_EXCEEDED": KnownError(
        "regime",
        "Limite anual do MEI excedido",
        "Esta nota faria o faturamento do ano ultrapassar o teto do MEI.",
        "Consulte seu contador sobre o desenquadramento do MEI antes de emitir.",
    ),
    "MEI_INVALID_ISS_RATE": KnownError(
        "regime",
        "Alíquota de ISS inválida para MEI",
        "Empresas MEI emitem notas com alíquota de ISS fixa de 5%.",
        "Emita a nota sem informar outra alíquota.",
    ),
    "INVALID_ISS_RATE": KnownError(
        "regime",
        "Alíquota de ISS inválida",
        "A alíquota de ISS deve estar entre 0% e 5%.",
        "Corrija a alíquota e tente novamente.",
    ),
    # System
    "municipality_offline": KnownError(
        "system",
        "Sistema da prefeitura temporariamente indisponível",
        "O sistema da prefeitura está temporariamente fora do ar ou em manutenção.",
        "Tente novamente em alguns minutos.",
    ),
    "timeout": KnownError(
        "system",
        "Tempo de resposta excedido",
        "A requisição demorou muito para ser processada.",
        "Tente novamente em alguns instantes.",
    ),
    "network_error": KnownError(
        "system",
        "Erro de conexão",
        "Não foi possível conectar com o servidor.",
        "Verifique sua conexão com a internet e tente novamente.",
    ),
    "fiscal_provider_unavailable": KnownError(
        "system",
        "Provedor fiscal temporariamente indisponível",
        "Não foi possível falar com o sistema de emissão de notas agora.",
        "Tente novamente em alguns minutos.",
    ),
    "fiscal_provider_defect": KnownError(
        "provider",
        "Falha no sistema de emissão",
        "O sistema da prefeitura retornou uma resposta inesperada. Isso não é um erro seu.",
        "Tente novamente mais tarde. Se o problema persistir, fale com o suporte.",
    ),
    "service_not_configured": KnownError(
        "configuration",
        "Integração fiscal não configurada",
        "O sistema de emissão de notas fiscais não está configurado no servidor.",
        "Entre em contato com o administrador do sistema.",
    ),
    # Certificates and credentials
    "certificate_expired": KnownError(
        "certificate",
        "Certificado digital expirado",
        "Seu certificado digital A1 expirou e não pode mais ser usado.",
        "Renove seu certificado digital e faça o upload novamente.",
    ),
    "certificate_invalid": KnownError(
        "certificate",
        "Certificado digital inválido",
        "O certificado digital fornecido não é válido ou está corrompido.",
        "Verifique se o arquivo do certificado está correto e faça o upload novamente.",
    ),
    "municipal_credentials_invalid": KnownError(
        "credentials",
        "Credenciais municipais inválidas",
        "O usuário ou senha informados não são válidos no sistema da prefeitura.",
        "Verifique suas credenciais municipais e tente novamente.",
    ),
    "fiscal_not_connected": KnownError(
        "credentials",
        "Conexão fiscal não estabelecida",
        "A empresa não está conectada ao sistema de emissão de notas fiscais.",
        "Configure o certificado digital em \"Minha Empresa\" e verifique a conexão com a prefeitura.",
    ),
    "company_not_registered": KnownError(
        "configuration",
        "Empresa não registrada no provedor fiscal",
        "A empresa precisa ser registrada no provedor fiscal antes de emitir notas.",
        "Acesse \"Minha Empresa\" e clique em \"Verificar conexão com prefeitura\".",
    ),
    "company_not_found": KnownError(
        "configuration",
        "Empresa não encontrada",
        "Não encontramos a empresa selecionada na sua conta.",
        "Cadastre sua empresa ou selecione outra.",
    ),
    "client_not_resolved": KnownError(
        "validation",
        "Cliente não identificado",
        "Não foi possível identificar o cliente da nota com segurança.",
        "Informe o CPF ou CNPJ do cliente.",
    ),
    "invoice_not_found": KnownError(
        "not_found",
        "Nota fiscal não encontrada",
        "Não encontramos a nota fiscal informada.",
        "Confira o número da nota e tente novamente.",
    ),
}

GENERIC_ERROR = KnownError(
    "unknown",
    "Erro ao processar solicitação",
    "Ocorreu um erro inesperado ao processar sua solicitação.",
    "Tente novamente em alguns instantes. Se o problema persistir, entre em contato com o suporte.",
)

# (substrings, key). Checked in order after the knowledge-base scan.
_HEURISTICS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("invalid email or password", "email ou senha"), "INVALID_CREDENTIALS"),
    (("inscrição municipal", "inscricao municipal", "municipal_registration"), "invalid_municipal_registration"),
    (("código de serviço", "codigo servico", "codigo de servico"), "service_code_not_allowed"),
    (("município não suportado", "municipio nao suportado"), "municipality_not_supported"),
    (("timeout", "timed out", "tempo excedido"), "timeout"),
    (("certificado expirado", "certificate expired"), "certificate_expired"),
    (("cpf/cnpj diferente", "cnpj diferente"), "cpf_cnpj_diferente"),
    (("certificado inválido", "certificado invalido", "invalid certificate"), "certificate_invalid"),
    (("credencial inválida", "credencial invalida", "credenciais inválidas"), "municipal_credentials_invalid"),
    (("credenciais fiscais não configuradas", "fiscal_not_connected"), "fiscal_not_connected"),
    (("empresa não registrada", "company_not_registered"), "company_not_registered"),
    (("offline", "indisponível", "indisponivel"), "municipality_offline"),
    (("network", "connection", "conexão", "conexao"), "network_error"),
    (("invalid json",), "invalidjson"),
    (("validation failed",), "validationfailed"),
    (("integração fiscal não configurada",), "service_not_configured"),
)

_FISCAL_MARKERS = ("prefeitura", "nuvem fiscal", "nfse", "nfs-e", "nota fiscal")


def _normalise_code(code: str) -> str:
    return re.sub(r"[^a-z0-9_]", "_", code.lower())


def _unpack(error: Any) -> tuple[str, str, int | None]:
    """Return (message, code, status) from an exception, dict or string."""
    if isinstance(error, str):
        return error, "", None
    if isinstance(error, BaseException):
        message = getattr(error, "message", None) or str(error)
        code = getattr(error, "provider_code", None) or getattr(error, "code", None) or ""
        status = getattr(error, "status", None) or getattr(error, "status_code", None)
        return str(message), str(code), status if isinstance(status, int) else None
    if isinstance(error, dict):
        message = error.get("message") or error.get("error") or json.dumps(error, default=str)
        status = error.get("status") or error.get("statusCode")
        return str(message), str(error.get("code") or ""), status if isinstance(status, int) else None
    return str(error), "", None


def _lookup(message: str, code: str, status: int | None, context: ErrorContext) -> KnownError:
    normalized = message.lower()

    # 1. Error code
    if code:
        for key in (code.upper(), _normalise_code(code)):
            if key in KNOWLEDGE_BASE:
                return KNOWLEDGE_BASE[key]

    # 2. Exact message
    if normalized in KNOWLEDGE_BASE:
        return KNOWLEDGE_BASE[normalized]

    # 3. Status code, disambiguated by context
    if status is not None:
        fiscal = context.fiscal_operation or context.municipality is not None or any(
            marker in normalized for marker in _FISCAL_MARKERS
        )
        if status == 401:
            return KNOWLEDGE_BASE["MUNICIPALITY_AUTH_401" if fiscal else "INVALID_CREDENTIALS"]
        if str(status) in KNOWLEDGE_BASE:
            return KNOWLEDGE_BASE[str(status)]

    # 4. Substring heuristics
    for key, known in KNOWLEDGE_BASE.items():
        if key.isdigit() or len(key) < 6:
            continue
        if key.lower() in normalized or known.message.lower() in normalized:
            return known
    for needles, key in _HEURISTICS:
        if any(needle in normalized for needle in needles):
            return KNOWLEDGE_BASE[key]

    # 5. Generic
    return GENERIC_ERROR


def translate_error(error: Any, context: ErrorContext | None = None) -> ErrorTranslation:
    """Translate an error into user-facing text.

    Args:
        error: Exception, provider error dict or message string.
        context: Where the error happened.

    Returns:
        ErrorTranslation. Domain errors flagged ``user_facing`` keep their
        own message; everything else uses the knowledge-base text.
    """
    context = context or ErrorContext()
    message, code, status = _unpack(error)
    known = _lookup(message, code, status, context)

    explanation = known.explanation
    if context.municipality:
        explanation = explanation.replace("prefeitura", f"prefeitura de {context.municipality}", 1)
    if context.company_name:
        explanation = explanation.replace("empresa", f"empresa {context.company_name}", 1)

    user_message = known.message
    if getattr(error, "user_facing", False) and isinstance(error, BaseException):
        user_message = message

    return ErrorTranslation(
        message=user_message,
        explanation=explanation,
        action=known.action,
        category=known.category,
        technical=shorten_technical(f"{code} {status or ''} {message}".strip()),
    )
