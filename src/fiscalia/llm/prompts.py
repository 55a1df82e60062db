"""Function schema, system prompt and argument normalisation for the model.

Each function maps 1:1 to an intent. Function-call arguments are turned
into the same ExtractedEntities the deterministic path produces; the
model is free to use Portuguese or English field names.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from fiscalia.domain.companies import Company
from fiscalia.domain.entities import (
    PERIOD_SYMBOLS,
    DocumentNumber,
    ExtractedEntities,
    MonetaryAmount,
    Period,
    PersonName,
    ServiceDescription,
)
from fiscalia.domain.extraction import (
    DEFAULT_SERVICE_CODE,
    extract_period,
    infer_service_code,
    parse_decimal,
)
from fiscalia.domain.intents import Intent
from fiscalia.domain.regimes import REGIME_LABELS

CLARIFICATION_FUNCTION = "ask_clarification"

FUNCTION_TO_INTENT: dict[str, Intent] = {
    "emit_invoice": Intent.EMIT_INVOICE,
    "cancel_invoice": Intent.CANCEL_INVOICE,
    "list_invoices": Intent.LIST_INVOICES,
    "get_last_invoice": Intent.LAST_INVOICE,
    "get_rejected_invoices": Intent.REJECTED_INVOICES,
    "check_invoice_status": Intent.INVOICE_STATUS,
    "get_revenue": Intent.REVENUE,
    "create_client": Intent.CREATE_CLIENT,
    "list_clients": Intent.LIST_CLIENTS,
    "search_client": Intent.SEARCH_CLIENT,
    "get_taxes": Intent.VIEW_TAXES,
    "check_fiscal_connection": Intent.CHECK_CONNECTION,
    "provide_help": Intent.HELP,
}

_PERIOD_PARAM = {
    "type": "string",
    "description": (
        "Período: today, yesterday, this_week, this_month, last_month, "
        "this_year, last_year, ou um mês por extenso (ex: março)."
    ),
}

_INVOICE_REF_PARAM = {"type": "string", "description": "Número ou id da nota fiscal."}


def _function(name: str, description: str, properties: dict | None = None, required=()) -> dict:
    return {
        "name": name,
        "description": description,
        "parameters": {
            "type": "object",
            "properties": properties or {},
            "required": list(required),
        },
    }


FUNCTION_DEFINITIONS: list[dict[str, Any]] = [
    _function(
        "emit_invoice",
        "Prepara a emissão de uma nota fiscal de serviço (NFS-e). Nunca emite sem confirmação.",
        {
            "amount": {"type": "number", "description": "Valor em reais."},
            "clientName": {"type": "string", "description": "Nome do cliente (tomador)."},
            "clientDocument": {"type": "string", "description": "CPF ou CNPJ do cliente."},
            "serviceDescription": {"type": "string", "description": "Descrição do serviço."},
        },
        required=("amount",),
    ),
    _function(
        "cancel_invoice",
        "Prepara o cancelamento de uma nota fiscal autorizada.",
        {
            "invoiceId": _INVOICE_REF_PARAM,
            "reason": {"type": "string", "description": "Justificativa (mínimo 15 caracteres)."},
        },
        required=("invoiceId",),
    ),
    _function("list_invoices", "Lista as notas fiscais emitidas.", {"period": _PERIOD_PARAM}),
    _function("get_last_invoice", "Mostra a última nota fiscal emitida."),
    _function("get_rejected_invoices", "Lista notas fiscais rejeitadas pela prefeitura."),
    _function(
        "check_invoice_status",
        "Consulta o status de uma nota fiscal.",
        {"invoiceId": _INVOICE_REF_PARAM},
        required=("invoiceId",),
    ),
    _function("get_revenue", "Informa o faturamento em um período.", {"period": _PERIOD_PARAM}),
    _function(
        "create_client",
        "Prepara o cadastro de um cliente.",
        {
            "name": {"type": "string", "description": "Nome ou razão social."},
            "document": {"type": "string", "description": "CPF ou CNPJ."},
            "email": {"type": "string"},
        },
        required=("name", "document"),
    ),
    _function("list_clients", "Lista os clientes cadastrados."),
    _function(
        "search_client",
        "Busca um cliente por nome ou CPF/CNPJ.",
        {"query": {"type": "string", "description": "Nome ou documento."}},
        required=("query",),
    ),
    _function("get_taxes", "Estima os impostos do mês conforme o regime tributário."),
    _function("check_fiscal_connection", "Verifica a conexão da empresa com a prefeitura."),
    _function("provide_help", "Explica o que o assistente sabe fazer."),
    _function(
        CLARIFICATION_FUNCTION,
        "Pede uma informação que falta para atender o pedido.",
        {"question": {"type": "string", "description": "Pergunta ao usuário."}},
        required=("question",),
    ),
]

# Accepted argument names per field, in lookup order
ARGUMENT_ALIASES: dict[str, tuple[str, ...]] = {
    "amount": ("amount", "valor", "value", "total", "price", "preco"),
    "name": (
        "clientName", "client_name", "customerName", "customer_name", "name",
        "nome", "cliente", "client", "tomador",
    ),
    "document": (
        "clientDocument", "client_document", "document", "documento", "cpfCnpj",
        "cpf_cnpj", "cpf", "cnpj",
    ),
    "service": (
        "serviceDescription", "service_description", "service", "servico",
        "description", "descricao",
    ),
    "period": ("period", "periodo", "timeframe"),
    "invoice_ref": (
        "invoiceId", "invoice_id", "invoiceNumber", "invoice_number", "invoiceRef",
        "number", "numero", "nota",
    ),
    "reason": ("reason", "motivo", "justificativa", "justification"),
    "query": ("query", "search", "termo", "busca"),
}

_PERIOD_SYNONYMS = {
    "hoje": "today",
    "ontem": "yesterday",
    "semana": "this_week",
    "current_month": "this_month",
    "month": "this_month",
    "mes": "this_month",
    "mes_atual": "this_month",
    "previous_month": "last_month",
    "mes_passado": "last_month",
    "year": "this_year",
    "ano": "this_year",
    "previous_year": "last_year",
    "ano_passado": "last_year",
}


def _first(arguments: dict[str, Any], field: str) -> Any:
    for key in ARGUMENT_ALIASES[field]:
        value = arguments.get(key)
        if value not in (None, ""):
            return value
    return None


def _amount(raw: Any) -> MonetaryAmount | None:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        try:
            value = Decimal(str(raw))
        except InvalidOperation:
            return None
    else:
        text = str(raw).lower().replace("r$", "").strip()
        value = parse_decimal(text)
    if value is None or value <= 0:
        return None
    return MonetaryAmount.from_decimal(value)


def _period(raw: Any, today: date) -> Period | None:
    if raw is None:
        return None
    key = str(raw).strip().lower().replace(" ", "_")
    key = _PERIOD_SYNONYMS.get(key, key)
    if key in PERIOD_SYMBOLS:
        return Period(symbol=key)
    return extract_period(str(raw), reference_date=today)


def _service(raw: Any) -> ServiceDescription | None:
    if raw is None:
        return None
    text = str(raw).strip()
    inferred = infer_service_code(text)
    return ServiceDescription(text=text, code=inferred[0] if inferred else DEFAULT_SERVICE_CODE)


def normalize_arguments(arguments: dict[str, Any], *, today: date) -> ExtractedEntities:
    """Turn function-call arguments into ExtractedEntities.

    Unparseable values are dropped, never guessed: an invalid document
    becomes None so the action builder asks for it again.
    """
    name = _first(arguments, "name")
    document = DocumentNumber.parse(str(_first(arguments, "document") or ""))

    query = _first(arguments, "query")
    if query is not None:
        query_document = DocumentNumber.parse(str(query))
        if query_document is not None:
            document = document or query_document
        elif not name:
            name = query

    ref = _first(arguments, "invoice_ref")
    reason = _first(arguments, "reason")
    return ExtractedEntities(
        amount=_amount(_first(arguments, "amount")),
        document=document,
        name=PersonName(str(name).strip()) if name else None,
        service=_service(_first(arguments, "service")),
        period=_period(_first(arguments, "period"), today),
        invoice_ref=str(ref).lstrip("#").strip() if ref is not None else None,
        reason=str(reason).strip() if reason else None,
    )


SYSTEM_PROMPT = """Você é o assistente fiscal do fiscalia. Ajuda prestadores de serviço a \
emitir e consultar notas fiscais de serviço (NFS-e).

Regras:
- Use sempre uma das funções disponíveis quando o pedido for uma operação fiscal.
- Nunca invente valores, nomes ou documentos. Se faltar algo, use ask_clarification.
- Valores são em reais. CPF tem 11 dígitos e CNPJ tem 14.
- Responda em português do Brasil, de forma curta.
- Hoje é {today}."""

_COMPANY_CONTEXT = """
Empresa: {name}
Regime tributário: {regime}{regime_note}"""

_REGIME_NOTES = {
    "mei": " (limite anual de R$ 81.000,00 e ISS fixo de 5%)",
    "simples_nacional": " (ISS entre 0% e 5%)",
}


def build_system_prompt(company: Company | None, today: date) -> str:
    prompt = SYSTEM_PROMPT.format(today=today.strftime("%d/%m/%Y"))
    if company is not None:
        prompt += _COMPANY_CONTEXT.format(
            name=company.name,
            regime=REGIME_LABELS[company.regime],
            regime_note=_REGIME_NOTES.get(company.regime.value, ""),
        )
    return prompt
