"""User-facing assistant texts (pt-BR).

Templates are rendered in-memory for the response only; rendered text
may contain client data and is never logged.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

CAPABILITY_MENU = (
    "Olá! Sou seu assistente fiscal. Posso ajudá-lo com:\n\n"
    "• Emitir notas fiscais (ex: \"Emitir nota de R$ 1.500 para João Silva\")\n"
    "• Consultar faturamento (ex: \"Qual meu faturamento este mês?\")\n"
    "• Ver impostos (ex: \"Quanto devo de impostos?\")\n"
    "• Listar notas (ex: \"Mostrar minhas últimas notas\")\n"
    "• Cadastrar clientes (ex: \"Cadastrar cliente Maria Souza CPF 123.456.789-09\")\n\n"
    "Como posso ajudar?"
)

TEMPLATES: dict[str, dict[str, Any]] = {
    "greeting": {
        "text": "Olá! Como posso ajudar com suas notas fiscais hoje?",
        "allowed_params": [],
    },
    "confirm_emit": {
        "text": (
            "Vou emitir uma nota fiscal:\n"
            "• Valor: {amount}\n"
            "• Cliente: {client}\n"
            "• Serviço: {service}\n\n"
            "Confirma a emissão? (sim/não)"
        ),
        "allowed_params": ["amount", "client", "service"],
    },
    "confirm_cancel": {
        "text": (
            "Vou cancelar a nota fiscal {invoice}.\n"
            "Motivo: {reason}\n\n"
            "Confirma o cancelamento? (sim/não)"
        ),
        "allowed_params": ["invoice", "reason"],
    },
    "confirm_create_client": {
        "text": (
            "Vou cadastrar o cliente:\n"
            "• Nome: {name}\n"
            "• {document_label}: {document}\n\n"
            "Confirma o cadastro? (sim/não)"
        ),
        "allowed_params": ["name", "document_label", "document"],
    },
    "client_created": {
        "text": "Cliente {name} cadastrado com sucesso.",
        "allowed_params": ["name"],
    },
    "ask_amount": {
        "text": "Qual o valor da nota fiscal{for_client}? (ex: R$ 1.500,00)",
        "allowed_params": ["for_client"],
    },
    "ask_client": {
        "text": "Para quem devo emitir a nota de {amount}? Informe o nome e o CPF/CNPJ do cliente.",
        "allowed_params": ["amount"],
    },
    "ask_document": {
        "text": (
            "Não encontrei o cliente {name} no seu cadastro. "
            "Informe o CPF ou CNPJ para eu cadastrá-lo e emitir a nota."
        ),
        "allowed_params": ["name"],
    },
    "ask_client_name": {
        "text": "Qual o nome do cliente com {document_label} {document}?",
        "allowed_params": ["document_label", "document"],
    },
    "select_client": {
        "text": (
            "Encontrei mais de um cliente com esse nome:\n{options}\n\n"
            "Qual deles? Responda com o número da opção ou informe o CPF/CNPJ."
        ),
        "allowed_params": ["options"],
    },
    "ask_invoice_reference": {
        "text": "Qual nota fiscal você quer {verb}? Informe o número da nota.",
        "allowed_params": ["verb"],
    },
    "ask_cancel_reason": {
        "text": (
            "Qual o motivo do cancelamento da nota {invoice}? "
            "A justificativa precisa ter pelo menos 15 caracteres."
        ),
        "allowed_params": ["invoice"],
    },
    "ask_client_query": {
        "text": "Qual cliente você procura? Informe o nome ou CPF/CNPJ.",
        "allowed_params": [],
    },
    "invoice_status": {
        "text": "A nota {invoice} está com status: {status}.",
        "allowed_params": ["invoice", "status"],
    },
    "invoice_not_found": {
        "text": "Não encontrei a nota {invoice}.",
        "allowed_params": ["invoice"],
    },
    "revenue": {
        "text": "Seu faturamento {period_label} foi de {total} ({count} nota(s) autorizada(s)).",
        "allowed_params": ["period_label", "total", "count"],
    },
    "invoice_list": {
        "text": "{title}:\n{lines}",
        "allowed_params": ["title", "lines"],
    },
    "invoice_list_empty": {
        "text": "Nenhuma nota encontrada{suffix}.",
        "allowed_params": ["suffix"],
    },
    "client_list": {
        "text": "Seus clientes:\n{lines}",
        "allowed_params": ["lines"],
    },
    "client_list_empty": {
        "text": "Você ainda não tem clientes cadastrados.",
        "allowed_params": [],
    },
    "client_search_empty": {
        "text": "Não encontrei nenhum cliente para \"{query}\".",
        "allowed_params": ["query"],
    },
    "taxes": {
        "text": (
            "Regime tributário: {regime}.\n"
            "Faturamento no mês: {month_total}\n"
            "ISS estimado ({rate}%): {iss}\n"
            "{note}"
        ),
        "allowed_params": ["regime", "month_total", "rate", "iss", "note"],
    },
    "mei_limit": {
        "text": "Você já usou {percent}% do limite anual do MEI ({used} de {limit}).",
        "allowed_params": ["percent", "used", "limit"],
    },
    "check_connection": {
        "text": "Vou verificar a conexão da empresa com a prefeitura.",
        "allowed_params": [],
    },
    "company_missing": {
        "text": "Você ainda não tem uma empresa cadastrada. Cadastre sua empresa para emitir notas.",
        "allowed_params": [],
    },
    "invoice_authorized": {
        "text": "Nota fiscal {number} emitida com sucesso para {client} no valor de {amount}.",
        "allowed_params": ["number", "client", "amount"],
    },
    "invoice_processing": {
        "text": (
            "Nota fiscal enviada para a prefeitura e em processamento. "
            "Avisaremos quando for autorizada."
        ),
        "allowed_params": [],
    },
    "invoice_rejected": {
        "text": "A nota fiscal {number} foi rejeitada. {reason}",
        "allowed_params": ["number", "reason"],
    },
    "invoice_canceled": {
        "text": "A nota fiscal {number} foi cancelada.",
        "allowed_params": ["number"],
    },
    "polling_exhausted": {
        "text": (
            "A nota fiscal {number} continua em processamento na prefeitura após várias verificações. "
            "Consulte o status novamente mais tarde."
        ),
        "allowed_params": ["number"],
    },
}


def render(template_key: str, params: dict[str, Any] | None = None) -> str:
    """Render a template. Only the template's allowed params are accepted.

    Raises:
        ValueError: If template_key unknown or params contains disallowed keys.
    """
    if template_key not in TEMPLATES:
        raise ValueError(f"Unknown template: {template_key}")

    params = params or {}
    template = TEMPLATES[template_key]
    extras = set(params) - set(template["allowed_params"])
    if extras:
        raise ValueError(f"Disallowed params for {template_key}: {extras}")

    return template["text"].format(**params)


def format_brl(value: Decimal | int | float | str) -> str:
    """Format an amount in Brazilian currency: Decimal("1500") -> "R$ 1.500,00"."""
    amount = Decimal(str(value)).quantize(Decimal("0.01"))
    sign = "-" if amount < 0 else ""
    grouped = f"{abs(amount):,.2f}"
    return f"{sign}R$ " + grouped.replace(",", "_").replace(".", ",").replace("_", ".")
