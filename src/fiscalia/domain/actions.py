"""Action building: intent + entities + client resolution -> typed Action.

Missing information never raises; it becomes a non-mutating clarification
action whose data carries what was already captured, so the next message
can complete the request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from fiscalia.domain.clients import ClientRecord, ClientResolution, ResolutionStatus
from fiscalia.domain.entities import (
    DocumentKind,
    DocumentNumber,
    ExtractedEntities,
    MonetaryAmount,
    ServiceDescription,
)
from fiscalia.domain.extraction import DEFAULT_SERVICE_CODE, DEFAULT_SERVICE_TEXT
from fiscalia.domain.intents import Intent
from fiscalia.domain.templates import CAPABILITY_MENU, format_brl, render

MIN_CANCEL_REASON_LENGTH = 15


class ActionType(str, Enum):
    # Mutating
    EMIT_INVOICE = "emit_invoice"
    CANCEL_INVOICE = "cancel_invoice"
    CREATE_CLIENT = "create_client"
    # Read-only
    LIST_INVOICES = "list_invoices"
    LAST_INVOICE = "last_invoice"
    INVOICE_STATUS = "invoice_status"
    REJECTED_INVOICES = "rejected_invoices"
    PENDING_INVOICES = "pending_invoices"
    LIST_CLIENTS = "list_clients"
    SEARCH_CLIENT = "search_client"
    REVENUE = "revenue"
    VIEW_TAXES = "view_taxes"
    CHECK_CONNECTION = "check_connection"
    # Clarifications
    AWAITING_AMOUNT = "awaiting_amount"
    AWAITING_CLIENT = "awaiting_client"
    AWAITING_DOCUMENT = "awaiting_document"
    AWAITING_CLIENT_NAME = "awaiting_client_name"
    SELECT_CLIENT = "select_client"
    AWAITING_INVOICE_REFERENCE = "awaiting_invoice_reference"
    AWAITING_CANCEL_REASON = "awaiting_cancel_reason"
    CLARIFY = "clarify"
    # Conversational (no action in the response)
    GREETING = "greeting"
    HELP = "help"
    FALLBACK = "fallback"


# Fixed policy: never inferred from the message.
CONFIRMATION_POLICY: dict[ActionType, bool] = {
    ActionType.EMIT_INVOICE: True,
    ActionType.CANCEL_INVOICE: True,
    ActionType.CREATE_CLIENT: True,
    ActionType.LIST_INVOICES: False,
    ActionType.LAST_INVOICE: False,
    ActionType.INVOICE_STATUS: False,
    ActionType.REJECTED_INVOICES: False,
    ActionType.PENDING_INVOICES: False,
    ActionType.LIST_CLIENTS: False,
    ActionType.SEARCH_CLIENT: False,
    ActionType.REVENUE: False,
    ActionType.VIEW_TAXES: False,
    ActionType.CHECK_CONNECTION: False,
    ActionType.AWAITING_AMOUNT: False,
    ActionType.AWAITING_CLIENT: False,
    ActionType.AWAITING_DOCUMENT: False,
    ActionType.AWAITING_CLIENT_NAME: False,
    ActionType.SELECT_CLIENT: False,
    ActionType.AWAITING_INVOICE_REFERENCE: False,
    ActionType.AWAITING_CANCEL_REASON: False,
    ActionType.CLARIFY: False,
    ActionType.GREETING: False,
    ActionType.HELP: False,
    ActionType.FALLBACK: False,
}

CLARIFICATION_TYPES = frozenset(
    {
        ActionType.AWAITING_AMOUNT,
        ActionType.AWAITING_CLIENT,
        ActionType.AWAITING_DOCUMENT,
        ActionType.AWAITING_CLIENT_NAME,
        ActionType.SELECT_CLIENT,
        ActionType.AWAITING_INVOICE_REFERENCE,
        ActionType.AWAITING_CANCEL_REASON,
        ActionType.CLARIFY,
    }
)
CONVERSATIONAL_TYPES = frozenset({ActionType.GREETING, ActionType.HELP, ActionType.FALLBACK})
QUERY_TYPES = frozenset(
    {
        ActionType.LIST_INVOICES,
        ActionType.LAST_INVOICE,
        ActionType.INVOICE_STATUS,
        ActionType.REJECTED_INVOICES,
        ActionType.PENDING_INVOICES,
        ActionType.LIST_CLIENTS,
        ActionType.SEARCH_CLIENT,
        ActionType.REVENUE,
        ActionType.VIEW_TAXES,
    }
)

_INTENT_TO_QUERY: dict[Intent, ActionType] = {
    Intent.LIST_INVOICES: ActionType.LIST_INVOICES,
    Intent.LAST_INVOICE: ActionType.LAST_INVOICE,
    Intent.REJECTED_INVOICES: ActionType.REJECTED_INVOICES,
    Intent.PENDING_INVOICES: ActionType.PENDING_INVOICES,
    Intent.LIST_CLIENTS: ActionType.LIST_CLIENTS,
    Intent.REVENUE: ActionType.REVENUE,
    Intent.VIEW_TAXES: ActionType.VIEW_TAXES,
}


@dataclass(frozen=True)
class Action:
    """Proposed action. Transient: only its explanation and data are persisted."""

    type: ActionType
    data: dict[str, Any] = field(default_factory=dict)
    explanation: str = ""

    @property
    def requires_confirmation(self) -> bool:
        return CONFIRMATION_POLICY[self.type]

    @property
    def is_clarification(self) -> bool:
        return self.type in CLARIFICATION_TYPES

    @property
    def is_conversational(self) -> bool:
        return self.type in CONVERSATIONAL_TYPES

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "data": self.data,
            "requiresConfirmation": self.requires_confirmation,
        }


def _document_label(kind: DocumentKind) -> str:
    return "CPF" if kind is DocumentKind.CPF else "CNPJ"


def _client_label(client: ClientRecord) -> str:
    doc = DocumentNumber.parse(client.document)
    if doc is None:
        return client.name
    return f"{client.name} ({_document_label(doc.kind)} {doc.formatted()})"


def _service(entities: ExtractedEntities) -> ServiceDescription:
    return entities.service or ServiceDescription(
        text=DEFAULT_SERVICE_TEXT, code=DEFAULT_SERVICE_CODE, matched=False
    )


def _captured(intent: Intent, entities: ExtractedEntities, **extra: Any) -> dict[str, Any]:
    data: dict[str, Any] = {"intent": intent.value, "captured": entities.to_dict()}
    if entities.amount:
        data["amount"] = float(entities.amount.value)
        data["amountCents"] = entities.amount.cents
    data.update({k: v for k, v in extra.items() if v is not None})
    return data


def _emit_data(
    amount: MonetaryAmount, entities: ExtractedEntities, client: ClientRecord | None
) -> dict[str, Any]:
    service = _service(entities)
    data: dict[str, Any] = {
        "amount": float(amount.value),
        "amountCents": amount.cents,
        "serviceDescription": service.text,
        "serviceCode": service.code,
    }
    if client is not None:
        data.update(
            clientId=client.id,
            clientName=client.name,
            clientDocument=client.document,
        )
    else:
        data.update(
            clientName=entities.name.text if entities.name else None,
            clientDocument=entities.document.digits if entities.document else None,
        )
    return data


def _build_emit(entities: ExtractedEntities, resolution: ClientResolution | None) -> Action:
    client = resolution.client if resolution and resolution.status is ResolutionStatus.FOUND else None
    name = entities.name.text if entities.name else None

    amount = entities.amount
    if amount is None:
        for_client = f" para {client.name if client else name}" if (client or name) else ""
        return Action(
            ActionType.AWAITING_AMOUNT,
            _captured(Intent.EMIT_INVOICE, entities, clientId=client.id if client else None),
            render("ask_amount", {"for_client": for_client}),
        )

    amount_text = format_brl(amount.value)

    if resolution is not None and resolution.status is ResolutionStatus.AMBIGUOUS:
        candidates = [
            {"id": c.id, "name": c.name, "document": c.document} for c in resolution.candidates
        ]
        options = "\n".join(
            f"{i}. {_client_label(c)}" for i, c in enumerate(resolution.candidates, start=1)
        )
        return Action(
            ActionType.SELECT_CLIENT,
            _captured(Intent.EMIT_INVOICE, entities, candidates=candidates),
            render("select_client", {"options": options}),
        )

    if client is None:
        if entities.document is not None and name:
            # Unknown client with full identity: created at issuance time.
            label = f"{name} ({_document_label(entities.document.kind)} {entities.document.formatted()})"
            service = _service(entities)
            return Action(
                ActionType.EMIT_INVOICE,
                _emit_data(amount, entities, None),
                render("confirm_emit", {"amount": amount_text, "client": label, "service": service.text}),
            )
        if entities.document is not None:
            return Action(
                ActionType.AWAITING_CLIENT_NAME,
                _captured(Intent.EMIT_INVOICE, entities),
                render(
                    "ask_client_name",
                    {
                        "document_label": _document_label(entities.document.kind),
                        "document": entities.document.formatted(),
                    },
                ),
            )
        if name:
            return Action(
                ActionType.AWAITING_DOCUMENT,
                _captured(Intent.EMIT_INVOICE, entities),
                render("ask_document", {"name": name}),
            )
        return Action(
            ActionType.AWAITING_CLIENT,
            _captured(Intent.EMIT_INVOICE, entities),
            render("ask_client", {"amount": amount_text}),
        )

    service = _service(entities)
    return Action(
        ActionType.EMIT_INVOICE,
        _emit_data(amount, entities, client),
        render(
            "confirm_emit",
            {"amount": amount_text, "client": _client_label(client), "service": service.text},
        ),
    )


def _build_cancel(entities: ExtractedEntities) -> Action:
    if not entities.invoice_ref:
        return Action(
            ActionType.AWAITING_INVOICE_REFERENCE,
            _captured(Intent.CANCEL_INVOICE, entities),
            render("ask_invoice_reference", {"verb": "cancelar"}),
        )
    reason = (entities.reason or "").strip()
    if len(reason) < MIN_CANCEL_REASON_LENGTH:
        return Action(
            ActionType.AWAITING_CANCEL_REASON,
            _captured(Intent.CANCEL_INVOICE, entities, invoiceRef=entities.invoice_ref),
            render("ask_cancel_reason", {"invoice": entities.invoice_ref}),
        )
    return Action(
        ActionType.CANCEL_INVOICE,
        {"invoiceRef": entities.invoice_ref, "reason": reason},
        render("confirm_cancel", {"invoice": entities.invoice_ref, "reason": reason}),
    )


def _build_create_client(entities: ExtractedEntities, resolution: ClientResolution | None) -> Action:
    client = resolution.client if resolution and resolution.status is ResolutionStatus.FOUND else None
    if client is not None and entities.document:
        return Action(
            ActionType.SEARCH_CLIENT,
            {"clients": [client.to_dict()]},
            f"O cliente {_client_label(client)} já está cadastrado.",
        )

    name = entities.name.text if entities.name else None
    if entities.document is None:
        if name:
            return Action(
                ActionType.AWAITING_DOCUMENT,
                _captured(Intent.CREATE_CLIENT, entities),
                f"Qual o CPF ou CNPJ de {name}?",
            )
        return Action(
            ActionType.CLARIFY,
            _captured(Intent.CREATE_CLIENT, entities),
            "Informe o nome e o CPF/CNPJ do cliente que deseja cadastrar.",
        )
    if not name:
        return Action(
            ActionType.AWAITING_CLIENT_NAME,
            _captured(Intent.CREATE_CLIENT, entities),
            render(
                "ask_client_name",
                {
                    "document_label": _document_label(entities.document.kind),
                    "document": entities.document.formatted(),
                },
            ),
        )
    return Action(
        ActionType.CREATE_CLIENT,
        {
            "name": name,
            "document": entities.document.digits,
            "documentType": entities.document.kind.value,
        },
        render(
            "confirm_create_client",
            {
                "name": name,
                "document_label": _document_label(entities.document.kind),
                "document": entities.document.formatted(),
            },
        ),
    )


def _period_data(entities: ExtractedEntities) -> dict[str, Any]:
    if entities.period is None:
        return {}
    return {"period": entities.to_dict()["period"]}


def build_action(
    intent: Intent,
    entities: ExtractedEntities,
    resolution: ClientResolution | None = None,
) -> Action:
    """Combine a classified intent with its entities into an Action.

    Query actions carry their parameters; the caller fills in the answer.

    Args:
        intent: Classified intent.
        entities: Entities for the message (merged with any pending request).
        resolution: Client resolution, when the intent involves a client.

    Returns:
        Action. Conversational intents map to GREETING/HELP/FALLBACK, which
        the response layer renders without an action.
    """
    if intent is Intent.EMIT_INVOICE:
        return _build_emit(entities, resolution)
    if intent is Intent.CANCEL_INVOICE:
        return _build_cancel(entities)
    if intent is Intent.CREATE_CLIENT:
        return _build_create_client(entities, resolution)

    if intent is Intent.INVOICE_STATUS:
        if not entities.invoice_ref:
            return Action(
                ActionType.AWAITING_INVOICE_REFERENCE,
                _captured(Intent.INVOICE_STATUS, entities),
                render("ask_invoice_reference", {"verb": "consultar"}),
            )
        return Action(ActionType.INVOICE_STATUS, {"invoiceRef": entities.invoice_ref})

    if intent is Intent.SEARCH_CLIENT:
        query = entities.document.digits if entities.document else (
            entities.name.text if entities.name else None
        )
        if not query:
            return Action(
                ActionType.CLARIFY,
                _captured(Intent.SEARCH_CLIENT, entities),
                render("ask_client_query"),
            )
        data: dict[str, Any] = {"query": query}
        if resolution is not None:
            matches = [resolution.client] if resolution.client else list(resolution.candidates)
            data["clients"] = [c.to_dict() for c in matches]
        return Action(ActionType.SEARCH_CLIENT, data)

    if intent is Intent.CHECK_CONNECTION:
        return Action(ActionType.CHECK_CONNECTION, {}, render("check_connection"))

    query_type = _INTENT_TO_QUERY.get(intent)
    if query_type is not None:
        return Action(query_type, _period_data(entities))

    if intent is Intent.GREETING:
        return Action(ActionType.GREETING, {}, render("greeting"))
    if intent is Intent.HELP:
        return Action(ActionType.HELP, {}, CAPABILITY_MENU)
    return Action(ActionType.FALLBACK, {}, CAPABILITY_MENU)


def emit_amount(data: dict[str, Any]) -> Decimal | None:
    """Read the amount from emit action data (cents preferred)."""
    cents = data.get("amountCents")
    if isinstance(cents, int) and cents > 0:
        return (Decimal(cents) / 100).quantize(Decimal("0.01"))
    raw = data.get("amount")
    if raw is None:
        return None
    return Decimal(str(raw)).quantize(Decimal("0.01"))
