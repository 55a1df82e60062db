"""Execution of confirmed actions.

Only mutating or provider-backed actions are executable here. Anything
else raises UnsupportedAction; read-only queries are answered by the
dispatcher itself.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from fiscalia.domain.actions import ActionType, emit_amount
from fiscalia.domain.clients import ensure_client
from fiscalia.domain.entities import DocumentNumber
from fiscalia.domain.errors import (
    CompanyNotFound,
    FiscalServiceNotConfigured,
    InvalidActionData,
    InvoiceNotFound,
    UnsupportedAction,
)
from fiscalia.domain.extraction import DEFAULT_SERVICE_TEXT
from fiscalia.domain.invoices import InvoiceIssuanceRequest, InvoiceStatus
from fiscalia.domain.plans import AccountContext
from fiscalia.domain.ports import ClientDirectory, CompanyStore, FiscalGateway, InvoiceStore
from fiscalia.domain.templates import format_brl, render
from fiscalia.observability.logging import get_logger
from fiscalia.observability.redaction import safe_log_context
from fiscalia.services.cancellation_service import CancellationService
from fiscalia.services.issuance import IssuanceOrchestrator
from fiscalia.services.queries import STATUS_LABELS

logger = get_logger(__name__)

EXECUTABLE_ACTIONS = frozenset(
    {
        ActionType.EMIT_INVOICE,
        ActionType.CANCEL_INVOICE,
        ActionType.CREATE_CLIENT,
        ActionType.INVOICE_STATUS,
        ActionType.CHECK_CONNECTION,
    }
)


def _require(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None or str(value).strip() == "":
        raise InvalidActionData(f"Campo obrigatório ausente: {key}.", data={"field": key})
    return str(value).strip()


class ActionExecutor:
    """Runs a confirmed action.

    Args:
        issuance: Issuance orchestrator (emit_invoice).
        cancellation: Cancellation service (cancel_invoice).
        clients: Client directory (create_client).
        invoices: Invoice store (invoice_status).
        companies: Company store (check_connection).
        fiscal: Fiscal gateway; None disables provider-backed actions.
    """

    def __init__(
        self,
        *,
        issuance: IssuanceOrchestrator,
        cancellation: CancellationService,
        clients: ClientDirectory,
        invoices: InvoiceStore,
        companies: CompanyStore,
        fiscal: FiscalGateway | None = None,
    ) -> None:
        self._issuance = issuance
        self._cancellation = cancellation
        self._clients = clients
        self._invoices = invoices
        self._companies = companies
        self._fiscal = fiscal

    def execute(
        self,
        account: AccountContext,
        action_type: str,
        data: dict[str, Any],
        company_id: str | None = None,
    ) -> dict[str, Any]:
        """Execute a confirmed action.

        Args:
            account: Requesting account.
            action_type: Action type value (e.g. "emit_invoice").
            data: Action data as returned by the process endpoint.
            company_id: Company acting as issuer.

        Returns:
            Result payload with the created or updated resource and a
            user-facing ``message``.

        Raises:
            UnsupportedAction: Unknown or non-executable action type.
            InvalidActionData: Required data missing.
            FiscaliaError: Any gate or provider failure.
        """
        try:
            kind = ActionType(action_type)
        except ValueError:
            kind = None
        if kind not in EXECUTABLE_ACTIONS:
            raise UnsupportedAction(data={"actionType": action_type})

        logger.info(
            "executing action",
            extra={"extra_fields": safe_log_context(account_id=account.id, action_type=action_type)},
        )
        if kind is ActionType.EMIT_INVOICE:
            return self._emit(account, data, company_id)
        if kind is ActionType.CANCEL_INVOICE:
            return self._cancel(account, data)
        if kind is ActionType.CREATE_CLIENT:
            return self._create_client(account, data)
        if kind is ActionType.INVOICE_STATUS:
            return self._invoice_status(account, data)
        return self._check_connection(account, company_id)

    def _emit(self, account: AccountContext, data: dict[str, Any], company_id: str | None) -> dict[str, Any]:
        company_id = company_id or data.get("companyId")
        if not company_id:
            raise InvalidActionData("Selecione a empresa emissora.", data={"field": "companyId"})
        try:
            amount = emit_amount(data)
            iss_rate = Decimal(str(data["issRate"])) if data.get("issRate") is not None else None
        except (InvalidOperation, ValueError):
            raise InvalidActionData("Valor da nota inválido.", data={"field": "amount"})
        if amount is None or amount <= 0:
            raise InvalidActionData("Informe o valor da nota.", data={"field": "amount"})

        request = InvoiceIssuanceRequest(
            company_id=str(company_id),
            amount=amount,
            service_description=str(data.get("serviceDescription") or DEFAULT_SERVICE_TEXT),
            service_code=data.get("serviceCode"),
            iss_rate=iss_rate,
            client_id=data.get("clientId"),
            client_name=data.get("clientName"),
            client_document=data.get("clientDocument"),
            client_email=data.get("clientEmail"),
        )
        outcome = self._issuance.issue(account, request)
        invoice = outcome.invoice
        if invoice.status is InvoiceStatus.AUTHORIZED:
            message = render(
                "invoice_authorized",
                {
                    "number": invoice.number or "",
                    "client": outcome.client.name,
                    "amount": format_brl(invoice.amount),
                },
            )
        else:
            message = render("invoice_processing")
        return {
            "invoice": invoice.to_dict(),
            "message": message,
            "warnings": [w.to_dict() for w in outcome.warnings],
        }

    def _cancel(self, account: AccountContext, data: dict[str, Any]) -> dict[str, Any]:
        ref = _require(data, "invoiceRef") if data.get("invoiceRef") else _require(data, "invoiceId")
        reason = _require(data, "reason")
        outcome = self._cancellation.cancel(account.id, ref, reason)
        invoice = outcome.invoice
        return {
            "invoice": invoice.to_dict(),
            "message": render("invoice_canceled", {"number": invoice.number or ref}),
            "warnings": [w.to_dict() for w in outcome.warnings],
        }

    def _create_client(self, account: AccountContext, data: dict[str, Any]) -> dict[str, Any]:
        name = _require(data, "name")
        document = DocumentNumber.parse(_require(data, "document"))
        if document is None:
            raise InvalidActionData(
                "CPF deve ter 11 dígitos e CNPJ 14 dígitos.", data={"field": "document"}
            )
        existing = self._clients.find_by_document(account.id, document.digits)
        if existing is not None:
            return {
                "client": existing.to_dict(),
                "created": False,
                "message": f"O cliente {existing.name} já está cadastrado.",
            }
        client = ensure_client(
            self._clients,
            account.id,
            name=name,
            document=document,
            email=data.get("email"),
            phone=data.get("phone"),
        )
        return {
            "client": client.to_dict(),
            "created": True,
            "message": render("client_created", {"name": client.name}),
        }

    def _invoice_status(self, account: AccountContext, data: dict[str, Any]) -> dict[str, Any]:
        ref = _require(data, "invoiceRef")
        invoice = self._invoices.get(account.id, ref)
        if invoice is None:
            raise InvoiceNotFound(data={"invoiceRef": ref})

        if self._fiscal is not None and invoice.provider_id and not invoice.status.is_final:
            result = self._fiscal.check_status(invoice.provider_id)
            if result.status is not invoice.status:
                self._invoices.update_status(invoice.id, result)
                invoice = self._invoices.get(account.id, invoice.id) or invoice

        return {
            "invoice": invoice.to_dict(),
            "message": render(
                "invoice_status",
                {"invoice": invoice.number or ref, "status": STATUS_LABELS[invoice.status]},
            ),
        }

    def _check_connection(self, account: AccountContext, company_id: str | None) -> dict[str, Any]:
        if self._fiscal is None:
            raise FiscalServiceNotConfigured()
        company = self._companies.get(account.id, company_id)
        if company is None:
            raise CompanyNotFound()

        if not company.provider_id:
            registration = self._fiscal.register_company(company)
            self._companies.save_registration(company.id, registration.provider_id, registration.status)
            company = self._companies.get(account.id, company.id) or company

        result = self._fiscal.check_connection(company)
        return {
            "status": result.status,
            "connected": result.connected,
            "message": result.message,
        }
