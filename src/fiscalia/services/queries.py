"""Read-only query answering for the assistant.

Query actions leave the action builder with their parameters only; this
module fills in ``data`` and the pt-BR explanation from the stores.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from typing import Any

from fiscalia.domain.actions import Action, ActionType
from fiscalia.domain.clients import ClientRecord
from fiscalia.domain.companies import TaxRegime
from fiscalia.domain.entities import DocumentNumber, ExtractedEntities, Period
from fiscalia.domain.invoices import Invoice, InvoiceStatus
from fiscalia.domain.ports import ClientDirectory, CompanyStore, InvoiceStore
from fiscalia.domain.regimes import MEI_ANNUAL_LIMIT, estimate_taxes, mei_usage_percent
from fiscalia.domain.templates import format_brl, render
from fiscalia.infra.time import Clock, SystemClock

LIST_LIMIT = 10

STATUS_LABELS = {
    InvoiceStatus.DRAFT: "rascunho",
    InvoiceStatus.PROCESSING: "em processamento",
    InvoiceStatus.AUTHORIZED: "autorizada",
    InvoiceStatus.REJECTED: "rejeitada",
    InvoiceStatus.CANCELED: "cancelada",
}

_MONTH_NAMES = (
    "janeiro", "fevereiro", "março", "abril", "maio", "junho",
    "julho", "agosto", "setembro", "outubro", "novembro", "dezembro",
)

_PERIOD_LABELS = {
    "today": "hoje",
    "yesterday": "ontem",
    "this_week": "nesta semana",
    "this_month": "neste mês",
    "last_month": "no mês passado",
    "this_year": "neste ano",
    "last_year": "no ano passado",
}


def period_label(period: Period, today: date) -> str:
    if period.symbol in _PERIOD_LABELS:
        return _PERIOD_LABELS[period.symbol]
    if period.symbol and period.symbol.startswith("month:"):
        start, _ = period.resolve(today)
        return f"em {_MONTH_NAMES[start.month - 1]} de {start.year}"
    start, end = period.resolve(today)
    return f"de {start:%d/%m/%Y} a {end:%d/%m/%Y}"


def _invoice_line(invoice: Invoice) -> str:
    number = invoice.number or "s/ nº"
    client = invoice.client_name or "cliente"
    return (
        f"• Nº {number} | {client} | {format_brl(invoice.amount)} | "
        f"{STATUS_LABELS[invoice.status]}"
    )


def _client_line(client: ClientRecord) -> str:
    doc = DocumentNumber.parse(client.document)
    return f"• {client.name} ({doc.formatted() if doc else client.document})"


class QueryService:
    """Answers query actions for one account.

    Args:
        invoices: Invoice store.
        clients: Client directory.
        companies: Company store.
        clock: Clock for "today" in period resolution.
    """

    def __init__(
        self,
        *,
        invoices: InvoiceStore,
        clients: ClientDirectory,
        companies: CompanyStore,
        clock: Clock | None = None,
    ) -> None:
        self._invoices = invoices
        self._clients = clients
        self._companies = companies
        self._clock = clock or SystemClock()

    def answer(self, action: Action, account_id: str, company_id: str | None = None) -> Action:
        """Return ``action`` with its result data and explanation filled in."""
        handler = {
            ActionType.LIST_INVOICES: self._list_invoices,
            ActionType.LAST_INVOICE: self._last_invoice,
            ActionType.REJECTED_INVOICES: self._rejected_invoices,
            ActionType.PENDING_INVOICES: self._pending_invoices,
            ActionType.INVOICE_STATUS: self._invoice_status,
            ActionType.LIST_CLIENTS: self._list_clients,
            ActionType.SEARCH_CLIENT: self._search_client,
            ActionType.REVENUE: self._revenue,
            ActionType.VIEW_TAXES: self._taxes,
        }.get(action.type)
        if handler is None:
            return action
        data, explanation = handler(action.data, account_id, company_id)
        return replace(action, data={**action.data, **data}, explanation=explanation)

    def _today(self) -> date:
        return self._clock.now().date()

    def _period(self, data: dict[str, Any], default: str | None) -> Period | None:
        period = ExtractedEntities.from_dict({"period": data.get("period")}).period
        if period is None and default:
            return Period(symbol=default)
        return period

    # ── Invoices ─────────────────────────────────────────────

    def _render_list(
        self, invoices: list[Invoice], title: str, empty_suffix: str
    ) -> tuple[dict[str, Any], str]:
        data = {"invoices": [inv.to_dict() for inv in invoices]}
        if not invoices:
            return data, render("invoice_list_empty", {"suffix": empty_suffix})
        lines = "\n".join(_invoice_line(inv) for inv in invoices)
        return data, render("invoice_list", {"title": title, "lines": lines})

    def _list_invoices(self, data, account_id, company_id):
        period = self._period(data, default=None)
        start = end = None
        suffix = ""
        title = "Suas últimas notas"
        if period is not None:
            start, end = period.resolve(self._today())
            label = period_label(period, self._today())
            title = f"Notas emitidas {label}"
            suffix = f" {label}"
        invoices = self._invoices.list_invoices(account_id, start=start, end=end, limit=LIST_LIMIT)
        return self._render_list(invoices, title, suffix)

    def _last_invoice(self, data, account_id, company_id):
        invoice = self._invoices.last_invoice(account_id, company_id)
        if invoice is None:
            return {"invoice": None}, render("invoice_list_empty", {"suffix": ""})
        return {"invoice": invoice.to_dict()}, render(
            "invoice_list", {"title": "Sua última nota", "lines": _invoice_line(invoice)}
        )

    def _rejected_invoices(self, data, account_id, company_id):
        invoices = self._invoices.list_invoices(
            account_id, statuses=(InvoiceStatus.REJECTED,), limit=LIST_LIMIT
        )
        return self._render_list(invoices, "Notas rejeitadas", " com rejeição")

    def _pending_invoices(self, data, account_id, company_id):
        invoices = self._invoices.list_invoices(
            account_id,
            statuses=(InvoiceStatus.DRAFT, InvoiceStatus.PROCESSING),
            limit=LIST_LIMIT,
        )
        return self._render_list(invoices, "Notas em processamento", " em processamento")

    def _invoice_status(self, data, account_id, company_id):
        ref = str(data.get("invoiceRef") or "")
        invoice = self._invoices.get(account_id, ref)
        if invoice is None:
            return {"invoice": None}, render("invoice_not_found", {"invoice": ref})
        label = invoice.number or ref
        explanation = render("invoice_status", {"invoice": label, "status": STATUS_LABELS[invoice.status]})
        if invoice.status is InvoiceStatus.REJECTED and invoice.error_message:
            explanation += f"\nMotivo: {invoice.error_message}"
        return {"invoice": invoice.to_dict()}, explanation

    # ── Clients ──────────────────────────────────────────────

    def _list_clients(self, data, account_id, company_id):
        clients = self._clients.list_clients(account_id)
        if not clients:
            return {"clients": []}, render("client_list_empty")
        lines = "\n".join(_client_line(c) for c in clients)
        return {"clients": [c.to_dict() for c in clients]}, render("client_list", {"lines": lines})

    def _search_client(self, data, account_id, company_id):
        if "clients" in data:
            matches = list(data["clients"])
            records = None
        else:
            query = str(data.get("query") or "")
            document = DocumentNumber.parse(query)
            if document is not None:
                found = self._clients.find_by_document(account_id, document.digits)
                records = [found] if found else []
            else:
                records = self._clients.find_by_name_contains(account_id, query)
            matches = [c.to_dict() for c in records]

        if not matches:
            return {"clients": []}, render("client_search_empty", {"query": data.get("query", "")})
        if records is not None:
            lines = "\n".join(_client_line(c) for c in records)
        else:
            lines = "\n".join(f"• {c.get('name')} ({c.get('document')})" for c in matches)
        return {"clients": matches}, render("client_list", {"lines": lines})

    # ── Revenue and taxes ────────────────────────────────────

    def _revenue(self, data, account_id, company_id):
        company = self._companies.get(account_id, company_id)
        if company is None:
            return {}, render("company_missing")
        period = self._period(data, default="this_month")
        start, end = period.resolve(self._today())
        total, count = self._invoices.revenue(company.id, start, end)
        payload = {
            "total": str(total),
            "count": count,
            "start": start.isoformat(),
            "end": end.isoformat(),
        }
        return payload, render(
            "revenue",
            {
                "period_label": period_label(period, self._today()),
                "total": format_brl(total),
                "count": count,
            },
        )

    def _taxes(self, data, account_id, company_id):
        company = self._companies.get(account_id, company_id)
        if company is None:
            return {}, render("company_missing")
        today = self._today()
        month_total, _ = self._invoices.revenue(company.id, today.replace(day=1), today)
        estimate = estimate_taxes(company.regime, month_total)
        explanation = render(
            "taxes",
            {
                "regime": estimate["regime"],
                "month_total": format_brl(month_total),
                "rate": estimate["rate"],
                "iss": format_brl(estimate["iss"]),
                "note": estimate["note"],
            },
        )
        payload: dict[str, Any] = {
            "regime": company.regime.value,
            "monthRevenue": str(month_total),
            "issRate": str(estimate["rate"]),
            "issEstimate": str(estimate["iss"]),
        }
        if company.regime is TaxRegime.MEI:
            year_total, _ = self._invoices.revenue(company.id, date(today.year, 1, 1), today)
            percent = mei_usage_percent(year_total)
            payload["meiUsagePercent"] = percent
            explanation += "\n" + render(
                "mei_limit",
                {
                    "percent": percent,
                    "used": format_brl(year_total),
                    "limit": format_brl(MEI_ANNUAL_LIMIT),
                },
            )
        return payload, explanation
