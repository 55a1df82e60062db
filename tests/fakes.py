"""In-memory implementations of the collaborator interfaces, plus builders.

Plain functions and classes, not fixtures. Each fake records the calls the
tests assert on.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from fiscalia.domain.clients import ClientRecord
from fiscalia.domain.companies import Company, TaxRegime
from fiscalia.domain.conversations import ConversationTurn
from fiscalia.domain.entities import DocumentNumber
from fiscalia.domain.invoices import (
    REVENUE_STATUSES,
    EmissionResult,
    Invoice,
    InvoiceIssuanceRequest,
    InvoiceStatus,
    StatusResult,
    UsageRecord,
)
from fiscalia.domain.plans import AccountContext, QuotaCheck
from fiscalia.domain.ports import ChargeResult, Completion, ConnectionResult, RegistrationResult

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
ACCOUNT_ID = "acc-1"
VALID_CPF = "52998224725"
VALID_CNPJ = "11222333000181"


# ── Builders ─────────────────────────────────────────────


def make_account(**overrides: Any) -> AccountContext:
    values: dict[str, Any] = {"id": ACCOUNT_ID, "plan_id": "professional"}
    values.update(overrides)
    return AccountContext(**values)


def make_company(**overrides: Any) -> Company:
    values: dict[str, Any] = {
        "id": "comp-1",
        "owner_id": ACCOUNT_ID,
        "name": "Estúdio Aurora",
        "cnpj": VALID_CNPJ,
        "regime": TaxRegime.SIMPLES_NACIONAL,
        "municipality": "São Paulo",
        "municipality_code": "3550308",
        "provider_id": "emp-1",
        "fiscal_status": "connected",
        "municipality_supported": True,
        "municipality_checked_at": NOW - timedelta(days=1),
        "certificate_expires_at": NOW + timedelta(days=365),
    }
    values.update(overrides)
    return Company(**values)


def make_client(name: str = "João Silva", document: str = VALID_CPF, **overrides: Any) -> ClientRecord:
    doc = DocumentNumber.parse(document)
    assert doc is not None
    values: dict[str, Any] = {
        "id": "client-" + doc.digits[-4:],
        "owner_id": ACCOUNT_ID,
        "name": name,
        "document": doc.digits,
        "kind": doc.kind,
    }
    values.update(overrides)
    return ClientRecord(**values)


def make_invoice(**overrides: Any) -> Invoice:
    values: dict[str, Any] = {
        "id": "inv-1",
        "company_id": "comp-1",
        "client_id": "client-4725",
        "amount": Decimal("1500.00"),
        "service_description": "Consultoria",
        "status": InvoiceStatus.AUTHORIZED,
        "number": "101",
        "provider_id": "nfse-1",
        "issued_at": NOW - timedelta(hours=2),
        "created_at": NOW - timedelta(hours=2),
        "client_name": "João Silva",
    }
    values.update(overrides)
    return Invoice(**values)


# ── Stores ───────────────────────────────────────────────


class FakeClientDirectory:
    def __init__(self, clients: list[ClientRecord] | None = None) -> None:
        self.clients: list[ClientRecord] = list(clients or [])
        self.created: list[ClientRecord] = []

    def get(self, owner_id: str, client_id: str) -> ClientRecord | None:
        for client in self.clients:
            if client.owner_id == owner_id and client.id == client_id:
                return client
        return None

    def find_by_document(self, owner_id: str, document: str) -> ClientRecord | None:
        for client in self.clients:
            if client.owner_id == owner_id and client.document == document:
                return client
        return None

    def find_by_name_contains(self, owner_id: str, name: str) -> list[ClientRecord]:
        needle = name.casefold()
        matches = [c for c in self.clients if c.owner_id == owner_id and needle in c.name.casefold()]
        return sorted(matches, key=lambda c: c.name.casefold())

    def create(
        self,
        owner_id: str,
        *,
        name: str,
        document: DocumentNumber,
        email: str | None = None,
        phone: str | None = None,
    ) -> ClientRecord:
        record = ClientRecord(
            id=f"client-new-{len(self.created) + 1}",
            owner_id=owner_id,
            name=name,
            document=document.digits,
            kind=document.kind,
            email=email,
            phone=phone,
        )
        self.clients.append(record)
        self.created.append(record)
        return record

    def list_clients(self, owner_id: str, limit: int = 50) -> list[ClientRecord]:
        owned = [c for c in self.clients if c.owner_id == owner_id]
        return sorted(owned, key=lambda c: c.name.casefold())[:limit]


class FakeConversationStore:
    def __init__(self, clock=None) -> None:
        self.turns: list[ConversationTurn] = []
        self._clock = clock
        self.fail_on_append = False

    def append(self, turn: ConversationTurn) -> ConversationTurn:
        if self.fail_on_append:
            raise RuntimeError("database unavailable")
        stored = replace(
            turn,
            id=f"turn-{len(self.turns) + 1}",
            created_at=self._clock.now() if self._clock else None,
        )
        self.turns.append(stored)
        return stored

    def recent(self, account_id: str, limit: int) -> list[ConversationTurn]:
        owned = [t for t in self.turns if t.account_id == account_id]
        return owned[-limit:]

    def purge(self, account_id: str) -> int:
        before = len(self.turns)
        self.turns = [t for t in self.turns if t.account_id != account_id]
        return before - len(self.turns)


class FakeCompanyStore:
    def __init__(self, companies: list[Company] | None = None) -> None:
        self.companies: dict[str, Company] = {c.id: c for c in companies or []}
        self.municipality_checks: list[tuple[str, bool | None]] = []

    def get(self, owner_id: str, company_id: str | None) -> Company | None:
        for company in self.companies.values():
            if company.owner_id != owner_id:
                continue
            if company_id is None or company.id == company_id:
                return company
        return None

    def count(self, owner_id: str) -> int:
        return sum(1 for c in self.companies.values() if c.owner_id == owner_id)

    def get_by_id(self, company_id: str) -> Company | None:
        return self.companies.get(company_id)

    def save_registration(self, company_id: str, provider_id: str, status: str) -> None:
        company = self.companies[company_id]
        self.companies[company_id] = replace(company, provider_id=provider_id, fiscal_status=status)

    def save_municipality_check(self, company_id: str, supported: bool | None, checked_at: datetime) -> None:
        company = self.companies[company_id]
        self.companies[company_id] = replace(
            company, municipality_supported=supported, municipality_checked_at=checked_at
        )
        self.municipality_checks.append((company_id, supported))


class FakeInvoiceStore:
    """Invoice, status-history and usage records.

    ``yearly_revenue`` overrides the computed revenue total when set.
    """

    def __init__(
        self,
        invoices: list[Invoice] | None = None,
        *,
        companies: FakeCompanyStore | None = None,
        yearly_revenue: Decimal | None = None,
    ) -> None:
        self.invoices: dict[str, Invoice] = {i.id: i for i in invoices or []}
        self._companies = companies
        self.yearly_revenue = yearly_revenue
        self.history: list[tuple[str | None, str, str, str, dict | None]] = []
        self.usage: dict[str, UsageRecord] = {}
        self.polls: list[tuple[str, datetime]] = []
        self.fail_on_create = False

    def _owned(self, owner_id: str) -> list[Invoice]:
        if self._companies is None:
            return list(self.invoices.values())
        return [
            inv
            for inv in self.invoices.values()
            if (company := self._companies.get_by_id(inv.company_id)) is not None
            and company.owner_id == owner_id
        ]

    def create_invoice(
        self,
        *,
        company_id: str,
        client_id: str,
        request: InvoiceIssuanceRequest,
        result: EmissionResult,
        issued_at: datetime,
    ) -> Invoice:
        if self.fail_on_create:
            raise RuntimeError("database unavailable")
        invoice = Invoice(
            id=f"inv-new-{len(self.invoices) + 1}",
            company_id=company_id,
            client_id=client_id,
            amount=request.amount,
            service_description=request.service_description,
            status=result.status,
            number=result.number,
            provider_id=result.provider_id,
            verification_code=result.verification_code,
            pdf_url=result.pdf_url,
            xml_url=result.xml_url,
            iss_rate=request.iss_rate,
            service_code=request.service_code,
            issued_at=issued_at,
            created_at=issued_at,
        )
        self.invoices[invoice.id] = invoice
        return invoice

    def get(self, owner_id: str, invoice_ref: str) -> Invoice | None:
        for invoice in self._owned(owner_id):
            if invoice.id == invoice_ref or invoice.number == invoice_ref:
                return invoice
        return None

    def last_invoice(self, owner_id: str, company_id: str | None = None) -> Invoice | None:
        owned = [i for i in self._owned(owner_id) if company_id is None or i.company_id == company_id]
        return owned[-1] if owned else None

    def list_invoices(
        self,
        owner_id: str,
        *,
        statuses: tuple[InvoiceStatus, ...] | None = None,
        start: date | None = None,
        end: date | None = None,
        limit: int = 10,
    ) -> list[Invoice]:
        found = []
        for invoice in reversed(self._owned(owner_id)):
            if statuses is not None and invoice.status not in statuses:
                continue
            day = (invoice.issued_at or invoice.created_at or NOW).date()
            if start is not None and day < start:
                continue
            if end is not None and day > end:
                continue
            found.append(invoice)
        return found[:limit]

    def update_status(self, invoice_id: str, result: StatusResult) -> None:
        invoice = self.invoices[invoice_id]
        self.invoices[invoice_id] = replace(
            invoice,
            status=result.status,
            number=result.number or invoice.number,
            verification_code=result.verification_code or invoice.verification_code,
            pdf_url=result.pdf_url or invoice.pdf_url,
            xml_url=result.xml_url or invoice.xml_url,
            error_message=result.message if result.status is InvoiceStatus.REJECTED else invoice.error_message,
        )

    def add_status_history(
        self,
        invoice_id: str | None,
        company_id: str,
        status: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.history.append((invoice_id, company_id, status, message, metadata))

    def revenue(
        self,
        company_id: str,
        start: date,
        end: date,
        statuses: tuple[InvoiceStatus, ...] = REVENUE_STATUSES,
    ) -> tuple[Decimal, int]:
        if self.yearly_revenue is not None:
            return self.yearly_revenue, 0
        total = Decimal("0")
        count = 0
        for invoice in self.invoices.values():
            if invoice.company_id != company_id or invoice.status not in statuses:
                continue
            day = (invoice.issued_at or invoice.created_at or NOW).date()
            if start <= day <= end:
                total += invoice.amount
                count += 1
        return total, count

    def count_month(self, owner_id: str, year: int, month: int) -> int:
        return sum(
            1
            for invoice in self._owned(owner_id)
            if invoice.status is not InvoiceStatus.REJECTED
            and invoice.issued_at is not None
            and (invoice.issued_at.year, invoice.issued_at.month) == (year, month)
        )

    def pending_for_polling(self, since: datetime, limit: int, max_attempts: int) -> list[Invoice]:
        pending = [
            invoice
            for invoice in self.invoices.values()
            if invoice.status is InvoiceStatus.PROCESSING
            and invoice.provider_id
            and invoice.poll_attempts < max_attempts
            and (invoice.issued_at or NOW) >= since
        ]
        # Least recently polled first, never-polled before all others
        pending.sort(key=lambda i: (i.last_polled_at is not None, i.last_polled_at or NOW, i.created_at or NOW))
        return pending[:limit]

    def record_poll(self, invoice_id: str, polled_at: datetime) -> None:
        invoice = self.invoices[invoice_id]
        self.invoices[invoice_id] = replace(
            invoice, poll_attempts=invoice.poll_attempts + 1, last_polled_at=polled_at
        )
        self.polls.append((invoice_id, polled_at))

    def record_usage(
        self,
        *,
        account_id: str,
        amount_cents: int,
        status: str,
        charge_id: str | None = None,
        error: str | None = None,
    ) -> UsageRecord:
        record = UsageRecord(
            id=f"usage-{len(self.usage) + 1}",
            account_id=account_id,
            amount_cents=amount_cents,
            status=status,
            charge_id=charge_id,
        )
        self.usage[record.id] = record
        return record

    def update_usage(self, usage_id: str, *, status: str | None = None, invoice_id: str | None = None) -> None:
        record = self.usage[usage_id]
        self.usage[usage_id] = replace(
            record,
            status=status or record.status,
            invoice_id=invoice_id or record.invoice_id,
        )


class FakeAccountStore:
    def __init__(self, accounts: list[AccountContext] | None = None) -> None:
        self.accounts = {a.id: a for a in accounts or []}

    def get(self, account_id: str) -> AccountContext | None:
        return self.accounts.get(account_id)


class FakeNotificationService:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict]] = []
        self.fail = False

    def notify(self, account_id: str, kind: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("notification backend down")
        self.sent.append((account_id, kind, payload))

    def kinds(self) -> list[str]:
        return [kind for _, kind, _ in self.sent]


class FakePlanLimits:
    def __init__(self, *, allowed: bool = True, used: int = 0, max: int | None = None) -> None:
        self.quota = QuotaCheck(allowed=allowed, used=used, max=max, plan_id="test")

    def check_invoice_quota(self, account_id: str) -> QuotaCheck:
        return self.quota

    def check_company_quota(self, account_id: str) -> QuotaCheck:
        return self.quota


# ── External services ────────────────────────────────────


class FakeFiscalGateway:
    """Set ``emission``/``emit_error``/``statuses`` to script the provider."""

    def __init__(self) -> None:
        self.emission = EmissionResult(
            provider_id="nfse-new", status=InvoiceStatus.AUTHORIZED, number="202"
        )
        self.emit_error: Exception | None = None
        self.status_result = StatusResult(status=InvoiceStatus.PROCESSING)
        self.status_error: Exception | None = None
        self.cancel_result = StatusResult(status=InvoiceStatus.CANCELED)
        self.municipality_supported: bool | None = True
        self.connection = ConnectionResult(status="connected", message="Conexão estabelecida.")
        self.emitted: list[tuple[Company, ClientRecord, InvoiceIssuanceRequest]] = []
        self.status_checks: list[str] = []
        self.cancellations: list[tuple[str, str]] = []
        self.registered: list[str] = []
        self.municipality_lookups: list[str] = []

    def register_company(self, company: Company) -> RegistrationResult:
        self.registered.append(company.id)
        return RegistrationResult(provider_id="emp-registered", status="not_connected")

    def emit_invoice(
        self, company: Company, client: ClientRecord, request: InvoiceIssuanceRequest
    ) -> EmissionResult:
        self.emitted.append((company, client, request))
        if self.emit_error is not None:
            raise self.emit_error
        return self.emission

    def check_status(self, provider_id: str) -> StatusResult:
        self.status_checks.append(provider_id)
        if self.status_error is not None:
            raise self.status_error
        return self.status_result

    def cancel(self, provider_id: str, reason: str) -> StatusResult:
        self.cancellations.append((provider_id, reason))
        return self.cancel_result

    def check_connection(self, company: Company) -> ConnectionResult:
        return self.connection

    def is_municipality_supported(self, ibge_code: str) -> bool | None:
        self.municipality_lookups.append(ibge_code)
        return self.municipality_supported


class FakePaymentProcessor:
    def __init__(
        self,
        charge: ChargeResult | None = None,
        *,
        refund_ok: bool = True,
    ) -> None:
        self.charge = charge or ChargeResult(success=True, charge_id="pi_1")
        self.refund_ok = refund_ok
        self.charges: list[tuple[str, int, str]] = []
        self.refunds: list[str] = []

    def charge_once(
        self, customer_ref: str, amount_cents: int, description: str, *, idempotency_key: str
    ) -> ChargeResult:
        self.charges.append((customer_ref, amount_cents, idempotency_key))
        return self.charge

    def refund(self, charge_id: str, *, idempotency_key: str) -> bool:
        self.refunds.append(charge_id)
        return self.refund_ok


class FakeLanguageModel:
    def __init__(self, completion: Completion | None = None, error: Exception | None = None) -> None:
        self.completion = completion or Completion(content="Posso ajudar com notas fiscais.")
        self.error = error
        self.calls: list[tuple[list[dict[str, str]], list[dict[str, Any]]]] = []

    def complete(self, messages: list[dict[str, str]], function_schema: list[dict[str, Any]]) -> Completion:
        self.calls.append((messages, function_schema))
        if self.error is not None:
            raise self.error
        return self.completion
