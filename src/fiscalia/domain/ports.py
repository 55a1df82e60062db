"""Collaborator interfaces consumed by the assistant and the issuance flow.

Concrete implementations live in ``fiscalia.infra``, ``fiscalia.fiscal``,
``fiscalia.llm`` and ``fiscalia.payments``; tests use in-memory fakes.
All of them are passed in at construction time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol

from fiscalia.domain.clients import ClientRecord
from fiscalia.domain.companies import Company
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


@dataclass(frozen=True)
class RegistrationResult:
    provider_id: str
    status: str


@dataclass(frozen=True)
class ConnectionResult:
    status: str
    message: str

    @property
    def connected(self) -> bool:
        return self.status == "connected"


@dataclass(frozen=True)
class ChargeResult:
    success: bool
    charge_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class FunctionCall:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Completion:
    """Model answer: free text, a function call, or both."""

    content: str | None = None
    function_call: FunctionCall | None = None


class FiscalGateway(Protocol):
    def register_company(self, company: Company) -> RegistrationResult: ...

    def emit_invoice(
        self,
        company: Company,
        client: ClientRecord,
        request: InvoiceIssuanceRequest,
    ) -> EmissionResult: ...

    def check_status(self, provider_id: str) -> StatusResult: ...

    def cancel(self, provider_id: str, reason: str) -> StatusResult: ...

    def check_connection(self, company: Company) -> ConnectionResult: ...

    def is_municipality_supported(self, ibge_code: str) -> bool | None: ...


class ClientDirectory(Protocol):
    def get(self, owner_id: str, client_id: str) -> ClientRecord | None: ...

    def find_by_document(self, owner_id: str, document: str) -> ClientRecord | None: ...

    def find_by_name_contains(self, owner_id: str, name: str) -> list[ClientRecord]: ...

    def create(
        self,
        owner_id: str,
        *,
        name: str,
        document: DocumentNumber,
        email: str | None = None,
        phone: str | None = None,
    ) -> ClientRecord: ...

    def list_clients(self, owner_id: str, limit: int = 50) -> list[ClientRecord]: ...


class AccountStore(Protocol):
    def get(self, account_id: str) -> AccountContext | None: ...


class PlanLimitService(Protocol):
    def check_invoice_quota(self, account_id: str) -> QuotaCheck: ...

    def check_company_quota(self, account_id: str) -> QuotaCheck: ...


class PaymentProcessor(Protocol):
    def charge_once(
        self,
        customer_ref: str,
        amount_cents: int,
        description: str,
        *,
        idempotency_key: str,
    ) -> ChargeResult: ...

    def refund(self, charge_id: str, *, idempotency_key: str) -> bool: ...


class GenerativeLanguageService(Protocol):
    def complete(
        self,
        messages: list[dict[str, str]],
        function_schema: list[dict[str, Any]],
    ) -> Completion: ...


class NotificationService(Protocol):
    def notify(self, account_id: str, kind: str, payload: dict[str, Any]) -> None: ...


class ConversationStore(Protocol):
    def append(self, turn: ConversationTurn) -> ConversationTurn: ...

    def recent(self, account_id: str, limit: int) -> list[ConversationTurn]: ...

    def purge(self, account_id: str) -> int: ...


class CompanyStore(Protocol):
    def get(self, owner_id: str, company_id: str | None) -> Company | None: ...

    def count(self, owner_id: str) -> int: ...

    def get_by_id(self, company_id: str) -> Company | None:
        """Unscoped lookup, for background jobs only."""
        ...

    def save_registration(self, company_id: str, provider_id: str, status: str) -> None: ...

    def save_municipality_check(
        self, company_id: str, supported: bool | None, checked_at: datetime
    ) -> None: ...


class InvoiceStore(Protocol):
    def create_invoice(
        self,
        *,
        company_id: str,
        client_id: str,
        request: InvoiceIssuanceRequest,
        result: EmissionResult,
        issued_at: datetime,
    ) -> Invoice: ...

    def get(self, owner_id: str, invoice_ref: str) -> Invoice | None: ...

    def last_invoice(self, owner_id: str, company_id: str | None = None) -> Invoice | None: ...

    def list_invoices(
        self,
        owner_id: str,
        *,
        statuses: tuple[InvoiceStatus, ...] | None = None,
        start: date | None = None,
        end: date | None = None,
        limit: int = 10,
    ) -> list[Invoice]: ...

    def update_status(self, invoice_id: str, result: StatusResult) -> None: ...

    def add_status_history(
        self,
        invoice_id: str | None,
        company_id: str,
        status: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    def revenue(
        self,
        company_id: str,
        start: date,
        end: date,
        statuses: tuple[InvoiceStatus, ...] = REVENUE_STATUSES,
    ) -> tuple[Decimal, int]:
        """Total and invoice count in ``statuses`` between start and end (inclusive)."""
        ...

    def count_month(self, owner_id: str, year: int, month: int) -> int: ...

    def pending_for_polling(self, since: datetime, limit: int, max_attempts: int) -> list[Invoice]: ...

    def record_poll(self, invoice_id: str, polled_at: datetime) -> None: ...

    def record_usage(
        self,
        *,
        account_id: str,
        amount_cents: int,
        status: str,
        charge_id: str | None = None,
        error: str | None = None,
    ) -> UsageRecord: ...

    def update_usage(
        self, usage_id: str, *, status: str | None = None, invoice_id: str | None = None
    ) -> None: ...
