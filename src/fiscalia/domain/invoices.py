"""Invoice lifecycle types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    PROCESSING = "processing"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"
    CANCELED = "canceled"

    @property
    def is_final(self) -> bool:
        return self in FINAL_STATUSES

    @classmethod
    def from_provider(cls, raw: str | None) -> InvoiceStatus:
        """Map provider status strings ("autorizada", "erro", ...) to the enum."""
        value = (raw or "").strip().lower()
        return _PROVIDER_STATUS.get(value, cls.PROCESSING)


FINAL_STATUSES = frozenset({InvoiceStatus.AUTHORIZED, InvoiceStatus.REJECTED, InvoiceStatus.CANCELED})

# Revenue screens count authorized invoices; the annual ceiling also counts
# emissions still in flight at the provider.
REVENUE_STATUSES = (InvoiceStatus.AUTHORIZED,)
CEILING_STATUSES = (InvoiceStatus.AUTHORIZED, InvoiceStatus.PROCESSING)

_PROVIDER_STATUS = {
    "autorizada": InvoiceStatus.AUTHORIZED,
    "authorized": InvoiceStatus.AUTHORIZED,
    "emitida": InvoiceStatus.AUTHORIZED,
    "rejeitada": InvoiceStatus.REJECTED,
    "rejected": InvoiceStatus.REJECTED,
    "erro": InvoiceStatus.REJECTED,
    "negada": InvoiceStatus.REJECTED,
    "cancelada": InvoiceStatus.CANCELED,
    "canceled": InvoiceStatus.CANCELED,
    "cancelled": InvoiceStatus.CANCELED,
    "processando": InvoiceStatus.PROCESSING,
    "processing": InvoiceStatus.PROCESSING,
    "pendente": InvoiceStatus.PROCESSING,
    "draft": InvoiceStatus.DRAFT,
    "rascunho": InvoiceStatus.DRAFT,
}


@dataclass(frozen=True)
class InvoiceIssuanceRequest:
    """Confirmed emission request. Consumed once by the orchestrator.

    ``client`` is either an existing record or (name, document) to create.
    """

    company_id: str
    amount: Decimal
    service_description: str
    service_code: str | None = None
    iss_rate: Decimal | None = None
    client_id: str | None = None
    client_name: str | None = None
    client_document: str | None = None
    client_email: str | None = None


@dataclass(frozen=True)
class Invoice:
    id: str
    company_id: str
    client_id: str | None
    amount: Decimal
    service_description: str
    status: InvoiceStatus
    number: str | None = None
    provider_id: str | None = None
    verification_code: str | None = None
    pdf_url: str | None = None
    xml_url: str | None = None
    iss_rate: Decimal | None = None
    service_code: str | None = None
    issued_at: datetime | None = None
    created_at: datetime | None = None
    client_name: str | None = None
    error_message: str | None = None
    poll_attempts: int = 0
    last_polled_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "companyId": self.company_id,
            "clientId": self.client_id,
            "clientName": self.client_name,
            "number": self.number,
            "amount": str(self.amount),
            "serviceDescription": self.service_description,
            "serviceCode": self.service_code,
            "issRate": str(self.iss_rate) if self.iss_rate is not None else None,
            "status": self.status.value,
            "verificationCode": self.verification_code,
            "pdfUrl": self.pdf_url,
            "xmlUrl": self.xml_url,
            "issuedAt": self.issued_at.isoformat() if self.issued_at else None,
        }


@dataclass(frozen=True)
class EmissionResult:
    """Provider answer to an emission call."""

    provider_id: str
    status: InvoiceStatus
    number: str | None = None
    verification_code: str | None = None
    pdf_url: str | None = None
    xml_url: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class StatusResult:
    status: InvoiceStatus
    number: str | None = None
    verification_code: str | None = None
    pdf_url: str | None = None
    xml_url: str | None = None
    message: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UsageRecord:
    """Pay-per-use charge record for one emission attempt."""

    id: str
    account_id: str
    amount_cents: int
    status: str
    charge_id: str | None = None
    invoice_id: str | None = None
