"""Confirmed invoice cancellation."""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from fiscalia.domain.cancellation import validate_cancellation
from fiscalia.domain.errors import (
    CancellationNotAllowed,
    FiscalServiceNotConfigured,
    InvoiceNotFound,
)
from fiscalia.domain.invoices import Invoice, InvoiceStatus
from fiscalia.domain.ports import CompanyStore, FiscalGateway, InvoiceStore, NotificationService
from fiscalia.domain.validation import ValidationIssue
from fiscalia.infra.time import Clock, SystemClock
from fiscalia.observability.logging import get_logger
from fiscalia.observability.redaction import safe_log_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class CancellationOutcome:
    invoice: Invoice
    warnings: tuple[ValidationIssue, ...] = field(default=())


class CancellationService:
    def __init__(
        self,
        *,
        companies: CompanyStore,
        invoices: InvoiceStore,
        notifications: NotificationService,
        fiscal: FiscalGateway | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._companies = companies
        self._invoices = invoices
        self._notifications = notifications
        self._fiscal = fiscal
        self._clock = clock or SystemClock()

    def cancel(self, account_id: str, invoice_ref: str, reason: str) -> CancellationOutcome:
        """Cancel an authorized invoice at the provider.

        Raises:
            InvoiceNotFound: No invoice with that number or id for the account.
            CancellationNotAllowed: A municipality rule blocks it (``code`` is
                the rule's code).
            FiscalProviderError: The provider call failed.
        """
        if self._fiscal is None:
            raise FiscalServiceNotConfigured()

        invoice = self._invoices.get(account_id, invoice_ref)
        if invoice is None:
            raise InvoiceNotFound(data={"invoiceRef": invoice_ref})

        company = self._companies.get(account_id, invoice.company_id)
        municipality_code = company.municipality_code if company else None
        result = validate_cancellation(invoice, municipality_code, reason, now=self._clock.now())
        error = result.first_error
        if error is not None:
            raise CancellationNotAllowed(error.message, code=error.code, data=error.details)
        if not invoice.provider_id:
            raise CancellationNotAllowed(
                "Esta nota não foi registrada no provedor fiscal e não pode ser cancelada.",
                code="INVALID_STATUS",
            )

        status = self._fiscal.cancel(invoice.provider_id, reason.strip())
        self._invoices.update_status(invoice.id, status)

        try:
            self._invoices.add_status_history(
                invoice.id,
                invoice.company_id,
                status.status.value,
                "Cancelamento solicitado",
                {"reason": reason.strip()},
            )
            if status.status is InvoiceStatus.CANCELED:
                self._notifications.notify(
                    account_id, "invoice_canceled", {"invoiceId": invoice.id, "number": invoice.number}
                )
        except Exception:
            logger.exception(
                "cancellation bookkeeping failed",
                extra={"extra_fields": safe_log_context(invoice_id=invoice.id)},
            )

        logger.info(
            "invoice cancellation requested",
            extra={
                "extra_fields": safe_log_context(
                    account_id=account_id, invoice_id=invoice.id, status=status.status.value
                )
            },
        )
        return CancellationOutcome(
            invoice=replace(invoice, status=status.status),
            warnings=result.warnings,
        )
