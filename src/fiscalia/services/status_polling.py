"""Background polling of invoices still processing at the provider.

Scheduled externally (worker task endpoint). Each run picks a batch of
non-final invoices issued in the look-back window and checks the ones
that are due, with a poll interval that grows with the invoice's age.
After MAX_POLL_ATTEMPTS the invoice is no longer polled and the account
is notified instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from fiscalia.domain.error_translation import ErrorContext, translate_error
from fiscalia.domain.errors import FiscalProviderError
from fiscalia.domain.invoices import Invoice, InvoiceStatus
from fiscalia.domain.ports import CompanyStore, FiscalGateway, InvoiceStore, NotificationService
from fiscalia.domain.templates import format_brl, render
from fiscalia.infra.time import Clock, SystemClock
from fiscalia.observability.logging import get_logger
from fiscalia.observability.redaction import safe_log_context

logger = get_logger(__name__)

MAX_POLL_ATTEMPTS = 24
BATCH_SIZE = 20
LOOKBACK = timedelta(hours=48)

# (age below, interval)
BACKOFF_SCHEDULE: tuple[tuple[timedelta, timedelta], ...] = (
    (timedelta(minutes=10), timedelta(minutes=2)),
    (timedelta(minutes=30), timedelta(minutes=5)),
    (timedelta(minutes=60), timedelta(minutes=10)),
)
MAX_INTERVAL = timedelta(minutes=30)


def poll_interval(age: timedelta) -> timedelta:
    for limit, interval in BACKOFF_SCHEDULE:
        if age < limit:
            return interval
    return MAX_INTERVAL


def is_due(invoice: Invoice, now: datetime) -> bool:
    if invoice.last_polled_at is None:
        return True
    started = invoice.issued_at or invoice.created_at or invoice.last_polled_at
    return now - invoice.last_polled_at >= poll_interval(now - started)


@dataclass
class PollSummary:
    checked: int = 0
    updated: int = 0
    skipped: int = 0
    exhausted: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "checked": self.checked,
            "updated": self.updated,
            "skipped": self.skipped,
            "exhausted": self.exhausted,
            "errors": self.errors,
        }


class InvoiceStatusPoller:
    def __init__(
        self,
        *,
        invoices: InvoiceStore,
        fiscal: FiscalGateway,
        notifications: NotificationService,
        companies: CompanyStore,
        clock: Clock | None = None,
        batch_size: int = BATCH_SIZE,
        max_attempts: int = MAX_POLL_ATTEMPTS,
    ) -> None:
        self._invoices = invoices
        self._fiscal = fiscal
        self._notifications = notifications
        self._companies = companies
        self._clock = clock or SystemClock()
        self._batch_size = batch_size
        self._max_attempts = max_attempts

    def run_once(self) -> PollSummary:
        """Poll one batch. Errors on one invoice never stop the batch."""
        now = self._clock.now()
        summary = PollSummary()

        batch = self._invoices.pending_for_polling(now - LOOKBACK, self._batch_size, self._max_attempts)
        for invoice in batch:
            provider_id = invoice.provider_id
            if invoice.poll_attempts >= self._max_attempts or not provider_id:
                summary.skipped += 1
                continue
            if not is_due(invoice, now):
                summary.skipped += 1
                continue

            summary.checked += 1
            try:
                changed = self._poll(invoice, provider_id, now)
            except FiscalProviderError as exc:
                summary.errors += 1
                logger.warning(
                    "status poll failed",
                    extra={
                        "extra_fields": safe_log_context(
                            invoice_id=invoice.id, error_code=exc.code, retryable=exc.retryable
                        )
                    },
                )
                changed = False
            except Exception:
                summary.errors += 1
                logger.exception(
                    "status poll crashed",
                    extra={"extra_fields": safe_log_context(invoice_id=invoice.id)},
                )
                continue

            if changed:
                summary.updated += 1
            elif invoice.poll_attempts + 1 >= self._max_attempts:
                summary.exhausted += 1
                self._notify(
                    invoice,
                    "invoice_polling_exhausted",
                    render("polling_exhausted", {"number": invoice.number or invoice.id}),
                )

        logger.info("status polling finished", extra={"extra_fields": summary.to_dict()})
        return summary

    def _poll(self, invoice: Invoice, provider_id: str, now: datetime) -> bool:
        # Counted as an attempt even if the provider call fails
        self._invoices.record_poll(invoice.id, now)
        result = self._fiscal.check_status(provider_id)
        if result.status is invoice.status:
            return False

        self._invoices.update_status(invoice.id, result)
        number = result.number or invoice.number or invoice.id
        if result.status is InvoiceStatus.AUTHORIZED:
            message = render(
                "invoice_authorized",
                {
                    "number": number,
                    "client": invoice.client_name or "seu cliente",
                    "amount": format_brl(invoice.amount),
                },
            )
        elif result.status is InvoiceStatus.REJECTED:
            message = render(
                "invoice_rejected",
                {"number": number, "reason": self._rejection_reason(invoice, result.message)},
            )
        elif result.status is InvoiceStatus.CANCELED:
            message = render("invoice_canceled", {"number": number})
        else:
            message = render("invoice_processing")

        try:
            self._invoices.add_status_history(
                invoice.id, invoice.company_id, result.status.value, message
            )
        except Exception:
            logger.exception(
                "status history not recorded",
                extra={"extra_fields": safe_log_context(invoice_id=invoice.id)},
            )
        self._notify(invoice, "invoice_" + result.status.value, message)
        return True

    def _rejection_reason(self, invoice: Invoice, raw: str | None) -> str:
        company = self._companies.get_by_id(invoice.company_id)
        context = ErrorContext(
            fiscal_operation=True,
            municipality=company.municipality if company else None,
        )
        translation = translate_error(raw or "validationfailed", context)
        return f"{translation.explanation} {translation.action}"

    def _notify(self, invoice: Invoice, kind: str, message: str) -> None:
        owner_id = self._owner_of(invoice)
        if owner_id is None:
            return
        try:
            self._notifications.notify(
                owner_id,
                kind,
                {"invoiceId": invoice.id, "number": invoice.number, "message": message},
            )
        except Exception:
            logger.exception(
                "status notification failed",
                extra={"extra_fields": safe_log_context(invoice_id=invoice.id, kind=kind)},
            )

    def _owner_of(self, invoice: Invoice) -> str | None:
        company = self._companies.get_by_id(invoice.company_id)
        return company.owner_id if company else None
