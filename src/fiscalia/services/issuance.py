"""Invoice issuance orchestrator.

State machine:

    REQUESTED -> LIMIT_CHECKED -> PAID (pay-per-use only) -> REGISTERED
    -> MUNICIPALITY_SUPPORTED -> CREDENTIAL_VALID -> CLIENT_RESOLVED
    -> REGIME_VALIDATED -> EMITTED -> RECORDED

Each gate either passes, adds a warning, or raises the IssuanceError
subclass named for it. Gates run sequentially; none is retried.

Atomicity: there is no transaction spanning the provider call and the
local records. Once a pay-per-use charge is captured, a failure in any
later gate (up to and including the emission call) refunds the charge and
marks the usage record ``refunded`` or ``refund_failed``. Bookkeeping
after emission is best-effort and never undoes an emitted invoice.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from enum import Enum
from typing import Any, Callable

from fiscalia.domain.clients import ClientRecord, ResolutionStatus, ensure_client, resolve_client
from fiscalia.domain.companies import Company
from fiscalia.domain.entities import DocumentNumber
from fiscalia.domain.error_translation import ErrorContext, translate_error
from fiscalia.domain.errors import (
    CertificateExpired,
    ClientUnresolved,
    CompanyNotFound,
    CompanyNotRegistered,
    EmissionFailed,
    FiscalCredentialsMissing,
    FiscalProviderError,
    FiscalServiceNotConfigured,
    InvalidIssuanceRequest,
    InvoiceQuotaExceeded,
    MunicipalityNotSupported,
    PaymentDeclined,
    PaymentMethodRequired,
    RegimeViolation,
)
from fiscalia.domain.extraction import DEFAULT_SERVICE_CODE
from fiscalia.domain.invoices import (
    CEILING_STATUSES,
    EmissionResult,
    Invoice,
    InvoiceIssuanceRequest,
    InvoiceStatus,
    UsageRecord,
)
from fiscalia.domain.plans import AccountContext
from fiscalia.domain.ports import (
    ClientDirectory,
    CompanyStore,
    FiscalGateway,
    InvoiceStore,
    NotificationService,
    PaymentProcessor,
    PlanLimitService,
)
from fiscalia.domain.regimes import default_iss_rate, validate_invoice_for_regime
from fiscalia.domain.validation import ValidationIssue
from fiscalia.infra.settings import DEFAULT_PAY_PER_USE_PRICE_CENTS
from fiscalia.infra.time import Clock, SystemClock
from fiscalia.observability.logging import get_correlation_id, get_logger
from fiscalia.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Provider support answers are trusted for this long
MUNICIPALITY_CHECK_TTL = timedelta(days=7)


class IssuanceState(str, Enum):
    REQUESTED = "requested"
    LIMIT_CHECKED = "limit_checked"
    PAID = "paid"
    REGISTERED = "registered"
    MUNICIPALITY_SUPPORTED = "municipality_supported"
    CREDENTIAL_VALID = "credential_valid"
    CLIENT_RESOLVED = "client_resolved"
    REGIME_VALIDATED = "regime_validated"
    EMITTED = "emitted"
    RECORDED = "recorded"


@dataclass(frozen=True)
class IssuanceOutcome:
    invoice: Invoice
    client: ClientRecord
    state: IssuanceState = IssuanceState.RECORDED
    warnings: tuple[ValidationIssue, ...] = field(default=())
    usage: UsageRecord | None = None


class IssuanceOrchestrator:
    """Runs a confirmed emission request through the issuance gates.

    Args:
        companies: Company store.
        clients: Client directory.
        invoices: Invoice, status-history and usage records.
        plan_limits: Plan quota service.
        notifications: Notification sink.
        fiscal: Fiscal provider gateway; None makes every issuance fail
            with FiscalServiceNotConfigured.
        payments: Payment processor for pay-per-use plans.
        clock: Clock for expiry checks and the regime year.
        pay_per_use_price_cents: Charge per emission on pay-per-use plans.
    """

    def __init__(
        self,
        *,
        companies: CompanyStore,
        clients: ClientDirectory,
        invoices: InvoiceStore,
        plan_limits: PlanLimitService,
        notifications: NotificationService,
        fiscal: FiscalGateway | None = None,
        payments: PaymentProcessor | None = None,
        clock: Clock | None = None,
        pay_per_use_price_cents: int = DEFAULT_PAY_PER_USE_PRICE_CENTS,
    ) -> None:
        self._companies = companies
        self._clients = clients
        self._invoices = invoices
        self._plan_limits = plan_limits
        self._notifications = notifications
        self._fiscal = fiscal
        self._payments = payments
        self._clock = clock or SystemClock()
        self._price_cents = pay_per_use_price_cents

    def issue(self, account: AccountContext, request: InvoiceIssuanceRequest) -> IssuanceOutcome:
        """Issue an invoice.

        Args:
            account: Requesting account (plan and payment method).
            request: Confirmed emission request.

        Returns:
            IssuanceOutcome in state RECORDED.

        Raises:
            IssuanceError: A gate failed; ``exc.gate`` names it.
            FiscalServiceNotConfigured: No fiscal gateway.
        """
        if self._fiscal is None:
            raise FiscalServiceNotConfigured()
        fiscal = self._fiscal

        if request.amount is None or request.amount <= 0:
            raise InvalidIssuanceRequest("Informe um valor maior que zero para a nota fiscal.")
        if not (request.service_description or "").strip():
            raise InvalidIssuanceRequest("Informe a descrição do serviço.")

        company = self._companies.get(account.id, request.company_id)
        if company is None:
            raise CompanyNotFound()

        state = IssuanceState.REQUESTED
        warnings: list[ValidationIssue] = []
        usage: UsageRecord | None = None
        log_ctx = {"account_id": account.id, "company_id": company.id}

        try:
            # 1. Plan quota
            quota = self._plan_limits.check_invoice_quota(account.id)
            if not quota.allowed:
                raise InvoiceQuotaExceeded(
                    data={"used": quota.used, "max": quota.max, "planId": quota.plan_id}
                )
            state = IssuanceState.LIMIT_CHECKED

            # 2. Pay-per-use charge
            if account.plan.pay_per_use:
                usage = self._charge(account, request)
                state = IssuanceState.PAID

            try:
                # 3. Registered at the fiscal provider
                if not company.provider_id:
                    raise CompanyNotRegistered()
                state = IssuanceState.REGISTERED

                # 4. Municipality support
                warnings.extend(self._check_municipality(company))
                state = IssuanceState.MUNICIPALITY_SUPPORTED

                # 5. Credentials
                self._check_credentials(company)
                state = IssuanceState.CREDENTIAL_VALID

                # 6. Client
                client = self._resolve_client(account.id, request)
                warnings.extend(_document_warnings(client))
                state = IssuanceState.CLIENT_RESOLVED

                # 7. Regime rules
                emission_request = self._validate_regime(company, client, request, warnings)
                state = IssuanceState.REGIME_VALIDATED

                # 8. Emission
                emission = self._emit(fiscal, company, client, emission_request)
                state = IssuanceState.EMITTED
            except Exception:
                if usage is not None:
                    self._refund(usage)
                raise
        except Exception as exc:
            logger.warning(
                "issuance blocked",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx,
                        reached=state.value,
                        failed_gate=getattr(exc, "gate", None),
                        error_code=getattr(exc, "code", type(exc).__name__),
                    )
                },
            )
            raise

        issued_at = self._clock.now()
        try:
            invoice = self._invoices.create_invoice(
                company_id=company.id,
                client_id=client.id,
                request=emission_request,
                result=emission,
                issued_at=issued_at,
            )
        except Exception:
            # Emitted at the provider but not recorded: needs reconciliation.
            logger.exception(
                "emitted invoice not recorded",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx, provider_id=emission.provider_id
                    )
                },
            )
            raise
        invoice = replace(invoice, client_name=invoice.client_name or client.name)

        # 9. Bookkeeping (best-effort)
        self._best_effort(
            "status_history",
            self._invoices.add_status_history,
            invoice.id,
            company.id,
            invoice.status.value,
            emission.message or "Nota fiscal enviada ao provedor",
            {"providerId": emission.provider_id},
        )
        if usage is not None:
            self._best_effort(
                "usage_link",
                self._invoices.update_usage,
                usage.id,
                status="invoiced",
                invoice_id=invoice.id,
            )
        self._best_effort(
            "notification",
            self._notifications.notify,
            account.id,
            "invoice_" + invoice.status.value,
            {"invoiceId": invoice.id, "number": invoice.number, "amount": str(invoice.amount)},
        )

        logger.info(
            "invoice issued",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx,
                    invoice_id=invoice.id,
                    status=invoice.status.value,
                    warnings=[w.code for w in warnings],
                )
            },
        )
        return IssuanceOutcome(
            invoice=invoice,
            client=client,
            warnings=tuple(warnings),
            usage=usage,
        )

    # ── Gates ────────────────────────────────────────────────

    def _validate_regime(
        self,
        company: Company,
        client: ClientRecord,
        request: InvoiceIssuanceRequest,
        warnings: list[ValidationIssue],
    ) -> InvoiceIssuanceRequest:
        iss_rate = request.iss_rate if request.iss_rate is not None else default_iss_rate(company.regime)
        today = self._clock.now().date()
        yearly_revenue, _ = self._invoices.revenue(
            company.id, date(today.year, 1, 1), today, statuses=CEILING_STATUSES
        )
        result = validate_invoice_for_regime(
            company.regime,
            amount=request.amount,
            iss_rate=iss_rate,
            yearly_revenue=yearly_revenue,
        )
        error = result.first_error
        if error is not None:
            raise RegimeViolation(error.message, code=error.code, data=error.details)
        warnings.extend(result.warnings)

        return replace(
            request,
            iss_rate=iss_rate,
            service_code=request.service_code or DEFAULT_SERVICE_CODE,
            client_id=client.id,
        )

    def _check_municipality(self, company: Company) -> list[ValidationIssue]:
        """Unknown support is a warning; the provider has the final word."""
        supported = company.municipality_supported
        now = self._clock.now()
        stale = (
            company.municipality_checked_at is None
            or now - company.municipality_checked_at > MUNICIPALITY_CHECK_TTL
        )
        code = company.municipality_code
        fiscal = self._fiscal
        needs_check = company.has_valid_municipality_code and (supported is None or stale)
        if needs_check and fiscal is not None and code:
            try:
                supported = fiscal.is_municipality_supported(code)
            except FiscalProviderError:
                logger.warning(
                    "municipality support check failed",
                    extra={"extra_fields": safe_log_context(company_id=company.id)},
                )
                supported = None
            else:
                self._best_effort(
                    "municipality_check",
                    self._companies.save_municipality_check,
                    company.id,
                    supported,
                    now,
                )

        if supported is False and not company.has_valid_municipality_code:
            raise MunicipalityNotSupported(
                data={"municipality": company.municipality, "code": company.municipality_code}
            )
        if supported is not True:
            return [
                ValidationIssue(
                    "MUNICIPALITY_UNCONFIRMED",
                    "Não foi possível confirmar se o município da empresa é suportado. "
                    "A prefeitura fará a validação final.",
                    {"municipality": company.municipality},
                )
            ]
        return []

    def _check_credentials(self, company: Company) -> None:
        if company.municipal_credentials:
            return
        if company.certificate_expires_at is None:
            raise FiscalCredentialsMissing()
        if company.certificate_expires_at <= self._clock.now():
            raise CertificateExpired(
                data={"expiredAt": company.certificate_expires_at.isoformat()}
            )

    def _resolve_client(self, owner_id: str, request: InvoiceIssuanceRequest) -> ClientRecord:
        if request.client_id:
            client = self._clients.get(owner_id, request.client_id)
            if client is not None:
                return client

        document = DocumentNumber.parse(request.client_document)
        name = (request.client_name or "").strip() or None
        if document is None and name is None:
            raise ClientUnresolved()

        resolution = resolve_client(self._clients, owner_id, name=name, document=document)
        if resolution.status is ResolutionStatus.FOUND and resolution.client is not None:
            return resolution.client
        if document is not None and name is not None:
            return ensure_client(
                self._clients,
                owner_id,
                name=name,
                document=document,
                email=request.client_email,
            )
        if resolution.status is ResolutionStatus.AMBIGUOUS:
            raise ClientUnresolved(
                "Há mais de um cliente com esse nome. Informe o CPF ou CNPJ.",
                data={"candidates": len(resolution.candidates)},
            )
        raise ClientUnresolved()

    # ── Payment ──────────────────────────────────────────────

    def _charge(self, account: AccountContext, request: InvoiceIssuanceRequest) -> UsageRecord:
        if not account.payment_customer_ref or self._payments is None:
            raise PaymentMethodRequired()

        result = self._payments.charge_once(
            account.payment_customer_ref,
            self._price_cents,
            "Emissão de NFS-e",
            idempotency_key=_charge_key(account.id, request),
        )
        if not result.success:
            # Recorded before raising, for reconciliation
            self._best_effort(
                "usage_failed",
                self._invoices.record_usage,
                account_id=account.id,
                amount_cents=self._price_cents,
                status="failed",
                error=result.error_code,
            )
            raise PaymentDeclined(data={"reason": result.error_code})

        try:
            return self._invoices.record_usage(
                account_id=account.id,
                amount_cents=self._price_cents,
                status="paid",
                charge_id=result.charge_id,
            )
        except Exception:
            self._refund(
                UsageRecord(
                    id="",
                    account_id=account.id,
                    amount_cents=self._price_cents,
                    status="paid",
                    charge_id=result.charge_id,
                )
            )
            raise

    def _refund(self, usage: UsageRecord) -> None:
        refunded = False
        if usage.charge_id and self._payments is not None:
            try:
                refunded = self._payments.refund(
                    usage.charge_id, idempotency_key=f"nfse-refund:{usage.charge_id}"
                )
            except Exception:
                logger.exception(
                    "usage refund failed",
                    extra={"extra_fields": safe_log_context(usage_id=usage.id)},
                )
        status = "refunded" if refunded else "refund_failed"
        if usage.id:
            self._best_effort("usage_refund", self._invoices.update_usage, usage.id, status=status)
        log = logger.info if refunded else logger.error
        log(
            "usage charge compensated",
            extra={
                "extra_fields": safe_log_context(
                    usage_id=usage.id, account_id=usage.account_id, status=status
                )
            },
        )

    # ── Emission ─────────────────────────────────────────────

    def _emit(
        self,
        fiscal: FiscalGateway,
        company: Company,
        client: ClientRecord,
        request: InvoiceIssuanceRequest,
    ) -> EmissionResult:
        context = ErrorContext(
            fiscal_operation=True, municipality=company.municipality, company_name=company.name
        )
        try:
            emission = fiscal.emit_invoice(company, client, request)
        except FiscalProviderError as exc:
            self._record_failed_attempt(company, exc.code, str(exc))
            translation = translate_error(exc, context)
            raise EmissionFailed(
                translation.message,
                data={
                    "explanation": translation.explanation,
                    "action": translation.action,
                    "category": translation.category,
                    "retryable": exc.retryable,
                },
            ) from exc

        if emission.status is InvoiceStatus.REJECTED:
            self._record_failed_attempt(company, "rejected", emission.message or "")
            translation = translate_error(emission.message or "validationfailed", context)
            raise EmissionFailed(
                translation.message,
                data={"explanation": translation.explanation, "action": translation.action},
            )
        return emission

    def _record_failed_attempt(self, company: Company, code: str, message: str) -> None:
        translation = translate_error(message)
        self._best_effort(
            "failed_attempt_history",
            self._invoices.add_status_history,
            None,
            company.id,
            "failed",
            translation.message,
            {"code": code, "technical": translation.technical},
        )

    def _best_effort(self, step: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except Exception:
            logger.exception(
                "best-effort step failed",
                extra={"extra_fields": safe_log_context(step=step)},
            )
            return None


def _charge_key(account_id: str, request: InvoiceIssuanceRequest) -> str:
    """A retried HTTP request (same correlation id) reuses its charge."""
    fingerprint = "|".join(
        [
            account_id,
            request.company_id,
            str(request.amount),
            request.client_id or "",
            request.client_document or "",
            request.service_description,
            get_correlation_id() or str(uuid.uuid4()),
        ]
    )
    return "nfse-usage:" + hashlib.sha256(fingerprint.encode()).hexdigest()[:32]


def _document_warnings(client: ClientRecord) -> list[ValidationIssue]:
    document = DocumentNumber.parse(client.document)
    if document is not None and not document.has_valid_checksum():
        return [
            ValidationIssue(
                "DOCUMENT_CHECKSUM_MISMATCH",
                "Os dígitos verificadores do CPF/CNPJ do cliente não conferem.",
            )
        ]
    return []
