"""Invoice cancellation rules per municipality.

Municipalities limit how long after emission an NFS-e can be cancelled.
Unknown municipalities get the conservative default.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from fiscalia.domain.invoices import Invoice, InvoiceStatus
from fiscalia.domain.validation import ValidationIssue, ValidationResult

MIN_JUSTIFICATION_LENGTH = 15
WARNING_FRACTION = 0.8


@dataclass(frozen=True)
class CancellationRules:
    max_hours_after_emission: int = 48
    allowed_statuses: frozenset[InvoiceStatus] = frozenset({InvoiceStatus.AUTHORIZED})
    requires_justification: bool = True


DEFAULT_RULES = CancellationRules()

# IBGE code -> rules
MUNICIPALITY_RULES: dict[str, CancellationRules] = {
    "3550308": CancellationRules(max_hours_after_emission=48),  # São Paulo
    "3304557": CancellationRules(max_hours_after_emission=72),  # Rio de Janeiro
    "3106200": CancellationRules(max_hours_after_emission=24),  # Belo Horizonte
    "4106902": CancellationRules(max_hours_after_emission=48),  # Curitiba
    "4314902": CancellationRules(max_hours_after_emission=120),  # Porto Alegre
    "4205407": CancellationRules(max_hours_after_emission=48),  # Florianópolis
}


def get_cancellation_rules(municipality_code: str | None) -> CancellationRules:
    code = "".join(ch for ch in (municipality_code or "") if ch.isdigit())
    return MUNICIPALITY_RULES.get(code, DEFAULT_RULES)


def validate_cancellation(
    invoice: Invoice,
    municipality_code: str | None,
    justification: str,
    *,
    now: datetime,
) -> ValidationResult:
    """Check whether an invoice can be cancelled now.

    Error codes: INVALID_STATUS, TIME_LIMIT_EXCEEDED, JUSTIFICATION_REQUIRED,
    JUSTIFICATION_TOO_SHORT. Warning: APPROACHING_TIME_LIMIT.
    """
    rules = get_cancellation_rules(municipality_code)
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []

    if invoice.status not in rules.allowed_statuses:
        errors.append(
            ValidationIssue(
                "INVALID_STATUS",
                f"Notas com status \"{invoice.status.value}\" não podem ser canceladas. "
                "Apenas notas autorizadas.",
            )
        )

    emitted_at = invoice.issued_at or invoice.created_at
    if emitted_at is not None:
        elapsed = now - emitted_at
        limit = timedelta(hours=rules.max_hours_after_emission)
        if elapsed > limit:
            hours = int(elapsed.total_seconds() // 3600)
            errors.append(
                ValidationIssue(
                    "TIME_LIMIT_EXCEEDED",
                    f"O prazo para cancelamento expirou. Limite: {rules.max_hours_after_emission} horas. "
                    f"Tempo decorrido: {hours // 24} dia(s) e {hours % 24} hora(s).",
                    {"maxHours": rules.max_hours_after_emission, "hoursElapsed": hours},
                )
            )
        elif elapsed > limit * WARNING_FRACTION:
            remaining = int((limit - elapsed).total_seconds() // 3600)
            warnings.append(
                ValidationIssue(
                    "APPROACHING_TIME_LIMIT",
                    f"Atenção: restam aproximadamente {remaining} hora(s) para cancelar esta nota.",
                    {"hoursRemaining": remaining},
                )
            )

    text = (justification or "").strip()
    if rules.requires_justification:
        if not text:
            errors.append(
                ValidationIssue("JUSTIFICATION_REQUIRED", "É necessário informar o motivo do cancelamento.")
            )
        elif len(text) < MIN_JUSTIFICATION_LENGTH:
            errors.append(
                ValidationIssue(
                    "JUSTIFICATION_TOO_SHORT",
                    f"A justificativa deve ter pelo menos {MIN_JUSTIFICATION_LENGTH} caracteres.",
                )
            )

    return ValidationResult(errors=tuple(errors), warnings=tuple(warnings))
