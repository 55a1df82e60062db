"""Tax-regime rules for invoice emission.

MEI: fixed 5% ISS and an annual revenue ceiling.
Simples Nacional / Lucro Presumido / Lucro Real: ISS between 0% and 5%.
"""

from __future__ import annotations

from decimal import Decimal

from fiscalia.domain.companies import TaxRegime
from fiscalia.domain.templates import format_brl
from fiscalia.domain.validation import ValidationIssue, ValidationResult

MEI_ANNUAL_LIMIT = Decimal("81000.00")
MEI_ISS_RATE = Decimal("5")
MAX_ISS_RATE = Decimal("5")
MIN_ISS_RATE = Decimal("0")
DEFAULT_ISS_RATE = Decimal("5")

# Percentages of the MEI ceiling that produce a warning
MEI_ALERT_THRESHOLDS = (90, 80, 70)

REGIME_LABELS = {
    TaxRegime.MEI: "MEI",
    TaxRegime.SIMPLES_NACIONAL: "Simples Nacional",
    TaxRegime.LUCRO_PRESUMIDO: "Lucro Presumido",
    TaxRegime.LUCRO_REAL: "Lucro Real",
}


def default_iss_rate(regime: TaxRegime) -> Decimal:
    if regime is TaxRegime.MEI:
        return MEI_ISS_RATE
    return DEFAULT_ISS_RATE


def mei_usage_percent(yearly_revenue: Decimal) -> int:
    return int((yearly_revenue / MEI_ANNUAL_LIMIT) * 100)


def validate_invoice_for_regime(
    regime: TaxRegime,
    *,
    amount: Decimal,
    iss_rate: Decimal,
    yearly_revenue: Decimal = Decimal("0"),
) -> ValidationResult:
    """Check an emission against the company's regime.

    Args:
        regime: Company tax regime.
        amount: Invoice amount.
        iss_rate: ISS rate in percent.
        yearly_revenue: Authorized revenue in the current calendar year.

    Returns:
        ValidationResult. Error codes: MEI_INVALID_ISS_RATE,
        MEI_ANNUAL_LIMIT_EXCEEDED, INVALID_ISS_RATE. MEI_LIMIT_WARNING is
        a warning only.
    """
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []

    if regime is TaxRegime.MEI:
        if iss_rate != MEI_ISS_RATE:
            errors.append(
                ValidationIssue(
                    "MEI_INVALID_ISS_RATE",
                    "MEI deve utilizar alíquota de ISS de 5%.",
                    {"issRate": str(iss_rate), "expected": str(MEI_ISS_RATE)},
                )
            )

        projected = yearly_revenue + amount
        if projected > MEI_ANNUAL_LIMIT:
            errors.append(
                ValidationIssue(
                    "MEI_ANNUAL_LIMIT_EXCEEDED",
                    (
                        f"Esta nota ultrapassaria o limite anual do MEI de {format_brl(MEI_ANNUAL_LIMIT)}. "
                        f"Faturamento no ano: {format_brl(yearly_revenue)}."
                    ),
                    {
                        "limit": str(MEI_ANNUAL_LIMIT),
                        "yearlyRevenue": str(yearly_revenue),
                        "projected": str(projected),
                    },
                )
            )
        else:
            percent = mei_usage_percent(projected)
            for threshold in MEI_ALERT_THRESHOLDS:
                if percent >= threshold:
                    warnings.append(
                        ValidationIssue(
                            "MEI_LIMIT_WARNING",
                            f"Após esta nota você terá usado {percent}% do limite anual do MEI.",
                            {"percent": percent, "threshold": threshold},
                        )
                    )
                    break
    elif not MIN_ISS_RATE <= iss_rate <= MAX_ISS_RATE:
        errors.append(
            ValidationIssue(
                "INVALID_ISS_RATE",
                f"A alíquota de ISS deve estar entre {MIN_ISS_RATE}% e {MAX_ISS_RATE}%.",
                {"issRate": str(iss_rate)},
            )
        )

    return ValidationResult(errors=tuple(errors), warnings=tuple(warnings))


def estimate_taxes(regime: TaxRegime, revenue: Decimal, iss_rate: Decimal | None = None) -> dict:
    """Rough ISS estimate for the taxes query."""
    rate = iss_rate if iss_rate is not None else default_iss_rate(regime)
    iss = (revenue * rate / 100).quantize(Decimal("0.01"))
    if regime is TaxRegime.MEI:
        note = "No MEI o ISS é recolhido no DAS mensal de valor fixo."
    elif regime is TaxRegime.SIMPLES_NACIONAL:
        note = "No Simples Nacional o ISS é recolhido dentro do DAS."
    else:
        note = "O ISS é recolhido por guia municipal própria."
    return {"regime": REGIME_LABELS[regime], "rate": rate, "iss": iss, "note": note}
