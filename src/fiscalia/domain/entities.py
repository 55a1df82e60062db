"""Typed entities extracted from free-form messages.

Every entity is an immutable value. ExtractedEntities groups the best
candidate of each kind for one message; absence is None.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Union

_CENT = Decimal("0.01")


class DocumentKind(str, Enum):
    CPF = "cpf"
    CNPJ = "cnpj"


@dataclass(frozen=True)
class MonetaryAmount:
    """Exact amount in cents. Always positive."""

    cents: int

    def __post_init__(self) -> None:
        if self.cents <= 0:
            raise ValueError("amount must be positive")

    @classmethod
    def from_decimal(cls, value: Decimal) -> MonetaryAmount:
        quantized = value.quantize(_CENT, rounding=ROUND_HALF_UP)
        return cls(cents=int(quantized * 100))

    @property
    def value(self) -> Decimal:
        return (Decimal(self.cents) / 100).quantize(_CENT)


@dataclass(frozen=True)
class DocumentNumber:
    """CPF (11 digits) or CNPJ (14 digits). Only the digit count is checked."""

    digits: str
    kind: DocumentKind

    @classmethod
    def parse(cls, raw: str | None) -> DocumentNumber | None:
        """Strip punctuation and classify by length. None for any other length."""
        if not raw:
            return None
        digits = "".join(ch for ch in str(raw) if ch.isdigit())
        if len(digits) == 11:
            return cls(digits=digits, kind=DocumentKind.CPF)
        if len(digits) == 14:
            return cls(digits=digits, kind=DocumentKind.CNPJ)
        return None

    def formatted(self) -> str:
        d = self.digits
        if self.kind is DocumentKind.CPF:
            return f"{d[:3]}.{d[3:6]}.{d[6:9]}-{d[9:]}"
        return f"{d[:2]}.{d[2:5]}.{d[5:8]}/{d[8:12]}-{d[12:]}"

    def has_valid_checksum(self) -> bool:
        """Official mod-11 check digits. Informational only."""
        d = [int(c) for c in self.digits]
        if len(set(d)) == 1:
            return False
        if self.kind is DocumentKind.CPF:
            for size in (9, 10):
                total = sum(v * w for v, w in zip(d[:size], range(size + 1, 1, -1)))
                check = (total * 10) % 11 % 10
                if check != d[size]:
                    return False
            return True
        weights = [5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2]
        for size in (12, 13):
            w = weights if size == 12 else [6] + weights
            total = sum(v * k for v, k in zip(d[:size], w))
            rest = total % 11
            check = 0 if rest < 2 else 11 - rest
            if check != d[size]:
                return False
        return True


@dataclass(frozen=True)
class PersonName:
    text: str


@dataclass(frozen=True)
class ServiceDescription:
    """Service text plus its LC 116 code. ``matched`` is False for the default."""

    text: str
    code: str
    matched: bool = True


# Symbolic periods understood by Period.resolve
PERIOD_SYMBOLS = (
    "today",
    "yesterday",
    "this_week",
    "this_month",
    "last_month",
    "this_year",
    "last_year",
)


@dataclass(frozen=True)
class Period:
    """Either a symbolic period ("this_month", "month:3") or a date range."""

    symbol: str | None = None
    start: date | None = None
    end: date | None = None

    def resolve(self, today: date) -> tuple[date, date]:
        """Return the inclusive (start, end) dates for this period."""
        if self.symbol is None:
            start = self.start or today
            return start, self.end or start

        if self.symbol == "today":
            return today, today
        if self.symbol == "yesterday":
            day = today - timedelta(days=1)
            return day, day
        if self.symbol == "this_week":
            start = today - timedelta(days=today.weekday())
            return start, today
        if self.symbol == "this_month":
            return today.replace(day=1), today
        if self.symbol == "last_month":
            end = today.replace(day=1) - timedelta(days=1)
            return end.replace(day=1), end
        if self.symbol == "this_year":
            return date(today.year, 1, 1), today
        if self.symbol == "last_year":
            return date(today.year - 1, 1, 1), date(today.year - 1, 12, 31)
        if self.symbol.startswith("month:"):
            month = int(self.symbol.split(":", 1)[1])
            year = today.year if month <= today.month else today.year - 1
            last_day = calendar.monthrange(year, month)[1]
            return date(year, month, 1), date(year, month, last_day)
        raise ValueError(f"Unknown period symbol: {self.symbol}")


Entity = Union[MonetaryAmount, DocumentNumber, PersonName, ServiceDescription, Period]


class LineKind(str, Enum):
    AMOUNT = "amount"
    DOCUMENT = "document"
    NAME = "name"
    OTHER = "other"


@dataclass(frozen=True)
class ExtractedEntities:
    """Best candidate of each entity kind found in one message."""

    amount: MonetaryAmount | None = None
    document: DocumentNumber | None = None
    name: PersonName | None = None
    service: ServiceDescription | None = None
    period: Period | None = None
    invoice_ref: str | None = None
    reason: str | None = None
    lines: tuple[LineKind, ...] = field(default=())

    def entities(self) -> list[Entity]:
        found: list[Entity | None] = [
            self.amount,
            self.document,
            self.name,
            self.service,
            self.period,
        ]
        return [e for e in found if e is not None]

    @property
    def is_multiline(self) -> bool:
        return len(self.lines) > 1

    def merged_over(self, earlier: ExtractedEntities) -> ExtractedEntities:
        """Fill gaps in this message with values captured earlier.

        Values present here win; a default (unmatched) service never
        overrides a matched one.
        """
        service = self.service
        if service is None or (not service.matched and earlier.service is not None):
            service = earlier.service
        return replace(
            self,
            amount=self.amount or earlier.amount,
            document=self.document or earlier.document,
            name=self.name or earlier.name,
            service=service,
            period=self.period or earlier.period,
            invoice_ref=self.invoice_ref or earlier.invoice_ref,
            reason=self.reason or earlier.reason,
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe form, used for conversation metadata."""
        data: dict[str, Any] = {}
        if self.amount:
            data["amount_cents"] = self.amount.cents
        if self.document:
            data["document"] = self.document.digits
        if self.name:
            data["name"] = self.name.text
        if self.service:
            data["service"] = {
                "text": self.service.text,
                "code": self.service.code,
                "matched": self.service.matched,
            }
        if self.period:
            data["period"] = {
                "symbol": self.period.symbol,
                "start": self.period.start.isoformat() if self.period.start else None,
                "end": self.period.end.isoformat() if self.period.end else None,
            }
        if self.invoice_ref:
            data["invoice_ref"] = self.invoice_ref
        if self.reason:
            data["reason"] = self.reason
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ExtractedEntities:
        """Inverse of to_dict. Unknown or malformed keys are ignored."""
        if not data:
            return cls()
        amount = None
        cents = data.get("amount_cents")
        if isinstance(cents, int) and cents > 0:
            amount = MonetaryAmount(cents)
        service = None
        raw_service = data.get("service")
        if isinstance(raw_service, dict) and raw_service.get("code"):
            service = ServiceDescription(
                text=str(raw_service.get("text") or ""),
                code=str(raw_service["code"]),
                matched=bool(raw_service.get("matched", True)),
            )
        period = None
        raw_period = data.get("period")
        if isinstance(raw_period, dict):
            try:
                period = Period(
                    symbol=raw_period.get("symbol"),
                    start=date.fromisoformat(raw_period["start"]) if raw_period.get("start") else None,
                    end=date.fromisoformat(raw_period["end"]) if raw_period.get("end") else None,
                )
            except ValueError:
                period = None
        name = data.get("name")
        return cls(
            amount=amount,
            document=DocumentNumber.parse(data.get("document")),
            name=PersonName(name) if isinstance(name, str) and name.strip() else None,
            service=service,
            period=period,
            invoice_ref=data.get("invoice_ref"),
            reason=data.get("reason"),
        )
