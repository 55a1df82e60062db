"""Tests for entity value types."""

from datetime import date
from decimal import Decimal

import pytest

from fiscalia.domain.entities import (
    DocumentKind,
    DocumentNumber,
    ExtractedEntities,
    MonetaryAmount,
    Period,
    PersonName,
    ServiceDescription,
)

TODAY = date(2026, 3, 10)


class TestMonetaryAmount:
    def test_rounds_half_up_to_cents(self):
        assert MonetaryAmount.from_decimal(Decimal("10.005")).cents == 1001
        assert MonetaryAmount(150000).value == Decimal("1500.00")

    @pytest.mark.parametrize("cents", [0, -100])
    def test_must_be_positive(self, cents):
        with pytest.raises(ValueError):
            MonetaryAmount(cents)


class TestDocumentNumber:
    def test_classifies_by_digit_count(self):
        assert DocumentNumber.parse("529.982.247-25").kind is DocumentKind.CPF
        assert DocumentNumber.parse("11.222.333/0001-81").kind is DocumentKind.CNPJ
        assert DocumentNumber.parse("123") is None
        assert DocumentNumber.parse(None) is None

    def test_formatted(self):
        assert DocumentNumber.parse("52998224725").formatted() == "529.982.247-25"
        assert DocumentNumber.parse("11222333000181").formatted() == "11.222.333/0001-81"

    @pytest.mark.parametrize(
        "raw, valid",
        [
            ("52998224725", True),
            ("12345678900", False),
            ("11111111111", False),
            ("11222333000181", True),
            ("11222333000182", False),
        ],
    )
    def test_checksum(self, raw, valid):
        assert DocumentNumber.parse(raw).has_valid_checksum() is valid

    def test_invalid_checksum_still_parses(self):
        assert DocumentNumber.parse("12345678900") is not None


class TestPeriod:
    def test_last_month(self):
        assert Period(symbol="last_month").resolve(TODAY) == (date(2026, 2, 1), date(2026, 2, 28))

    def test_this_week_starts_on_monday(self):
        assert Period(symbol="this_week").resolve(TODAY) == (date(2026, 3, 9), TODAY)

    def test_future_month_resolves_to_previous_year(self):
        assert Period(symbol="month:4").resolve(TODAY) == (date(2025, 4, 1), date(2025, 4, 30))
        assert Period(symbol="month:2").resolve(TODAY) == (date(2026, 2, 1), date(2026, 2, 28))

    def test_explicit_range(self):
        period = Period(start=date(2026, 1, 5), end=date(2026, 1, 9))
        assert period.resolve(TODAY) == (date(2026, 1, 5), date(2026, 1, 9))

    def test_unknown_symbol(self):
        with pytest.raises(ValueError):
            Period(symbol="next_century").resolve(TODAY)


class TestExtractedEntities:
    def test_merged_over_fills_gaps(self):
        earlier = ExtractedEntities(amount=MonetaryAmount(150000), name=PersonName("João Silva"))
        later = ExtractedEntities(document=DocumentNumber.parse("52998224725"))

        merged = later.merged_over(earlier)

        assert merged.amount.cents == 150000
        assert merged.name.text == "João Silva"
        assert merged.document.digits == "52998224725"

    def test_default_service_does_not_override_matched(self):
        earlier = ExtractedEntities(service=ServiceDescription("Consultoria", "1701"))
        later = ExtractedEntities(service=ServiceDescription("Serviço prestado", "1799", matched=False))

        assert later.merged_over(earlier).service.code == "1701"

    def test_from_dict_restores_captured_values(self):
        original = ExtractedEntities(
            amount=MonetaryAmount(1000),
            document=DocumentNumber.parse("52998224725"),
            period=Period(symbol="month:3"),
            invoice_ref="123",
        )

        restored = ExtractedEntities.from_dict(original.to_dict())

        assert restored.amount == original.amount
        assert restored.document == original.document
        assert restored.period == original.period
        assert restored.invoice_ref == "123"

    def test_from_dict_ignores_malformed_values(self):
        restored = ExtractedEntities.from_dict(
            {"amount_cents": -5, "period": {"start": "not-a-date"}, "name": "  "}
        )

        assert restored.amount is None
        assert restored.period is None
        assert restored.name is None
        assert ExtractedEntities.from_dict(None) == ExtractedEntities()
