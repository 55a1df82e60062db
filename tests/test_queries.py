"""Tests for read-only query answering."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from fakes import (
    ACCOUNT_ID,
    VALID_CNPJ,
    FakeClientDirectory,
    FakeCompanyStore,
    FakeInvoiceStore,
    make_client,
    make_company,
    make_invoice,
)

from fiscalia.domain.actions import Action, ActionType
from fiscalia.domain.companies import TaxRegime
from fiscalia.domain.entities import Period
from fiscalia.domain.invoices import InvoiceStatus
from fiscalia.services.queries import QueryService, period_label

TODAY = date(2026, 3, 10)


def _at(year, month, day):
    return datetime(year, month, day, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def stores():
    companies = FakeCompanyStore([make_company()])
    invoices = FakeInvoiceStore(
        [
            make_invoice(id="inv-2", number="99", amount=Decimal("500.00"), issued_at=_at(2026, 2, 20)),
            make_invoice(
                id="inv-3",
                number="100",
                amount=Decimal("300.00"),
                status=InvoiceStatus.REJECTED,
                error_message="Código de serviço não permitido",
            ),
            make_invoice(),
        ],
        companies=companies,
    )
    clients = FakeClientDirectory([make_client("João Silva"), make_client("Maria Souza", VALID_CNPJ)])
    return {"companies": companies, "invoices": invoices, "clients": clients}


def _answer(stores, clock, action_type, data=None):
    service = QueryService(**stores, clock=clock)
    return service.answer(Action(action_type, dict(data or {})), ACCOUNT_ID)


@pytest.mark.parametrize(
    "period, label",
    [
        (Period(symbol="last_month"), "no mês passado"),
        (Period(symbol="month:1"), "em janeiro de 2026"),
        (Period(symbol="month:11"), "em novembro de 2025"),
        (Period(start=date(2026, 2, 1), end=date(2026, 2, 15)), "de 01/02/2026 a 15/02/2026"),
    ],
)
def test_period_label(period, label):
    assert period_label(period, TODAY) == label


class TestRevenue:
    def test_defaults_to_current_month(self, stores, clock):
        action = _answer(stores, clock, ActionType.REVENUE)

        assert action.data == {"total": "1500.00", "count": 1, "start": "2026-03-01", "end": "2026-03-10"}
        assert action.explanation == (
            "Seu faturamento neste mês foi de R$ 1.500,00 (1 nota(s) autorizada(s))."
        )

    def test_requested_period(self, stores, clock):
        action = _answer(stores, clock, ActionType.REVENUE, {"period": {"symbol": "last_month"}})

        assert action.data["total"] == "500.00"
        assert "no mês passado" in action.explanation

    def test_without_company(self, stores, clock):
        stores["companies"].companies.clear()

        action = _answer(stores, clock, ActionType.REVENUE)

        assert action.explanation.startswith("Você ainda não tem uma empresa cadastrada.")


class TestInvoices:
    def test_list_newest_first(self, stores, clock):
        action = _answer(stores, clock, ActionType.LIST_INVOICES)

        assert [i["id"] for i in action.data["invoices"]] == ["inv-1", "inv-3", "inv-2"]
        assert action.explanation.startswith("Suas últimas notas:\n• Nº 101 | João Silva | R$ 1.500,00 | autorizada")

    def test_list_for_period(self, stores, clock):
        action = _answer(stores, clock, ActionType.LIST_INVOICES, {"period": {"symbol": "last_month"}})

        assert [i["id"] for i in action.data["invoices"]] == ["inv-2"]
        assert action.explanation.startswith("Notas emitidas no mês passado:")

    def test_empty_list(self, stores, clock):
        stores["invoices"].invoices.clear()

        action = _answer(stores, clock, ActionType.LIST_INVOICES)

        assert action.explanation == "Nenhuma nota encontrada."

    def test_rejected(self, stores, clock):
        action = _answer(stores, clock, ActionType.REJECTED_INVOICES)

        assert [i["id"] for i in action.data["invoices"]] == ["inv-3"]
        assert action.explanation.startswith("Notas rejeitadas:")

    def test_no_pending(self, stores, clock):
        action = _answer(stores, clock, ActionType.PENDING_INVOICES)

        assert action.explanation == "Nenhuma nota encontrada em processamento."

    def test_last_invoice(self, stores, clock):
        action = _answer(stores, clock, ActionType.LAST_INVOICE)

        assert action.data["invoice"]["id"] == "inv-1"

    def test_status_of_rejected_invoice_includes_reason(self, stores, clock):
        action = _answer(stores, clock, ActionType.INVOICE_STATUS, {"invoiceRef": "100"})

        assert action.explanation == (
            "A nota 100 está com status: rejeitada.\nMotivo: Código de serviço não permitido"
        )

    def test_status_of_unknown_invoice(self, stores, clock):
        action = _answer(stores, clock, ActionType.INVOICE_STATUS, {"invoiceRef": "999"})

        assert action.data["invoice"] is None
        assert action.explanation == "Não encontrei a nota 999."


class TestClients:
    def test_list(self, stores, clock):
        action = _answer(stores, clock, ActionType.LIST_CLIENTS)

        assert action.explanation == (
            "Seus clientes:\n• João Silva (529.982.247-25)\n• Maria Souza (11.222.333/0001-81)"
        )

    def test_list_empty(self, stores, clock):
        stores["clients"].clients.clear()

        action = _answer(stores, clock, ActionType.LIST_CLIENTS)

        assert action.explanation == "Você ainda não tem clientes cadastrados."

    def test_search_by_name(self, stores, clock):
        action = _answer(stores, clock, ActionType.SEARCH_CLIENT, {"query": "maria"})

        assert [c["name"] for c in action.data["clients"]] == ["Maria Souza"]

    def test_search_by_document(self, stores, clock):
        action = _answer(stores, clock, ActionType.SEARCH_CLIENT, {"query": "529.982.247-25"})

        assert [c["name"] for c in action.data["clients"]] == ["João Silva"]

    def test_search_without_match(self, stores, clock):
        action = _answer(stores, clock, ActionType.SEARCH_CLIENT, {"query": "Zé"})

        assert action.explanation == 'Não encontrei nenhum cliente para "Zé".'


class TestTaxes:
    def test_simples_estimate(self, stores, clock):
        action = _answer(stores, clock, ActionType.VIEW_TAXES)

        assert action.data["issEstimate"] == "75.00"
        assert "ISS estimado (5%): R$ 75,00" in action.explanation
        assert "meiUsagePercent" not in action.data

    def test_mei_shows_annual_limit_usage(self, stores, clock):
        stores["companies"].companies["comp-1"] = make_company(regime=TaxRegime.MEI)
        stores["invoices"].invoices["inv-jan"] = make_invoice(
            id="inv-jan", amount=Decimal("38500.00"), issued_at=_at(2026, 1, 15)
        )

        action = _answer(stores, clock, ActionType.VIEW_TAXES)

        assert action.data["meiUsagePercent"] == 50
        assert action.explanation.endswith(
            "Você já usou 50% do limite anual do MEI (R$ 40.500,00 de R$ 81.000,00)."
        )


def test_non_query_action_is_returned_unchanged(stores, clock):
    action = Action(ActionType.GREETING, {}, "Olá!")

    assert QueryService(**stores, clock=clock).answer(action, ACCOUNT_ID) is action
