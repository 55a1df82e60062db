"""Tests for action building and client resolution."""

from decimal import Decimal

from fakes import ACCOUNT_ID, VALID_CNPJ, VALID_CPF, FakeClientDirectory, make_client

from fiscalia.domain.actions import (
    CONFIRMATION_POLICY,
    Action,
    ActionType,
    build_action,
    emit_amount,
)
from fiscalia.domain.clients import (
    ClientResolution,
    ResolutionStatus,
    ensure_client,
    resolve_client,
)
from fiscalia.domain.entities import (
    DocumentNumber,
    ExtractedEntities,
    MonetaryAmount,
    Period,
    PersonName,
    ServiceDescription,
)
from fiscalia.domain.intents import Intent
from fiscalia.domain.templates import CAPABILITY_MENU

JOAO = make_client("João Silva", VALID_CPF)


def _entities(amount_cents=None, name=None, document=None, **kwargs) -> ExtractedEntities:
    return ExtractedEntities(
        amount=MonetaryAmount(amount_cents) if amount_cents else None,
        name=PersonName(name) if name else None,
        document=DocumentNumber.parse(document) if document else None,
        **kwargs,
    )


def _found(client) -> ClientResolution:
    return ClientResolution(status=ResolutionStatus.FOUND, client=client)


def _not_found() -> ClientResolution:
    return ClientResolution(status=ResolutionStatus.NOT_FOUND)


class TestConfirmationPolicy:
    def test_covers_every_action_type(self):
        assert set(CONFIRMATION_POLICY) == set(ActionType)

    def test_only_mutations_require_confirmation(self):
        confirmed = {t for t, required in CONFIRMATION_POLICY.items() if required}
        assert confirmed == {
            ActionType.EMIT_INVOICE,
            ActionType.CANCEL_INVOICE,
            ActionType.CREATE_CLIENT,
        }

    def test_to_dict(self):
        action = Action(ActionType.REVENUE, {"total": "10.00"})
        assert action.to_dict() == {
            "type": "revenue",
            "data": {"total": "10.00"},
            "requiresConfirmation": False,
        }


class TestEmit:
    def test_resolved_client_asks_for_confirmation(self):
        action = build_action(
            Intent.EMIT_INVOICE, _entities(150000, name="João Silva"), _found(JOAO)
        )

        assert action.type is ActionType.EMIT_INVOICE
        assert action.requires_confirmation
        assert action.data["amount"] == 1500.0
        assert action.data["amountCents"] == 150000
        assert action.data["clientId"] == JOAO.id
        assert action.data["clientDocument"] == VALID_CPF
        assert action.data["serviceCode"] == "1799"
        assert "R$ 1.500,00" in action.explanation
        assert "João Silva" in action.explanation
        assert "Confirma a emissão?" in action.explanation

    def test_matched_service_is_used(self):
        entities = _entities(
            50000, name="João Silva", service=ServiceDescription("Consultoria", "1701")
        )

        action = build_action(Intent.EMIT_INVOICE, entities, _found(JOAO))

        assert action.data["serviceDescription"] == "Consultoria"
        assert action.data["serviceCode"] == "1701"

    def test_unknown_client_with_name_and_document(self):
        action = build_action(
            Intent.EMIT_INVOICE,
            _entities(1000, name="Luciano", document=VALID_CPF),
            _not_found(),
        )

        assert action.type is ActionType.EMIT_INVOICE
        assert "clientId" not in action.data
        assert action.data["clientName"] == "Luciano"
        assert action.data["clientDocument"] == VALID_CPF

    def test_unknown_client_name_only_asks_for_document(self):
        action = build_action(
            Intent.EMIT_INVOICE, _entities(150000, name="João Silva"), _not_found()
        )

        assert action.type is ActionType.AWAITING_DOCUMENT
        assert not action.requires_confirmation
        assert action.data["intent"] == "emit_invoice"
        assert action.data["captured"]["amount_cents"] == 150000
        assert action.data["captured"]["name"] == "João Silva"
        assert "João Silva" in action.explanation

    def test_document_only_asks_for_name(self):
        action = build_action(
            Intent.EMIT_INVOICE, _entities(1000, document=VALID_CNPJ), _not_found()
        )

        assert action.type is ActionType.AWAITING_CLIENT_NAME
        assert "11.222.333/0001-81" in action.explanation

    def test_no_client_at_all(self):
        action = build_action(Intent.EMIT_INVOICE, _entities(1000), None)

        assert action.type is ActionType.AWAITING_CLIENT
        assert "R$ 10,00" in action.explanation

    def test_missing_amount(self):
        action = build_action(Intent.EMIT_INVOICE, _entities(name="João Silva"), _found(JOAO))

        assert action.type is ActionType.AWAITING_AMOUNT
        assert action.data["clientId"] == JOAO.id
        assert "para João Silva" in action.explanation

    def test_ambiguous_client_lists_candidates(self):
        other = make_client("João Silva Santos", "11144477735")
        resolution = ClientResolution(
            status=ResolutionStatus.AMBIGUOUS, candidates=(JOAO, other)
        )

        action = build_action(Intent.EMIT_INVOICE, _entities(1000, name="João"), resolution)

        assert action.type is ActionType.SELECT_CLIENT
        assert [c["id"] for c in action.data["candidates"]] == [JOAO.id, other.id]
        assert "1. João Silva (CPF 529.982.247-25)" in action.explanation
        assert "2. João Silva Santos" in action.explanation


class TestCancel:
    def test_missing_reference(self):
        action = build_action(Intent.CANCEL_INVOICE, _entities())

        assert action.type is ActionType.AWAITING_INVOICE_REFERENCE
        assert action.data["intent"] == "cancel_invoice"

    def test_short_reason_asks_for_justification(self):
        action = build_action(Intent.CANCEL_INVOICE, _entities(invoice_ref="123", reason="erro"))

        assert action.type is ActionType.AWAITING_CANCEL_REASON
        assert action.data["invoiceRef"] == "123"

    def test_complete_request_requires_confirmation(self):
        reason = "serviço não foi prestado"

        action = build_action(Intent.CANCEL_INVOICE, _entities(invoice_ref="123", reason=reason))

        assert action.type is ActionType.CANCEL_INVOICE
        assert action.requires_confirmation
        assert action.data == {"invoiceRef": "123", "reason": reason}


class TestCreateClient:
    def test_new_client(self):
        action = build_action(
            Intent.CREATE_CLIENT,
            _entities(name="Maria Souza", document=VALID_CPF),
            _not_found(),
        )

        assert action.type is ActionType.CREATE_CLIENT
        assert action.data == {"name": "Maria Souza", "document": VALID_CPF, "documentType": "cpf"}

    def test_existing_document_reports_client(self):
        action = build_action(
            Intent.CREATE_CLIENT,
            _entities(name="João", document=VALID_CPF),
            _found(JOAO),
        )

        assert action.type is ActionType.SEARCH_CLIENT
        assert "já está cadastrado" in action.explanation

    def test_name_only_asks_for_document(self):
        action = build_action(Intent.CREATE_CLIENT, _entities(name="Maria Souza"))

        assert action.type is ActionType.AWAITING_DOCUMENT
        assert action.data["intent"] == "create_client"


class TestQueriesAndConversation:
    def test_status_without_reference(self):
        assert build_action(Intent.INVOICE_STATUS, _entities()).type is ActionType.AWAITING_INVOICE_REFERENCE

    def test_query_carries_period(self):
        action = build_action(Intent.REVENUE, _entities(period=Period(symbol="last_month")))

        assert action.type is ActionType.REVENUE
        assert action.data["period"]["symbol"] == "last_month"
        assert action.explanation == ""

    def test_fallback_is_capability_menu(self):
        action = build_action(Intent.FALLBACK, _entities())

        assert action.type is ActionType.FALLBACK
        assert action.explanation == CAPABILITY_MENU
        assert action.is_conversational


class TestEmitAmount:
    def test_prefers_cents(self):
        assert emit_amount({"amountCents": 150050, "amount": 1.0}) == Decimal("1500.50")

    def test_float_amount(self):
        assert emit_amount({"amount": 10}) == Decimal("10.00")

    def test_missing(self):
        assert emit_amount({}) is None


class TestResolveClient:
    def setup_method(self):
        self.directory = FakeClientDirectory(
            [
                JOAO,
                make_client("João Silva Santos", "11144477735"),
                make_client("Maria Souza", VALID_CNPJ),
            ]
        )

    def test_document_is_authoritative(self):
        result = resolve_client(
            self.directory, ACCOUNT_ID, name="Outro Nome", document=DocumentNumber.parse(VALID_CNPJ)
        )

        assert result.status is ResolutionStatus.FOUND
        assert result.client.name == "Maria Souza"

    def test_unknown_document_does_not_fall_back_to_name(self):
        result = resolve_client(
            self.directory, ACCOUNT_ID, name="Maria", document=DocumentNumber.parse("86288366757")
        )

        assert result.status is ResolutionStatus.NOT_FOUND
        assert result.can_auto_create

    def test_partial_name_case_insensitive(self):
        result = resolve_client(self.directory, ACCOUNT_ID, name="MARIA")

        assert result.status is ResolutionStatus.FOUND
        assert result.client.document == VALID_CNPJ

    def test_ambiguous_name(self):
        result = resolve_client(self.directory, ACCOUNT_ID, name="joão silva")

        assert result.status is ResolutionStatus.AMBIGUOUS
        assert [c.name for c in result.candidates] == ["João Silva", "João Silva Santos"]

    def test_other_accounts_are_invisible(self):
        result = resolve_client(self.directory, "acc-2", name="Maria")

        assert result.status is ResolutionStatus.NOT_FOUND

    def test_nothing_to_resolve(self):
        result = resolve_client(self.directory, ACCOUNT_ID)

        assert result.status is ResolutionStatus.NOT_FOUND
        assert not result.can_auto_create

    def test_ensure_client_is_idempotent(self):
        document = DocumentNumber.parse("86288366757")

        first = ensure_client(self.directory, ACCOUNT_ID, name=" Pedro Alves ", document=document)
        second = ensure_client(self.directory, ACCOUNT_ID, name="Pedro", document=document)

        assert first == second
        assert first.name == "Pedro Alves"
        assert len(self.directory.created) == 1
