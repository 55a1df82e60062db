"""Tests for the assistant HTTP endpoints (services replaced via dependency_overrides)."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fakes import ACCOUNT_ID, NOW, FakeConversationStore, make_account
from fastapi.testclient import TestClient

from fiscalia.api.auth import CurrentUser, get_current_user
from fiscalia.api.deps import get_action_executor, get_conversation_store, get_dispatcher
from fiscalia.api.factory import create_app
from fiscalia.domain.actions import Action, ActionType
from fiscalia.domain.conversations import ConversationTurn, Role
from fiscalia.domain.errors import FiscalProviderUnavailable, InvoiceNotFound
from fiscalia.services.dispatch import DispatchResult


@pytest.fixture
def dispatcher():
    dispatcher = MagicMock()
    dispatcher.process.return_value = DispatchResult(
        action=Action(
            ActionType.EMIT_INVOICE,
            data={"amount": 1500.0, "clientName": "João Silva"},
            explanation="Vou emitir uma nota de R$ 1.500,00 para João Silva.",
        ),
        stage="rules",
    )
    return dispatcher


@pytest.fixture
def executor():
    executor = MagicMock()
    executor.execute.return_value = {"invoice": {"id": "inv-1"}, "message": "Nota fiscal enviada."}
    return executor


@pytest.fixture
def conversations(clock):
    return FakeConversationStore(clock=clock)


@pytest.fixture
def client(dispatcher, executor, conversations):
    app = create_app(role="public")
    account = make_account()
    app.dependency_overrides[get_current_user] = lambda: CurrentUser(account=account, external_subject="user-123")
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_action_executor] = lambda: executor
    app.dependency_overrides[get_conversation_store] = lambda: conversations
    return TestClient(app)


class TestProcess:
    def test_proposes_action(self, client, dispatcher):
        response = client.post(
            "/assistant/process",
            json={"message": "emitir nota de 1500 para João Silva", "companyId": "comp-1"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "action": {
                "type": "emit_invoice",
                "data": {"amount": 1500.0, "clientName": "João Silva"},
                "requiresConfirmation": True,
            },
            "explanation": "Vou emitir uma nota de R$ 1.500,00 para João Silva.",
            "requiresConfirmation": True,
        }
        dispatcher.process.assert_called_once_with(
            ACCOUNT_ID, "emitir nota de 1500 para João Silva", company_id="comp-1", history=None
        )

    def test_conversational_answer_has_no_action(self, client, dispatcher):
        dispatcher.process.return_value = DispatchResult(
            action=Action(ActionType.GREETING, explanation="Olá! Como posso ajudar?"), stage="rules"
        )

        body = client.post("/assistant/process", json={"message": "oi"}).json()

        assert body["action"] is None
        assert body["explanation"] == "Olá! Como posso ajudar?"
        assert body["requiresConfirmation"] is False

    def test_client_history_is_forwarded(self, client, dispatcher):
        history = [{"role": "user", "content": "oi"}, {"role": "assistant", "content": "Olá!"}]

        client.post("/assistant/process", json={"message": "1500", "history": history})

        assert dispatcher.process.call_args.kwargs["history"] == history

    def test_blank_message(self, client, dispatcher):
        response = client.post("/assistant/process", json={"message": "   "})

        assert response.status_code == 400
        assert response.json() == {"message": "Mensagem é obrigatória.", "code": "INVALID_MESSAGE"}
        dispatcher.process.assert_not_called()

    def test_message_too_long(self, client):
        response = client.post("/assistant/process", json={"message": "a" * 2001})

        assert response.status_code == 422

    def test_invalid_history_role(self, client):
        response = client.post(
            "/assistant/process", json={"message": "oi", "history": [{"role": "system", "content": "x"}]}
        )

        assert response.status_code == 422

    def test_requires_authentication(self, dispatcher):
        app = create_app(role="public")
        app.dependency_overrides[get_dispatcher] = lambda: dispatcher

        response = TestClient(app).post("/assistant/process", json={"message": "oi"})

        assert response.status_code == 401


class TestExecuteAction:
    def test_success(self, client, executor):
        response = client.post(
            "/assistant/execute-action",
            json={"actionType": "emit_invoice", "actionData": {"amount": 1500}, "companyId": "comp-1"},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "invoice": {"id": "inv-1"}, "message": "Nota fiscal enviada."}
        account, action_type, data, company_id = executor.execute.call_args[0]
        assert account.id == ACCOUNT_ID
        assert (action_type, data, company_id) == ("emit_invoice", {"amount": 1500}, "comp-1")

    def test_domain_error_body(self, client, executor):
        executor.execute.side_effect = InvoiceNotFound(data={"reference": "101"})

        response = client.post(
            "/assistant/execute-action", json={"actionType": "cancel_invoice", "actionData": {"invoiceNumber": "101"}}
        )

        assert response.status_code == 404
        assert response.json() == {
            "message": "Nota fiscal não encontrada.",
            "code": "INVOICE_NOT_FOUND",
            "data": {"reference": "101"},
        }

    def test_provider_error_is_translated(self, client, executor):
        executor.execute.side_effect = FiscalProviderUnavailable("Read timed out (host=api.nuvemfiscal.com.br)")

        response = client.post("/assistant/execute-action", json={"actionType": "emit_invoice"})

        assert response.status_code == 503
        body = response.json()
        assert body["code"] == "FISCAL_PROVIDER_UNAVAILABLE"
        assert "nuvemfiscal" not in body["message"]
        assert body["data"]["action"]

    def test_unexpected_error_returns_generic_body(self, client, executor):
        executor.execute.side_effect = RuntimeError("db down at 10.0.0.5")
        raw_client = TestClient(client.app, raise_server_exceptions=False)

        response = raw_client.post("/assistant/execute-action", json={"actionType": "emit_invoice"})

        assert response.status_code == 500
        assert response.json() == {"message": "Erro ao processar solicitação.", "code": "INTERNAL_ERROR"}
        assert "db down" not in response.text

    def test_action_type_is_required(self, client):
        response = client.post("/assistant/execute-action", json={"actionData": {}})

        assert response.status_code == 422


class TestHistory:
    def _seed(self, conversations):
        conversations.append(ConversationTurn(account_id=ACCOUNT_ID, role=Role.USER, content="oi"))
        conversations.append(ConversationTurn(account_id=ACCOUNT_ID, role=Role.ASSISTANT, content="Olá!"))
        conversations.append(ConversationTurn(account_id="acc-2", role=Role.USER, content="outra conta"))

    def test_get_history(self, client, conversations):
        self._seed(conversations)

        response = client.get("/assistant/history")

        assert response.status_code == 200
        turns = response.json()["turns"]
        assert [t["content"] for t in turns] == ["oi", "Olá!"]
        assert turns[1]["role"] == "assistant"
        assert turns[0]["createdAt"] == NOW.isoformat()

    def test_history_limit(self, client, conversations):
        self._seed(conversations)

        turns = client.get("/assistant/history", params={"limit": 1}).json()["turns"]

        assert [t["content"] for t in turns] == ["Olá!"]

    def test_history_limit_bounds(self, client):
        assert client.get("/assistant/history", params={"limit": 0}).status_code == 422

    def test_clear_history(self, client, conversations):
        self._seed(conversations)

        response = client.delete("/assistant/history")

        assert response.json() == {"success": True, "deleted": 2}
        assert [t.account_id for t in conversations.turns] == ["acc-2"]


def test_suggestions(client):
    response = client.get("/assistant/suggestions")

    assert response.status_code == 200
    assert "Emitir nova nota fiscal" in response.json()
