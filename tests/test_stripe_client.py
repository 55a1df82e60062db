"""Tests for the Stripe pay-per-use processor (SDK mocked)."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import stripe

from fiscalia.payments.stripe_client import StripePaymentProcessor


@pytest.fixture
def sdk():
    client = MagicMock()
    client.v1.customers.retrieve.return_value = SimpleNamespace(
        invoice_settings=SimpleNamespace(default_payment_method="pm_card")
    )
    client.v1.payment_intents.create.return_value = SimpleNamespace(id="pi_1", status="succeeded")
    client.v1.refunds.create.return_value = SimpleNamespace(id="re_1", status="succeeded")
    with patch("fiscalia.payments.stripe_client.stripe.StripeClient", return_value=client):
        yield client


def test_requires_api_key(monkeypatch):
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)

    with pytest.raises(RuntimeError, match="STRIPE_SECRET_KEY"):
        StripePaymentProcessor()


def test_charge_uses_idempotency_key(sdk):
    result = StripePaymentProcessor("sk_test").charge_once(
        "cus_1", 900, "Nota fiscal avulsa", idempotency_key="nfse-usage:acc-1:abc"
    )

    assert result.success
    assert result.charge_id == "pi_1"
    kwargs = sdk.v1.payment_intents.create.call_args.kwargs
    assert kwargs["options"] == {"idempotency_key": "nfse-usage:acc-1:abc"}
    assert kwargs["params"]["amount"] == 900
    assert kwargs["params"]["currency"] == "brl"
    assert kwargs["params"]["payment_method"] == "pm_card"
    assert kwargs["params"]["off_session"] is True


def test_missing_payment_method(sdk):
    sdk.v1.customers.retrieve.return_value = SimpleNamespace(invoice_settings=None)

    result = StripePaymentProcessor("sk_test").charge_once("cus_1", 900, "x", idempotency_key="k")

    assert not result.success
    assert result.error_code == "payment_method_required"
    sdk.v1.payment_intents.create.assert_not_called()


def test_card_decline_is_reported(sdk):
    sdk.v1.payment_intents.create.side_effect = stripe.CardError(
        "Your card was declined.", None, "card_declined"
    )

    result = StripePaymentProcessor("sk_test").charge_once("cus_1", 900, "x", idempotency_key="k")

    assert not result.success
    assert result.error_code == "card_declined"


def test_incomplete_payment(sdk):
    sdk.v1.payment_intents.create.return_value = SimpleNamespace(id="pi_2", status="requires_action")

    result = StripePaymentProcessor("sk_test").charge_once("cus_1", 900, "x", idempotency_key="k")

    assert not result.success
    assert result.charge_id == "pi_2"
    assert result.error_code == "payment_requires_action"


def test_refund(sdk):
    assert StripePaymentProcessor("sk_test").refund("pi_1", idempotency_key="nfse-refund:pi_1")

    kwargs = sdk.v1.refunds.create.call_args.kwargs
    assert kwargs["params"] == {"payment_intent": "pi_1"}
    assert kwargs["options"] == {"idempotency_key": "nfse-refund:pi_1"}


def test_refund_failure_returns_false(sdk):
    sdk.v1.refunds.create.side_effect = stripe.StripeError("boom")

    assert StripePaymentProcessor("sk_test").refund("pi_1", idempotency_key="k") is False
