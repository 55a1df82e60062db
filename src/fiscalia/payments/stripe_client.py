"""Pay-per-use charging through the Stripe SDK.

Purpose:
- Keep stripe.* imports out of the issuance flow.
- Every call carries an idempotency key so retries never double charge.
- Never log full Stripe payloads (only IDs + correlation metadata).
"""

from __future__ import annotations

import os

import stripe

from fiscalia.domain.ports import ChargeResult
from fiscalia.observability.logging import get_correlation_id, get_logger
from fiscalia.observability.redaction import safe_log_context

logger = get_logger(__name__)

CURRENCY = "brl"


class StripePaymentProcessor:
    """One-off off-session charges against the customer's saved card.

    Usage:
        processor = StripePaymentProcessor()  # reads STRIPE_SECRET_KEY from env
        result = processor.charge_once(
            "cus_123", 900, "Nota fiscal avulsa", idempotency_key="usage:acc-1:abc"
        )
    """

    def __init__(self, api_key: str | None = None) -> None:
        """Initialize the processor.

        Args:
            api_key: Stripe secret key. Defaults to STRIPE_SECRET_KEY env var.

        Raises:
            RuntimeError: If no API key is provided or found in environment.
        """
        self._api_key = api_key or os.environ.get("STRIPE_SECRET_KEY")
        if not self._api_key:
            raise RuntimeError(
                "Stripe API key not provided. "
                "Set STRIPE_SECRET_KEY or pass api_key parameter."
            )

    def _client(self) -> stripe.StripeClient:
        return stripe.StripeClient(self._api_key)

    def _default_payment_method(self, client: stripe.StripeClient, customer_ref: str) -> str | None:
        customer = client.v1.customers.retrieve(customer_ref)
        settings = getattr(customer, "invoice_settings", None)
        method = getattr(settings, "default_payment_method", None) if settings else None
        if method is None:
            return None
        return method if isinstance(method, str) else method.id

    def charge_once(
        self,
        customer_ref: str,
        amount_cents: int,
        description: str,
        *,
        idempotency_key: str,
    ) -> ChargeResult:
        """Charge the customer's default payment method once.

        Args:
            customer_ref: Stripe customer id.
            amount_cents: Amount in cents (BRL).
            description: Statement description.
            idempotency_key: Same key -> same PaymentIntent.

        Returns:
            ChargeResult. Declines and missing cards are reported, not raised.
        """
        client = self._client()
        try:
            payment_method = self._default_payment_method(client, customer_ref)
            if payment_method is None:
                return ChargeResult(
                    success=False,
                    error_code="payment_method_required",
                    error_message="Customer has no default payment method",
                )
            intent = client.v1.payment_intents.create(
                params={
                    "amount": amount_cents,
                    "currency": CURRENCY,
                    "customer": customer_ref,
                    "payment_method": payment_method,
                    "description": description,
                    "confirm": True,
                    "off_session": True,
                },
                options={"idempotency_key": idempotency_key},
            )
        except stripe.CardError as exc:
            logger.info(
                "stripe_charge_declined",
                extra={
                    "extra_fields": safe_log_context(
                        decline_code=getattr(exc, "code", None),
                        correlation_id=get_correlation_id(),
                    )
                },
            )
            return ChargeResult(success=False, error_code=exc.code or "card_declined", error_message=str(exc))
        except stripe.StripeError as exc:
            logger.warning(
                "stripe_charge_failed",
                extra={"extra_fields": safe_log_context(error=str(exc), correlation_id=get_correlation_id())},
            )
            return ChargeResult(success=False, error_code="stripe_error", error_message=str(exc))

        # Log only IDs, never full payload
        logger.info(
            "stripe_charge_created",
            extra={
                "extra_fields": safe_log_context(
                    payment_intent_id=intent.id,
                    status=intent.status,
                    correlation_id=get_correlation_id(),
                )
            },
        )
        if intent.status != "succeeded":
            return ChargeResult(
                success=False,
                charge_id=intent.id,
                error_code=f"payment_{intent.status}",
                error_message="Payment not completed",
            )
        return ChargeResult(success=True, charge_id=intent.id)

    def refund(self, charge_id: str, *, idempotency_key: str) -> bool:
        """Refund a PaymentIntent in full. Returns False if Stripe refused it."""
        client = self._client()
        try:
            refund = client.v1.refunds.create(
                params={"payment_intent": charge_id},
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as exc:
            logger.error(
                "stripe_refund_failed",
                extra={
                    "extra_fields": safe_log_context(
                        payment_intent_id=charge_id,
                        error=str(exc),
                        correlation_id=get_correlation_id(),
                    )
                },
            )
            return False

        logger.info(
            "stripe_refund_created",
            extra={
                "extra_fields": safe_log_context(
                    payment_intent_id=charge_id,
                    refund_id=refund.id,
                    status=refund.status,
                    correlation_id=get_correlation_id(),
                )
            },
        )
        return refund.status in ("succeeded", "pending")
