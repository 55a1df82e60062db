"""Subscription plans and per-account billing context."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Plan:
    """Plan limits. ``None`` means unlimited."""

    id: str
    name: str
    max_companies: int | None
    max_invoices_per_month: int | None
    pay_per_use: bool = False


PLANS: dict[str, Plan] = {
    "trial": Plan("trial", "Trial", max_companies=1, max_invoices_per_month=5),
    "essential": Plan("essential", "Essential", max_companies=2, max_invoices_per_month=30),
    "professional": Plan("professional", "Professional", max_companies=5, max_invoices_per_month=100),
    "pro": Plan("pro", "Pro", max_companies=1, max_invoices_per_month=None),
    "business": Plan("business", "Business", max_companies=5, max_invoices_per_month=None),
    "accountant": Plan("accountant", "Accountant", max_companies=None, max_invoices_per_month=None),
    "pay_per_use": Plan(
        "pay_per_use", "Pay per Use", max_companies=1, max_invoices_per_month=None, pay_per_use=True
    ),
}


def get_plan(plan_id: str | None) -> Plan:
    """Look up a plan; unknown ids fall back to trial limits."""
    return PLANS.get((plan_id or "").lower(), PLANS["trial"])


@dataclass(frozen=True)
class AccountContext:
    """The requesting account, as needed by the issuance flow.

    Attributes:
        payment_customer_ref: Payment-processor customer id (None: no
            payment method on file).
    """

    id: str
    plan_id: str
    payment_customer_ref: str | None = None
    email: str | None = None

    @property
    def plan(self) -> Plan:
        return get_plan(self.plan_id)


@dataclass(frozen=True)
class QuotaCheck:
    allowed: bool
    used: int
    max: int | None
    plan_id: str | None = None

    @property
    def remaining(self) -> int | None:
        if self.max is None:
            return None
        return max(self.max - self.used, 0)
