"""Tests for plan quota checks."""

from datetime import timedelta

from fakes import (
    ACCOUNT_ID,
    NOW,
    FakeAccountStore,
    FakeCompanyStore,
    FakeInvoiceStore,
    make_account,
    make_company,
    make_invoice,
)

from fiscalia.domain.invoices import InvoiceStatus
from fiscalia.domain.plans import QuotaCheck, get_plan
from fiscalia.services.plan_limits import StorePlanLimitService


def _service(clock, plan_id="trial", invoices=(), companies=None):
    company_store = FakeCompanyStore(companies or [make_company()])
    return StorePlanLimitService(
        accounts=FakeAccountStore([make_account(plan_id=plan_id)]),
        companies=company_store,
        invoices=FakeInvoiceStore(list(invoices), companies=company_store),
        clock=clock,
    )


def _month_invoices(count, **overrides):
    return [make_invoice(id=f"inv-{i}", number=str(i), **overrides) for i in range(count)]


def test_trial_quota_reached(clock):
    quota = _service(clock, invoices=_month_invoices(5)).check_invoice_quota(ACCOUNT_ID)

    assert quota == QuotaCheck(allowed=False, used=5, max=5, plan_id="trial")
    assert quota.remaining == 0


def test_rejected_and_previous_month_do_not_count(clock):
    invoices = (
        _month_invoices(2)
        + [make_invoice(id="rej", status=InvoiceStatus.REJECTED)]
        + [make_invoice(id="old", issued_at=NOW - timedelta(days=40))]
    )

    quota = _service(clock, invoices=invoices).check_invoice_quota(ACCOUNT_ID)

    assert quota.allowed
    assert quota.used == 2
    assert quota.remaining == 3


def test_unlimited_plan(clock):
    quota = _service(clock, plan_id="business", invoices=_month_invoices(500)).check_invoice_quota(ACCOUNT_ID)

    assert quota.allowed
    assert quota.max is None
    assert quota.remaining is None


def test_unknown_account_gets_trial_limits(clock):
    quota = _service(clock).check_invoice_quota("acc-unknown")

    assert quota.plan_id == "trial"
    assert quota.max == 5


def test_company_quota(clock):
    companies = [make_company(), make_company(id="comp-2")]

    assert not _service(clock, companies=companies).check_company_quota(ACCOUNT_ID).allowed
    assert _service(clock, plan_id="essential", companies=companies[:1]).check_company_quota(ACCOUNT_ID).allowed


def test_get_plan_is_case_insensitive():
    assert get_plan("Professional").max_invoices_per_month == 100
    assert get_plan(None).id == "trial"
    assert get_plan("pay_per_use").pay_per_use
