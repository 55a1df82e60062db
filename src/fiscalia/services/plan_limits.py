"""Plan quota checks.

Counts are read from the stores at call time. There is no reservation
of quota: two concurrent emissions from the same account can both pass.
"""

from __future__ import annotations

from fiscalia.domain.plans import QuotaCheck, get_plan
from fiscalia.domain.ports import AccountStore, CompanyStore, InvoiceStore
from fiscalia.infra.time import Clock, SystemClock


class StorePlanLimitService:
    """PlanLimitService backed by the account, company and invoice stores."""

    def __init__(
        self,
        *,
        accounts: AccountStore,
        companies: CompanyStore,
        invoices: InvoiceStore,
        clock: Clock | None = None,
    ) -> None:
        self._accounts = accounts
        self._companies = companies
        self._invoices = invoices
        self._clock = clock or SystemClock()

    def _plan_id(self, account_id: str) -> str:
        account = self._accounts.get(account_id)
        return account.plan_id if account else "trial"

    def check_invoice_quota(self, account_id: str) -> QuotaCheck:
        plan = get_plan(self._plan_id(account_id))
        now = self._clock.now()
        used = self._invoices.count_month(account_id, now.year, now.month)
        if plan.max_invoices_per_month is None:
            return QuotaCheck(allowed=True, used=used, max=None, plan_id=plan.id)
        return QuotaCheck(
            allowed=used < plan.max_invoices_per_month,
            used=used,
            max=plan.max_invoices_per_month,
            plan_id=plan.id,
        )

    def check_company_quota(self, account_id: str) -> QuotaCheck:
        plan = get_plan(self._plan_id(account_id))
        used = self._companies.count(account_id)
        if plan.max_companies is None:
            return QuotaCheck(allowed=True, used=used, max=None, plan_id=plan.id)
        return QuotaCheck(
            allowed=used < plan.max_companies,
            used=used,
            max=plan.max_companies,
            plan_id=plan.id,
        )
