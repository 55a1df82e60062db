"""Accounts repository - plan and billing context of a user.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from psycopg2.extensions import cursor as PgCursor

from fiscalia.domain.plans import AccountContext
from fiscalia.infra.db import txn


def get_account(cur: PgCursor, account_id: str) -> AccountContext | None:
    """Fetch the account with its plan and payment customer.

    Args:
        cur: Database cursor.
        account_id: Account UUID.

    Returns:
        AccountContext, or None if the account does not exist.
    """
    cur.execute(
        """
        SELECT id, plan_id, payment_customer_ref, email
        FROM accounts
        WHERE id = %s
        """,
        (account_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return AccountContext(
        id=str(row[0]),
        plan_id=row[1] or "trial",
        payment_customer_ref=row[2],
        email=row[3],
    )


def get_or_create_account(cur: PgCursor, *, external_subject: str, email: str | None) -> AccountContext:
    """Resolve the account for an authenticated subject, creating it on first login.

    New accounts start on the trial plan.
    """
    cur.execute(
        """
        INSERT INTO accounts (external_subject, email)
        VALUES (%s, %s)
        ON CONFLICT (external_subject) DO UPDATE
            SET email = COALESCE(EXCLUDED.email, accounts.email)
        RETURNING id, plan_id, payment_customer_ref, email
        """,
        (external_subject, email),
    )
    row = cur.fetchone()
    return AccountContext(
        id=str(row[0]),
        plan_id=row[1] or "trial",
        payment_customer_ref=row[2],
        email=row[3],
    )


class PgAccountStore:
    """AccountStore over the accounts table."""

    def get(self, account_id: str) -> AccountContext | None:
        with txn() as cur:
            return get_account(cur, account_id)
