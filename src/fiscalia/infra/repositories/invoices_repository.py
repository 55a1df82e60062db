"""Invoices repository - issued NFS-e, their status history and usage records.

Uses raw SQL with psycopg2 (no ORM).

Invoices belong to a company; ownership checks join through companies.
An invoice reference is either its UUID or its municipal number.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from fiscalia.domain.invoices import (
    REVENUE_STATUSES,
    EmissionResult,
    Invoice,
    InvoiceIssuanceRequest,
    InvoiceStatus,
    StatusResult,
    UsageRecord,
)
from fiscalia.infra.db import txn

_SELECT = """
    SELECT i.id, i.company_id, i.client_id, i.amount, i.service_description, i.status,
           i.number, i.provider_id, i.verification_code, i.pdf_url, i.xml_url,
           i.iss_rate, i.service_code, i.issued_at, i.created_at, cl.name,
           i.error_message, i.poll_attempts, i.last_polled_at
    FROM invoices i
    JOIN companies c ON c.id = i.company_id
    LEFT JOIN clients cl ON cl.id = i.client_id
"""


def _row_to_invoice(row: tuple) -> Invoice:
    return Invoice(
        id=str(row[0]),
        company_id=str(row[1]),
        client_id=str(row[2]) if row[2] else None,
        amount=Decimal(row[3]),
        service_description=row[4],
        status=InvoiceStatus(row[5]),
        number=row[6],
        provider_id=row[7],
        verification_code=row[8],
        pdf_url=row[9],
        xml_url=row[10],
        iss_rate=Decimal(row[11]) if row[11] is not None else None,
        service_code=row[12],
        issued_at=row[13],
        created_at=row[14],
        client_name=row[15],
        error_message=row[16],
        poll_attempts=row[17] or 0,
        last_polled_at=row[18],
    )


# ── Invoices ──────────────────────────────────────────────────────────────────


def insert_invoice(
    cur: PgCursor,
    *,
    company_id: str,
    client_id: str,
    request: InvoiceIssuanceRequest,
    result: EmissionResult,
    issued_at: datetime,
) -> str:
    """Insert an invoice from a provider emission answer.

    Returns:
        The new invoice UUID.
    """
    cur.execute(
        """
        INSERT INTO invoices (
            company_id, client_id, amount, service_description, service_code,
            iss_rate, status, number, provider_id, verification_code,
            pdf_url, xml_url, error_message, issued_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            company_id,
            client_id,
            request.amount,
            request.service_description,
            request.service_code,
            request.iss_rate,
            result.status.value,
            result.number,
            result.provider_id,
            result.verification_code,
            result.pdf_url,
            result.xml_url,
            result.message if result.status is InvoiceStatus.REJECTED else None,
            issued_at,
        ),
    )
    return str(cur.fetchone()[0])


def get_invoice(cur: PgCursor, owner_id: str, invoice_ref: str) -> Invoice | None:
    cur.execute(
        _SELECT
        + """
        WHERE c.owner_id = %s AND (i.id::text = %s OR i.number = %s)
        ORDER BY i.created_at DESC
        LIMIT 1
        """,
        (owner_id, invoice_ref, invoice_ref),
    )
    row = cur.fetchone()
    return _row_to_invoice(row) if row else None


def last_invoice(cur: PgCursor, owner_id: str, company_id: str | None = None) -> Invoice | None:
    cur.execute(
        _SELECT
        + """
        WHERE c.owner_id = %s AND (%s::text IS NULL OR i.company_id::text = %s)
        ORDER BY i.created_at DESC
        LIMIT 1
        """,
        (owner_id, company_id, company_id),
    )
    row = cur.fetchone()
    return _row_to_invoice(row) if row else None


def list_invoices(
    cur: PgCursor,
    owner_id: str,
    *,
    statuses: tuple[InvoiceStatus, ...] | None = None,
    start: date | None = None,
    end: date | None = None,
    limit: int = 10,
) -> list[Invoice]:
    """List an owner's invoices, newest first.

    Args:
        cur: Database cursor.
        owner_id: Owning account.
        statuses: Only these statuses (None: all).
        start: Created on or after this date.
        end: Created on or before this date.
        limit: Maximum rows.
    """
    clauses = ["c.owner_id = %s"]
    params: list[Any] = [owner_id]
    if statuses:
        clauses.append("i.status = ANY(%s)")
        params.append([s.value for s in statuses])
    if start is not None:
        clauses.append("i.created_at::date >= %s")
        params.append(start)
    if end is not None:
        clauses.append("i.created_at::date <= %s")
        params.append(end)
    params.append(limit)

    cur.execute(
        _SELECT + " WHERE " + " AND ".join(clauses) + " ORDER BY i.created_at DESC LIMIT %s",
        tuple(params),
    )
    return [_row_to_invoice(row) for row in cur.fetchall()]


def update_invoice_status(cur: PgCursor, invoice_id: str, result: StatusResult) -> None:
    cur.execute(
        """
        UPDATE invoices
        SET status            = %s,
            number            = COALESCE(%s, number),
            verification_code = COALESCE(%s, verification_code),
            pdf_url           = COALESCE(%s, pdf_url),
            xml_url           = COALESCE(%s, xml_url),
            error_message     = CASE WHEN %s = 'rejected' THEN %s ELSE error_message END,
            updated_at        = now()
        WHERE id = %s
        """,
        (
            result.status.value,
            result.number,
            result.verification_code,
            result.pdf_url,
            result.xml_url,
            result.status.value,
            result.message,
            invoice_id,
        ),
    )


def revenue(
    cur: PgCursor,
    company_id: str,
    start: date,
    end: date,
    statuses: tuple[InvoiceStatus, ...] = REVENUE_STATUSES,
) -> tuple[Decimal, int]:
    cur.execute(
        """
        SELECT COALESCE(SUM(amount), 0), count(*)
        FROM invoices
        WHERE company_id = %s
          AND status = ANY(%s)
          AND COALESCE(issued_at, created_at)::date BETWEEN %s AND %s
        """,
        (company_id, [s.value for s in statuses], start, end),
    )
    row = cur.fetchone()
    return Decimal(row[0]), int(row[1])


def count_month(cur: PgCursor, owner_id: str, year: int, month: int) -> int:
    """Invoices counted against the monthly quota (rejected ones excluded)."""
    cur.execute(
        """
        SELECT count(*)
        FROM invoices i
        JOIN companies c ON c.id = i.company_id
        WHERE c.owner_id = %s
          AND i.status <> 'rejected'
          AND EXTRACT(YEAR FROM i.created_at) = %s
          AND EXTRACT(MONTH FROM i.created_at) = %s
        """,
        (owner_id, year, month),
    )
    return int(cur.fetchone()[0])


def pending_for_polling(
    cur: PgCursor, since: datetime, limit: int, max_attempts: int
) -> list[Invoice]:
    """Processing invoices since ``since`` with attempts left, least recently polled first."""
    cur.execute(
        _SELECT
        + """
        WHERE i.status = 'processing'
          AND i.provider_id IS NOT NULL
          AND i.poll_attempts < %s
          AND COALESCE(i.issued_at, i.created_at) >= %s
        ORDER BY i.last_polled_at NULLS FIRST, i.created_at
        LIMIT %s
        """,
        (max_attempts, since, limit),
    )
    return [_row_to_invoice(row) for row in cur.fetchall()]


def record_poll(cur: PgCursor, invoice_id: str, polled_at: datetime) -> None:
    cur.execute(
        """
        UPDATE invoices
        SET poll_attempts = poll_attempts + 1, last_polled_at = %s
        WHERE id = %s
        """,
        (polled_at, invoice_id),
    )


def insert_status_history(
    cur: PgCursor,
    *,
    invoice_id: str | None,
    company_id: str,
    status: str,
    message: str,
    metadata: dict[str, Any] | None = None,
) -> None:
    cur.execute(
        """
        INSERT INTO invoice_status_history (invoice_id, company_id, status, message, metadata)
        VALUES (%s, %s, %s, %s, %s)
        """,
        (invoice_id, company_id, status, message, json.dumps(metadata or {}, default=str)),
    )


# ── Usage records (pay-per-use) ───────────────────────────────────────────────


def insert_usage(
    cur: PgCursor,
    *,
    account_id: str,
    amount_cents: int,
    status: str,
    charge_id: str | None = None,
    error: str | None = None,
) -> UsageRecord:
    cur.execute(
        """
        INSERT INTO usage_records (account_id, amount_cents, status, charge_id, error)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING id
        """,
        (account_id, amount_cents, status, charge_id, error),
    )
    return UsageRecord(
        id=str(cur.fetchone()[0]),
        account_id=account_id,
        amount_cents=amount_cents,
        status=status,
        charge_id=charge_id,
    )


def update_usage(
    cur: PgCursor, usage_id: str, *, status: str | None = None, invoice_id: str | None = None
) -> None:
    cur.execute(
        """
        UPDATE usage_records
        SET status     = COALESCE(%s, status),
            invoice_id = COALESCE(%s, invoice_id),
            updated_at = now()
        WHERE id = %s
        """,
        (status, invoice_id, usage_id),
    )


class PgInvoiceStore:
    """InvoiceStore over invoices, invoice_status_history and usage_records."""

    def create_invoice(
        self,
        *,
        company_id: str,
        client_id: str,
        request: InvoiceIssuanceRequest,
        result: EmissionResult,
        issued_at: datetime,
    ) -> Invoice:
        with txn() as cur:
            invoice_id = insert_invoice(
                cur,
                company_id=company_id,
                client_id=client_id,
                request=request,
                result=result,
                issued_at=issued_at,
            )
            cur.execute(_SELECT + " WHERE i.id = %s", (invoice_id,))
            return _row_to_invoice(cur.fetchone())

    def get(self, owner_id: str, invoice_ref: str) -> Invoice | None:
        with txn() as cur:
            return get_invoice(cur, owner_id, invoice_ref)

    def last_invoice(self, owner_id: str, company_id: str | None = None) -> Invoice | None:
        with txn() as cur:
            return last_invoice(cur, owner_id, company_id)

    def list_invoices(
        self,
        owner_id: str,
        *,
        statuses: tuple[InvoiceStatus, ...] | None = None,
        start: date | None = None,
        end: date | None = None,
        limit: int = 10,
    ) -> list[Invoice]:
        with txn() as cur:
            return list_invoices(cur, owner_id, statuses=statuses, start=start, end=end, limit=limit)

    def update_status(self, invoice_id: str, result: StatusResult) -> None:
        with txn() as cur:
            update_invoice_status(cur, invoice_id, result)

    def add_status_history(
        self,
        invoice_id: str | None,
        company_id: str,
        status: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        with txn() as cur:
            insert_status_history(
                cur,
                invoice_id=invoice_id,
                company_id=company_id,
                status=status,
                message=message,
                metadata=metadata,
            )

    def revenue(
        self,
        company_id: str,
        start: date,
        end: date,
        statuses: tuple[InvoiceStatus, ...] = REVENUE_STATUSES,
    ) -> tuple[Decimal, int]:
        with txn() as cur:
            return revenue(cur, company_id, start, end, statuses)

    def count_month(self, owner_id: str, year: int, month: int) -> int:
        with txn() as cur:
            return count_month(cur, owner_id, year, month)

    def pending_for_polling(self, since: datetime, limit: int, max_attempts: int) -> list[Invoice]:
        with txn() as cur:
            return pending_for_polling(cur, since, limit, max_attempts)

    def record_poll(self, invoice_id: str, polled_at: datetime) -> None:
        with txn() as cur:
            record_poll(cur, invoice_id, polled_at)

    def record_usage(
        self,
        *,
        account_id: str,
        amount_cents: int,
        status: str,
        charge_id: str | None = None,
        error: str | None = None,
    ) -> UsageRecord:
        with txn() as cur:
            return insert_usage(
                cur,
                account_id=account_id,
                amount_cents=amount_cents,
                status=status,
                charge_id=charge_id,
                error=error,
            )

    def update_usage(
        self, usage_id: str, *, status: str | None = None, invoice_id: str | None = None
    ) -> None:
        with txn() as cur:
            update_usage(cur, usage_id, status=status, invoice_id=invoice_id)
