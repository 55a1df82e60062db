"""Companies repository - issuing companies and their provider state.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

from fiscalia.domain.companies import Company, TaxRegime
from fiscalia.infra.db import txn

_COLUMNS = """
    id, owner_id, name, cnpj, regime, municipality, municipality_code,
    provider_id, fiscal_status, municipality_supported, municipality_checked_at,
    certificate_expires_at, municipal_credentials
"""


def _row_to_company(row: tuple) -> Company:
    return Company(
        id=str(row[0]),
        owner_id=str(row[1]),
        name=row[2],
        cnpj=row[3],
        regime=TaxRegime.parse(row[4]),
        municipality=row[5],
        municipality_code=row[6],
        provider_id=row[7],
        fiscal_status=row[8],
        municipality_supported=row[9],
        municipality_checked_at=row[10],
        certificate_expires_at=row[11],
        municipal_credentials=bool(row[12]),
    )


def get_company(cur: PgCursor, owner_id: str, company_id: str | None) -> Company | None:
    """Fetch an owner's company.

    Args:
        cur: Database cursor.
        owner_id: Owning account.
        company_id: Company UUID. None picks the owner's oldest company.

    Returns:
        Company or None.
    """
    if company_id is None:
        cur.execute(
            f"SELECT {_COLUMNS} FROM companies WHERE owner_id = %s ORDER BY created_at LIMIT 1",
            (owner_id,),
        )
    else:
        cur.execute(
            f"SELECT {_COLUMNS} FROM companies WHERE owner_id = %s AND id::text = %s",
            (owner_id, company_id),
        )
    row = cur.fetchone()
    return _row_to_company(row) if row else None


def get_company_by_id(cur: PgCursor, company_id: str) -> Company | None:
    cur.execute(f"SELECT {_COLUMNS} FROM companies WHERE id::text = %s", (company_id,))
    row = cur.fetchone()
    return _row_to_company(row) if row else None


def count_companies(cur: PgCursor, owner_id: str) -> int:
    cur.execute("SELECT count(*) FROM companies WHERE owner_id = %s", (owner_id,))
    return int(cur.fetchone()[0])


def save_registration(cur: PgCursor, company_id: str, provider_id: str, status: str) -> None:
    cur.execute(
        """
        UPDATE companies
        SET provider_id = %s, fiscal_status = %s, updated_at = now()
        WHERE id = %s
        """,
        (provider_id, status, company_id),
    )


def save_municipality_check(
    cur: PgCursor, company_id: str, supported: bool | None, checked_at: datetime
) -> None:
    cur.execute(
        """
        UPDATE companies
        SET municipality_supported = %s, municipality_checked_at = %s, updated_at = now()
        WHERE id = %s
        """,
        (supported, checked_at, company_id),
    )


class PgCompanyStore:
    """CompanyStore over the companies table."""

    def get(self, owner_id: str, company_id: str | None) -> Company | None:
        with txn() as cur:
            return get_company(cur, owner_id, company_id)

    def count(self, owner_id: str) -> int:
        with txn() as cur:
            return count_companies(cur, owner_id)

    def get_by_id(self, company_id: str) -> Company | None:
        with txn() as cur:
            return get_company_by_id(cur, company_id)

    def save_registration(self, company_id: str, provider_id: str, status: str) -> None:
        with txn() as cur:
            save_registration(cur, company_id, provider_id, status)

    def save_municipality_check(
        self, company_id: str, supported: bool | None, checked_at: datetime
    ) -> None:
        with txn() as cur:
            save_municipality_check(cur, company_id, supported, checked_at)
