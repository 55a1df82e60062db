"""Clients repository - an account's customers (invoice recipients).

Uses raw SQL with psycopg2 (no ORM).

(owner_id, document) is unique. Documents are stored as digits only.
Name lookups are case-insensitive substring matches in a stable order
(name, then creation time) so numbered candidate lists stay consistent
between a question and its answer.
"""

from __future__ import annotations

from psycopg2.extensions import cursor as PgCursor

from fiscalia.domain.clients import ClientRecord
from fiscalia.domain.entities import DocumentKind, DocumentNumber
from fiscalia.infra.db import txn

_COLUMNS = "id, owner_id, name, document, document_type, email, phone"


def _row_to_client(row: tuple) -> ClientRecord:
    return ClientRecord(
        id=str(row[0]),
        owner_id=str(row[1]),
        name=row[2],
        document=row[3],
        kind=DocumentKind(row[4]),
        email=row[5],
        phone=row[6],
    )


def _like_pattern(fragment: str) -> str:
    escaped = fragment.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def get_client(cur: PgCursor, owner_id: str, client_id: str) -> ClientRecord | None:
    cur.execute(
        f"SELECT {_COLUMNS} FROM clients WHERE owner_id = %s AND id::text = %s",
        (owner_id, client_id),
    )
    row = cur.fetchone()
    return _row_to_client(row) if row else None


def find_by_document(cur: PgCursor, owner_id: str, document: str) -> ClientRecord | None:
    cur.execute(
        f"SELECT {_COLUMNS} FROM clients WHERE owner_id = %s AND document = %s",
        (owner_id, document),
    )
    row = cur.fetchone()
    return _row_to_client(row) if row else None


def find_by_name_contains(cur: PgCursor, owner_id: str, name: str) -> list[ClientRecord]:
    cur.execute(
        f"""
        SELECT {_COLUMNS}
        FROM clients
        WHERE owner_id = %s AND name ILIKE %s
        ORDER BY lower(name), created_at
        """,
        (owner_id, _like_pattern(name)),
    )
    return [_row_to_client(row) for row in cur.fetchall()]


def insert_client(
    cur: PgCursor,
    *,
    owner_id: str,
    name: str,
    document: DocumentNumber,
    email: str | None = None,
    phone: str | None = None,
) -> ClientRecord:
    """Insert a client; an existing (owner_id, document) row is returned unchanged.

    Args:
        cur: Database cursor (within transaction).
        owner_id: Owning account.
        name: Display name.
        document: Validated CPF/CNPJ.
        email: Optional e-mail.
        phone: Optional phone.

    Returns:
        The stored ClientRecord.
    """
    cur.execute(
        f"""
        INSERT INTO clients (owner_id, name, document, document_type, email, phone)
        VALUES (%s, %s, %s, %s, %s, %s)
        ON CONFLICT (owner_id, document) DO NOTHING
        RETURNING {_COLUMNS}
        """,
        (owner_id, name, document.digits, document.kind.value, email, phone),
    )
    row = cur.fetchone()
    if row is not None:
        return _row_to_client(row)
    existing = find_by_document(cur, owner_id, document.digits)
    if existing is None:
        raise RuntimeError("client insert conflicted but no existing row was found")
    return existing


def list_clients(cur: PgCursor, owner_id: str, limit: int = 50) -> list[ClientRecord]:
    cur.execute(
        f"""
        SELECT {_COLUMNS}
        FROM clients
        WHERE owner_id = %s
        ORDER BY lower(name), created_at
        LIMIT %s
        """,
        (owner_id, limit),
    )
    return [_row_to_client(row) for row in cur.fetchall()]


class PgClientDirectory:
    """ClientDirectory over the clients table."""

    def get(self, owner_id: str, client_id: str) -> ClientRecord | None:
        with txn() as cur:
            return get_client(cur, owner_id, client_id)

    def find_by_document(self, owner_id: str, document: str) -> ClientRecord | None:
        with txn() as cur:
            return find_by_document(cur, owner_id, document)

    def find_by_name_contains(self, owner_id: str, name: str) -> list[ClientRecord]:
        with txn() as cur:
            return find_by_name_contains(cur, owner_id, name)

    def create(
        self,
        owner_id: str,
        *,
        name: str,
        document: DocumentNumber,
        email: str | None = None,
        phone: str | None = None,
    ) -> ClientRecord:
        with txn() as cur:
            return insert_client(
                cur, owner_id=owner_id, name=name, document=document, email=email, phone=phone
            )

    def list_clients(self, owner_id: str, limit: int = 50) -> list[ClientRecord]:
        with txn() as cur:
            return list_clients(cur, owner_id, limit)
