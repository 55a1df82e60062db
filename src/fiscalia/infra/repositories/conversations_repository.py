"""Conversation repository - append-only assistant history.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

import json

from psycopg2.extensions import cursor as PgCursor

from fiscalia.domain.conversations import ConversationTurn, Role
from fiscalia.infra.db import txn


def append_turn(cur: PgCursor, turn: ConversationTurn) -> ConversationTurn:
    cur.execute(
        """
        INSERT INTO conversation_turns (account_id, role, content, metadata)
        VALUES (%s, %s, %s, %s)
        RETURNING id, created_at
        """,
        (turn.account_id, turn.role.value, turn.content, json.dumps(turn.metadata or {})),
    )
    row = cur.fetchone()
    return ConversationTurn(
        account_id=turn.account_id,
        role=turn.role,
        content=turn.content,
        metadata=turn.metadata,
        created_at=row[1],
        id=str(row[0]),
    )


def recent_turns(cur: PgCursor, account_id: str, limit: int) -> list[ConversationTurn]:
    """Last ``limit`` turns of an account, oldest first."""
    cur.execute(
        """
        SELECT id, role, content, metadata, created_at
        FROM (
            SELECT id, role, content, metadata, created_at, seq
            FROM conversation_turns
            WHERE account_id = %s
            ORDER BY seq DESC
            LIMIT %s
        ) recent
        ORDER BY seq
        """,
        (account_id, limit),
    )
    return [
        ConversationTurn(
            account_id=account_id,
            role=Role(row[1]),
            content=row[2],
            metadata=row[3] or {},
            created_at=row[4],
            id=str(row[0]),
        )
        for row in cur.fetchall()
    ]


def purge_turns(cur: PgCursor, account_id: str) -> int:
    cur.execute("DELETE FROM conversation_turns WHERE account_id = %s", (account_id,))
    return cur.rowcount


class PgConversationStore:
    """ConversationStore over the conversation_turns table."""

    def append(self, turn: ConversationTurn) -> ConversationTurn:
        with txn() as cur:
            return append_turn(cur, turn)

    def recent(self, account_id: str, limit: int) -> list[ConversationTurn]:
        with txn() as cur:
            return recent_turns(cur, account_id, limit)

    def purge(self, account_id: str) -> int:
        with txn() as cur:
            return purge_turns(cur, account_id)
