"""Notifications repository - in-app notices for an account.

Uses raw SQL with psycopg2 (no ORM). Payloads hold ids and rendered
messages only; they are not logged.
"""

from __future__ import annotations

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from fiscalia.infra.db import txn
from fiscalia.observability.logging import get_logger
from fiscalia.observability.redaction import safe_log_context

logger = get_logger(__name__)


def insert_notification(cur: PgCursor, *, account_id: str, kind: str, payload: dict[str, Any]) -> str:
    cur.execute(
        """
        INSERT INTO notifications (account_id, kind, payload)
        VALUES (%s, %s, %s)
        RETURNING id
        """,
        (account_id, kind, json.dumps(payload, default=str)),
    )
    return str(cur.fetchone()[0])


class PgNotificationService:
    """NotificationService storing notices for the web app to display."""

    def notify(self, account_id: str, kind: str, payload: dict[str, Any]) -> None:
        with txn() as cur:
            notification_id = insert_notification(
                cur, account_id=account_id, kind=kind, payload=payload
            )
        logger.info(
            "notification stored",
            extra={
                "extra_fields": safe_log_context(
                    account_id=account_id, kind=kind, notification_id=notification_id
                )
            },
        )
