"""Idempotency ledger: append-only log of processed deliveries.

The pair (webhook_receiver_id, webhook_id) is unique; webhook_id holds the
idempotency key, not necessarily the sender's delivery id.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from src.models import IngestionAttempt
from src.store.db import WebhookStore

logger = logging.getLogger(__name__)

_INSERT_SQL = """INSERT INTO webhook_receiver_logs (
    webhook_receiver_id, webhook_id, webhook_timestamp,
    received_timestamp, payload, result, error_message
) VALUES (?, ?, ?, ?, ?, ?, ?)"""


def _params(attempt: IngestionAttempt) -> tuple[Any, ...]:
    return (
        attempt.webhook_receiver_id,
        attempt.idempotency_key,
        attempt.webhook_timestamp.isoformat(),
        attempt.received_timestamp.isoformat(),
        json.dumps(attempt.payload),
        int(attempt.result),
        attempt.error_message,
    )


class IdempotencyLedger:
    """Append-only ingestion ledger backed by webhook_receiver_logs."""

    def __init__(self, store: WebhookStore) -> None:
        self._store = store

    def exists(self, receiver_id: int, idempotency_key: str) -> bool:
        row = self._store.fetch_one(
            """SELECT id FROM webhook_receiver_logs
               WHERE webhook_receiver_id = ? AND webhook_id = ?""",
            (receiver_id, idempotency_key),
        )
        return row is not None

    def record(self, attempt: IngestionAttempt) -> bool:
        """Append an attempt on its own.

        Returns False instead of raising when the entry cannot be written;
        a ledger failure never overrides the response already decided.
        """
        try:
            self._store.execute(_INSERT_SQL, _params(attempt))
        except sqlite3.Error as exc:
            logger.warning(
                "Failed to log webhook attempt for receiver %s (key %s): %s",
                attempt.webhook_receiver_id, attempt.idempotency_key, exc,
            )
            return False
        return True

    @staticmethod
    def record_in(conn: sqlite3.Connection, attempt: IngestionAttempt) -> None:
        """Append an attempt inside a caller-owned transaction.

        Raises sqlite3.IntegrityError when the idempotency key was already
        recorded for this receiver.
        """
        conn.execute(_INSERT_SQL, _params(attempt))

    def list_attempts(
        self, receiver_id: int | None = None, limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Most recent entries first, optionally for one receiver."""
        if receiver_id is None:
            return self._store.fetch_all(
                "SELECT * FROM webhook_receiver_logs ORDER BY id DESC LIMIT ?",
                (limit,),
            )
        return self._store.fetch_all(
            """SELECT * FROM webhook_receiver_logs
               WHERE webhook_receiver_id = ? ORDER BY id DESC LIMIT ?""",
            (receiver_id, limit),
        )

    def count(self, receiver_id: int | None = None) -> int:
        if receiver_id is None:
            row = self._store.fetch_one("SELECT COUNT(*) AS n FROM webhook_receiver_logs")
        else:
            row = self._store.fetch_one(
                "SELECT COUNT(*) AS n FROM webhook_receiver_logs WHERE webhook_receiver_id = ?",
                (receiver_id,),
            )
        return int(row["n"]) if row else 0
