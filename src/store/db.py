"""SQLite store handle for webhook ingestion.

This module provides the WebhookStore class, the single connection the
pipeline reads and writes through:
- Receiver configuration (webhook_receivers)
- Table catalog (tables, fields)
- Ingestion ledger (webhook_receiver_logs)
- Target tables named by the catalog
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

# SQL schema for the tables this service depends on. Target tables are
# created by operators and are not part of this schema.
SCHEMA_SQL = """
-- Receivers: one row per webhook intake point
CREATE TABLE IF NOT EXISTS webhook_receivers (
    id INTEGER PRIMARY KEY,
    label TEXT NOT NULL,
    table_name TEXT NOT NULL,
    auth_type TEXT NOT NULL DEFAULT 'none' CHECK (auth_type IN ('hmac', 'none')),
    secret TEXT,
    description TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

-- Ledger: one row per processed delivery
CREATE TABLE IF NOT EXISTS webhook_receiver_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    webhook_receiver_id INTEGER NOT NULL,
    webhook_id TEXT NOT NULL,
    webhook_timestamp TEXT NOT NULL,
    received_timestamp TEXT NOT NULL,
    payload TEXT NOT NULL,
    result INTEGER NOT NULL,
    error_message TEXT,
    label TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (webhook_receiver_id) REFERENCES webhook_receivers(id)
);

-- Idempotency constraint
CREATE UNIQUE INDEX IF NOT EXISTS idx_receiver_logs_idempotency
    ON webhook_receiver_logs(webhook_receiver_id, webhook_id);

-- Catalog: target tables and their identity column
CREATE TABLE IF NOT EXISTS tables (
    table_name TEXT PRIMARY KEY,
    id_column TEXT
);

-- Catalog: known fields per target table
CREATE TABLE IF NOT EXISTS fields (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT NOT NULL,
    field_name TEXT NOT NULL,
    format TEXT NOT NULL DEFAULT 'text',
    is_pk INTEGER NOT NULL DEFAULT 0,
    is_nullable INTEGER NOT NULL DEFAULT 1,
    UNIQUE (table_name, field_name)
);
"""


# Largest value an INTEGER column can hold
MAX_INTEGER = 2**63 - 1


class StoreClosedError(sqlite3.ProgrammingError):
    """Raised when the store is used after close()."""


class WebhookStore:
    """SQLite database wrapper for webhook ingestion persistence.

    Provides:
    - WAL mode for crash recovery
    - Parameterized queries for SQL injection prevention
    - Schema initialization on first use
    - Explicit transactions for multi-statement writes
    - Context manager support for connection lifecycle
    """

    def __init__(self, db_path: str) -> None:
        """Open the store.

        Args:
            db_path: Path to the SQLite database file, or ":memory:".
        """
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._initialize()

    @property
    def db_path(self) -> str:
        return self._db_path

    def _initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(self._db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreClosedError("Database connection is closed")
        return self._conn

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        """Execute a single statement and commit it.

        Args:
            sql: SQL statement with ? placeholders.
            params: Tuple of parameter values.

        Returns:
            The cursor after execution.
        """
        conn = self._connection()
        try:
            cursor = conn.execute(sql, params)
        except sqlite3.Error:
            conn.rollback()
            raise
        conn.commit()
        return cursor

    def fetch_one(self, sql: str, params: tuple[Any, ...] = ()) -> dict[str, Any] | None:
        """Fetch a single row as a dictionary, or None if no row matched."""
        row = self._connection().execute(sql, params).fetchone()
        if row is None:
            return None
        return dict(row)

    def fetch_all(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        """Fetch all rows as a list of dictionaries."""
        cursor = self._connection().execute(sql, params)
        return [dict(row) for row in cursor.fetchall()]

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run several statements atomically.

        Commits when the block exits normally and rolls back when it raises.
        Statements inside the block must go through the yielded connection.
        """
        conn = self._connection()
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> WebhookStore:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()
