"""Receiver directory: read access to webhook_receivers."""

from __future__ import annotations

from src.models import AuthType, ReceiverConfig
from src.store.db import MAX_INTEGER, WebhookStore


class ReceiverDirectory:
    """Looks up receiver configuration by id. Nothing is cached."""

    def __init__(self, store: WebhookStore) -> None:
        self._store = store

    def find_by_id(self, receiver_id: int) -> ReceiverConfig | None:
        if not 0 < receiver_id <= MAX_INTEGER:
            return None
        row = self._store.fetch_one(
            """SELECT id, label, table_name, auth_type, secret, description
               FROM webhook_receivers WHERE id = ?""",
            (receiver_id,),
        )
        return ReceiverConfig(**row) if row else None

    def list_all(self) -> list[ReceiverConfig]:
        rows = self._store.fetch_all(
            """SELECT id, label, table_name, auth_type, secret, description
               FROM webhook_receivers ORDER BY id"""
        )
        return [ReceiverConfig(**row) for row in rows]

    def add(self, receiver: ReceiverConfig) -> None:
        """Register a receiver. HMAC receivers must carry a secret."""
        if receiver.auth_type == AuthType.HMAC and not receiver.secret:
            raise ValueError("HMAC receivers require a secret")
        self._store.execute(
            """INSERT INTO webhook_receivers
               (id, label, table_name, auth_type, secret, description)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                receiver.id,
                receiver.label,
                receiver.table_name,
                receiver.auth_type.value,
                receiver.secret,
                receiver.description,
            ),
        )
