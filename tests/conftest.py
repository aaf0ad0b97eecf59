"""Shared test fixtures for webhook-ingest."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from src.models import AuthType, FieldDescriptor, ReceiverConfig, TableSchema
from src.store.catalog import TableCatalog
from src.store.db import WebhookStore
from src.store.directory import ReceiverDirectory

TEST_SECRET = "test_secret_key"
TEST_TIMESTAMP = "1769024741"
CUSTOMER_BODY = json.dumps(
    {"customer_name": "John Doe", "email": "john@example.com", "status": "active"},
    separators=(",", ":"),
)

# Receiver ids used across tests
HMAC_RECEIVER = 123
OPEN_RECEIVER = 124
OPEN_WITH_SECRET_RECEIVER = 125
MISCONFIGURED_RECEIVER = 126
UNCATALOGUED_RECEIVER = 127
MISSING_TABLE_RECEIVER = 128

CUSTOMERS_DDL = """
CREATE TABLE customers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    customer_id TEXT UNIQUE,
    customer_name TEXT NOT NULL,
    email TEXT,
    status TEXT,
    tags TEXT
)
"""


def sign(delivery_id: str, timestamp: str, body: str, secret: str) -> str:
    """Reference HMAC-SHA256 signer, independent of src.webhook.signature."""
    digest = hmac.new(
        secret.encode(), f"{delivery_id}.{timestamp}.{body}".encode(), hashlib.sha256,
    ).digest()
    return "v1," + base64.b64encode(digest).decode()


def make_envelope(
    body: str = CUSTOMER_BODY,
    delivery_id: str | None = "msg_test003",
    timestamp: str | None = TEST_TIMESTAMP,
    signature: str | None = None,
    **extra_headers: str,
) -> dict[str, Any]:
    """Factory for the {"headers", "body"} request envelope."""
    headers: dict[str, str] = dict(extra_headers)
    if delivery_id is not None:
        headers["webhook-id"] = delivery_id
    if timestamp is not None:
        headers["webhook-timestamp"] = timestamp
    if signature is not None:
        headers["webhook-signature"] = signature
    return {"headers": headers, "body": body}


def make_signed_envelope(
    body: str = CUSTOMER_BODY,
    delivery_id: str = "msg_test003",
    timestamp: str = TEST_TIMESTAMP,
    secret: str = TEST_SECRET,
) -> dict[str, Any]:
    return make_envelope(
        body=body,
        delivery_id=delivery_id,
        timestamp=timestamp,
        signature=sign(delivery_id, timestamp, body, secret),
    )


def make_receiver(**kwargs: Any) -> ReceiverConfig:
    """Factory for ReceiverConfig with sensible defaults."""
    defaults: dict[str, Any] = {
        "id": HMAC_RECEIVER,
        "label": "CRM customers",
        "table_name": "customers",
        "auth_type": AuthType.HMAC,
        "secret": TEST_SECRET,
    }
    defaults.update(kwargs)
    return ReceiverConfig(**defaults)


CUSTOMERS_SCHEMA = TableSchema(
    table_name="customers",
    id_column="customer_id",
    fields=(
        FieldDescriptor(field_name="customer_id", format="text", is_pk=False, is_nullable=True),
        FieldDescriptor(field_name="customer_name", format="text", is_nullable=False),
        FieldDescriptor(field_name="email", format="text"),
        FieldDescriptor(field_name="status", format="text"),
        FieldDescriptor(field_name="tags", format="jsonb"),
    ),
)


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "webhooks.db")


@pytest.fixture
def store(db_path: str) -> Iterator[WebhookStore]:
    s = WebhookStore(db_path)
    yield s
    s.close()


@pytest.fixture
def seeded_store(store: WebhookStore) -> WebhookStore:
    """Store with the customers table, its catalog entry and one receiver per auth case."""
    store.execute(CUSTOMERS_DDL)
    catalog = TableCatalog(store)
    catalog.register(CUSTOMERS_SCHEMA)
    catalog.register(TableSchema(
        table_name="ghost",
        fields=(FieldDescriptor(field_name="name", format="text"),),
    ))

    directory = ReceiverDirectory(store)
    directory.add(make_receiver())
    directory.add(make_receiver(id=OPEN_RECEIVER, auth_type=AuthType.NONE, secret=None))
    directory.add(make_receiver(
        id=OPEN_WITH_SECRET_RECEIVER, auth_type=AuthType.NONE, secret="open_secret",
    ))
    directory.add(make_receiver(
        id=UNCATALOGUED_RECEIVER, auth_type=AuthType.NONE, secret=None, table_name="orders",
    ))
    directory.add(make_receiver(
        id=MISSING_TABLE_RECEIVER, auth_type=AuthType.NONE, secret=None, table_name="ghost",
    ))
    # Bypasses ReceiverDirectory.add, which refuses HMAC receivers without a secret
    store.execute(
        """INSERT INTO webhook_receivers (id, label, table_name, auth_type, secret)
           VALUES (?, ?, ?, ?, ?)""",
        (MISCONFIGURED_RECEIVER, "broken", "customers", "hmac", None),
    )
    return store


def customer_rows(store: WebhookStore) -> list[dict[str, Any]]:
    return store.fetch_all(
        "SELECT customer_id, customer_name, email, status, tags FROM customers ORDER BY id"
    )


def ledger_rows(store: WebhookStore) -> list[dict[str, Any]]:
    return store.fetch_all("SELECT * FROM webhook_receiver_logs ORDER BY id")
