"""Webhook ingestion pipeline.

Sequences one delivery from receipt to ledger entry using decision
functions that perform no I/O, with the store effects applied by
IngestionPipeline.

Pipeline stages:
1. Envelope validation and header normalization
2. Receiver lookup
3. Authentication (HMAC or none)
4. Idempotency key derivation
5. Duplicate check against the ledger
6. JSON parse of the body
7. Table schema lookup
8. Field filtering and insert/upsert
9. Ledger entry
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from src.models import AuthType, IngestionAttempt, ReceiverConfig, ResultCode
from src.store.catalog import TableCatalog
from src.store.db import WebhookStore
from src.store.directory import ReceiverDirectory
from src.store.ledger import IdempotencyLedger
from src.webhook.models import (
    DELIVERY_ID_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    Accepted,
    Duplicate,
    Outcome,
    Rejected,
    WebhookDelivery,
    WebhookResponse,
)
from src.webhook.rows import WritePlan, plan_write
from src.webhook.signature import compute_signature, verify_signature

logger = logging.getLogger(__name__)

MISSING_FIELDS = Rejected(400, {"error": "Missing required fields: headers and body"})
RECEIVER_NOT_FOUND = Rejected(404, {"error": "Webhook receiver not found"})
SECRET_NOT_CONFIGURED = Rejected(500, {"error": "HMAC secret not configured"})
MISSING_HMAC_HEADERS = Rejected(
    400, {"error": "Missing webhook-id or webhook-signature for HMAC validation"},
)
NO_KNOWN_FIELDS = "No known fields in payload"


# --- Decision functions ---


def parse_envelope(
    envelope: Any, clock: Callable[[], float] = time.time,
) -> WebhookDelivery | Rejected:
    """Validate the request envelope and normalize its headers."""
    if not isinstance(envelope, Mapping):
        return MISSING_FIELDS
    raw_headers = envelope.get("headers")
    body = envelope.get("body")
    if not isinstance(raw_headers, Mapping) or not isinstance(body, str) or not body:
        return MISSING_FIELDS

    headers = {
        str(name).lower(): str(value)
        for name, value in raw_headers.items()
        if value is not None
    }
    return WebhookDelivery(
        headers=headers,
        body=body,
        timestamp=headers.get(TIMESTAMP_HEADER) or str(int(clock())),
        delivery_id=headers.get(DELIVERY_ID_HEADER) or None,
        signature=headers.get(SIGNATURE_HEADER) or None,
    )


def authenticate(receiver: ReceiverConfig, delivery: WebhookDelivery) -> Rejected | None:
    """Return a rejection, or None when the delivery may proceed."""
    if receiver.auth_type != AuthType.HMAC:
        return None
    if not receiver.secret:
        return SECRET_NOT_CONFIGURED
    if not delivery.delivery_id or not delivery.signature:
        return MISSING_HMAC_HEADERS
    if verify_signature(
        delivery.delivery_id,
        delivery.timestamp,
        delivery.body,
        receiver.secret,
        delivery.signature,
    ):
        return None
    return Rejected(
        401,
        {"error": "Signature verification failed"},
        result=ResultCode.SIGNATURE_FAILED,
        error_message="Signature verification failed",
        idempotency_key=delivery.delivery_id,
    )


def derive_idempotency_key(receiver: ReceiverConfig, delivery: WebhookDelivery) -> str:
    """Pick the ledger key for an authenticated delivery.

    The order decides which retried deliveries collapse together.
    """
    if receiver.auth_type == AuthType.HMAC and delivery.delivery_id:
        return delivery.delivery_id
    if receiver.secret and delivery.delivery_id:
        return compute_signature(
            delivery.delivery_id, delivery.timestamp, delivery.body, receiver.secret,
        )
    if delivery.signature:
        return delivery.signature
    content_key = f"{receiver.id}-{delivery.timestamp}-{delivery.body}"
    return compute_signature(
        delivery.delivery_id or "anon",
        delivery.timestamp,
        delivery.body,
        receiver.secret or content_key,
    )


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def parse_payload(body: str, idempotency_key: str) -> Any:
    """Decode the delivery body, or return an INVALID_JSON rejection.

    NaN and Infinity literals are rejected along with malformed text.
    """
    try:
        return json.loads(body, parse_constant=_reject_constant)
    except ValueError:
        return Rejected(
            400,
            {"error": "Invalid JSON in body"},
            result=ResultCode.INVALID_JSON,
            error_message="Invalid JSON in body",
            idempotency_key=idempotency_key,
        )


def table_not_found(table_name: str, idempotency_key: str) -> Rejected:
    message = f"Table metadata not found for {table_name}"
    return Rejected(
        404,
        {"error": message},
        result=ResultCode.TABLE_NOT_FOUND,
        error_message=message,
        idempotency_key=idempotency_key,
    )


def insert_failed(message: str, idempotency_key: str) -> Rejected:
    return Rejected(
        500,
        {"error": "Failed to insert/upsert data", "details": message},
        result=ResultCode.INSERT_FAILED,
        error_message=message,
        idempotency_key=idempotency_key,
    )


def to_response(outcome: Outcome) -> WebhookResponse:
    if isinstance(outcome, Rejected):
        return outcome.response()
    if isinstance(outcome, Duplicate):
        return WebhookResponse({"success": True, "message": "Duplicate request ignored"}, 200)
    return WebhookResponse({"success": True}, 200)


def claimed_timestamp(timestamp: str, received_at: datetime) -> datetime:
    """Sender-claimed delivery time; receipt time when it is not epoch seconds."""
    try:
        return datetime.fromtimestamp(int(timestamp), UTC)
    except (ValueError, OverflowError, OSError):
        return received_at


class _LedgerConflict(Exception):
    """The SUCCESS entry collided with an entry written concurrently."""


# --- Effects ---


class IngestionPipeline:
    """Runs deliveries through the decision functions against one store."""

    def __init__(
        self,
        store: WebhookStore,
        directory: ReceiverDirectory | None = None,
        catalog: TableCatalog | None = None,
        ledger: IdempotencyLedger | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._directory = directory or ReceiverDirectory(store)
        self._catalog = catalog or TableCatalog(store)
        self._ledger = ledger or IdempotencyLedger(store)
        self._clock = clock

    def ingest(self, receiver_id: int, envelope: Any) -> WebhookResponse:
        """Process one delivery and return the HTTP response for it."""
        try:
            return to_response(self.process(receiver_id, envelope))
        except Exception:
            logger.exception("Webhook handler error for receiver %s", receiver_id)
            return WebhookResponse({"error": "Internal server error"}, 500)

    def process(self, receiver_id: int, envelope: Any) -> Outcome:
        received_at = datetime.fromtimestamp(self._clock(), UTC)

        delivery = parse_envelope(envelope, self._clock)
        if isinstance(delivery, Rejected):
            logger.warning("Rejected malformed delivery for receiver %s", receiver_id)
            return delivery

        receiver = self._directory.find_by_id(receiver_id)
        if receiver is None:
            logger.warning("Webhook receiver %s not found", receiver_id)
            return RECEIVER_NOT_FOUND

        rejection = authenticate(receiver, delivery)
        if rejection is not None:
            return self._settle(receiver, delivery, rejection, received_at)

        key = derive_idempotency_key(receiver, delivery)
        if self._ledger.exists(receiver.id, key):
            logger.info("Duplicate delivery ignored for receiver %s (key %s)", receiver.id, key)
            return Duplicate(key)

        payload = parse_payload(delivery.body, key)
        if isinstance(payload, Rejected):
            return self._settle(receiver, delivery, payload, received_at)

        schema = self._catalog.get_schema(receiver.table_name)
        if schema is None:
            return self._settle(
                receiver, delivery, table_not_found(receiver.table_name, key), received_at,
            )

        plan = plan_write(payload, schema)
        if plan.is_empty:
            return self._settle(
                receiver, delivery, insert_failed(NO_KNOWN_FIELDS, key), received_at,
            )
        return self._write(receiver, delivery, key, plan, received_at)

    def _attempt(
        self,
        receiver: ReceiverConfig,
        delivery: WebhookDelivery,
        key: str,
        result: ResultCode,
        error_message: str | None,
        received_at: datetime,
    ) -> IngestionAttempt:
        return IngestionAttempt(
            webhook_receiver_id=receiver.id,
            idempotency_key=key,
            webhook_timestamp=claimed_timestamp(delivery.timestamp, received_at),
            received_timestamp=received_at,
            payload=delivery.envelope(),
            result=result,
            error_message=error_message,
        )

    def _settle(
        self,
        receiver: ReceiverConfig,
        delivery: WebhookDelivery,
        rejection: Rejected,
        received_at: datetime,
    ) -> Rejected:
        """Record a rejection in the ledger when it carries a result code."""
        logger.warning(
            "Rejected delivery for receiver %s with status %s: %s",
            receiver.id, rejection.status_code, rejection.body.get("error"),
        )
        if rejection.result is not None and rejection.idempotency_key:
            self._ledger.record(self._attempt(
                receiver, delivery, rejection.idempotency_key,
                rejection.result, rejection.error_message, received_at,
            ))
        return rejection

    def _write(
        self,
        receiver: ReceiverConfig,
        delivery: WebhookDelivery,
        key: str,
        plan: WritePlan,
        received_at: datetime,
    ) -> Outcome:
        """Apply the row write and the SUCCESS entry in one transaction."""
        success = self._attempt(receiver, delivery, key, ResultCode.SUCCESS, None, received_at)
        try:
            with self._store.transaction() as conn:
                conn.execute(plan.sql, plan.params)
                try:
                    IdempotencyLedger.record_in(conn, success)
                except sqlite3.IntegrityError as exc:
                    raise _LedgerConflict(str(exc)) from exc
        except _LedgerConflict as exc:
            if self._ledger.exists(receiver.id, key):
                logger.info(
                    "Concurrent duplicate for receiver %s (key %s); row write discarded",
                    receiver.id, key,
                )
                return Duplicate(key)
            return self._settle(receiver, delivery, insert_failed(str(exc), key), received_at)
        except (sqlite3.Error, OverflowError, UnicodeEncodeError) as exc:
            # Values the driver cannot bind fail like store rejections
            message = str(exc) or "Unknown error during insert/upsert"
            return self._settle(receiver, delivery, insert_failed(message, key), received_at)

        logger.info(
            "Ingested delivery for receiver %s into %s (%s)",
            receiver.id, plan.table_name, "upsert" if plan.is_upsert else "insert",
        )
        return Accepted(key)
