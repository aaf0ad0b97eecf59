"""Data models for the webhook ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from src.models import ResultCode

DELIVERY_ID_HEADER = "webhook-id"
TIMESTAMP_HEADER = "webhook-timestamp"
SIGNATURE_HEADER = "webhook-signature"


@dataclass
class WebhookDelivery:
    """Normalized inbound delivery: lower-cased headers plus the raw body."""

    headers: dict[str, str]
    body: str
    timestamp: str  # epoch seconds as sent, or receipt time when absent
    delivery_id: str | None = None
    signature: str | None = None

    def envelope(self) -> dict[str, Any]:
        """The verbatim envelope stored with every ledger entry."""
        return {"headers": dict(self.headers), "body": self.body}


@dataclass
class WebhookResponse:
    """HTTP status and JSON body to return to the sender."""

    body: dict[str, Any]
    status_code: int


# --- Pipeline outcomes ---


@dataclass(frozen=True)
class Accepted:
    idempotency_key: str


@dataclass(frozen=True)
class Duplicate:
    idempotency_key: str


@dataclass(frozen=True)
class Rejected:
    """A terminal rejection.

    Rejections carrying a result code are recorded in the ledger under
    idempotency_key; the others never reach the ledger.
    """

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)
    result: ResultCode | None = None
    error_message: str | None = None
    idempotency_key: str | None = None

    def response(self) -> WebhookResponse:
        return WebhookResponse(body=dict(self.body), status_code=self.status_code)


Outcome = Union[Accepted, Duplicate, Rejected]
