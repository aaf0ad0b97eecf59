"""Shared Pydantic data models for webhook-ingest."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

# --- Enums ---


class AuthType(str, Enum):
    HMAC = "hmac"
    NONE = "none"


class ResultCode(IntEnum):
    """Ledger result codes. The numeric values are stored and read by operators."""

    SUCCESS = 10
    SIGNATURE_FAILED = 20
    INVALID_JSON = 30
    TABLE_NOT_FOUND = 40
    INSERT_FAILED = 50


# --- Receiver Models ---


class ReceiverConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int = Field(gt=0)
    label: str
    table_name: str
    auth_type: AuthType
    secret: str | None = None
    description: str | None = None


# --- Catalog Models ---


class FieldDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    field_name: str
    format: str
    is_pk: bool = False
    is_nullable: bool = True


class TableSchema(BaseModel):
    model_config = ConfigDict(frozen=True)

    table_name: str
    id_column: str | None = None
    fields: tuple[FieldDescriptor, ...] = ()

    @model_validator(mode="after")
    def _unique_field_names(self) -> TableSchema:
        names = [f.field_name for f in self.fields]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate field names in table {self.table_name}")
        return self

    @property
    def field_names(self) -> frozenset[str]:
        return frozenset(f.field_name for f in self.fields)

    def field(self, name: str) -> FieldDescriptor | None:
        for descriptor in self.fields:
            if descriptor.field_name == name:
                return descriptor
        return None


# --- Ledger Models ---


def _now() -> datetime:
    return datetime.now(UTC)


class IngestionAttempt(BaseModel):
    """One processed delivery, as recorded in the idempotency ledger."""

    webhook_receiver_id: int
    idempotency_key: str
    webhook_timestamp: datetime
    received_timestamp: datetime = Field(default_factory=_now)
    payload: dict[str, object]  # {"headers": {...}, "body": "..."}
    result: ResultCode
    error_message: str | None = None
