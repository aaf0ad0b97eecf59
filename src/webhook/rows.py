"""Projection of webhook payloads onto catalogued target tables.

Payload values are converted to tagged values before they reach the
store, and every statement binds them as parameters. Type enforcement
beyond that is left to the store's own constraints.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from src.models import TableSchema

_JSON_FORMATS = frozenset({"json", "jsonb"})
_INTEGER_FORMATS = frozenset({"bool", "boolean", "int", "integer", "int2", "int4", "int8", "bigint", "smallint"})


class ValueKind(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NULL = "null"
    JSON = "json"  # nested object or array


@dataclass(frozen=True)
class TypedValue:
    kind: ValueKind
    value: Any

    def bind(self, field_format: str | None = None) -> str | int | float | None:
        """Return the parameter to send to the store for a column format."""
        fmt = (field_format or "").lower()
        if self.kind == ValueKind.NULL:
            return None
        if fmt in _JSON_FORMATS or self.kind == ValueKind.JSON:
            return json.dumps(self.value, separators=(",", ":"))
        if self.kind == ValueKind.BOOLEAN:
            return int(self.value) if fmt in _INTEGER_FORMATS else self.value
        return self.value


def to_typed(value: Any) -> TypedValue:
    # bool first: bool is a subclass of int
    if value is None:
        return TypedValue(ValueKind.NULL, None)
    if isinstance(value, bool):
        return TypedValue(ValueKind.BOOLEAN, value)
    if isinstance(value, int):
        return TypedValue(ValueKind.INTEGER, value)
    if isinstance(value, float):
        return TypedValue(ValueKind.NUMBER, value)
    if isinstance(value, str):
        return TypedValue(ValueKind.STRING, value)
    return TypedValue(ValueKind.JSON, value)


def filter_payload(payload: Any, field_names: frozenset[str]) -> dict[str, Any]:
    """Restrict a payload to known fields. Unknown keys are dropped silently."""
    if not isinstance(payload, Mapping):
        return {}
    return {key: value for key, value in payload.items() if key in field_names}


def build_row(payload: Any, schema: TableSchema) -> dict[str, TypedValue]:
    return {
        key: to_typed(value)
        for key, value in filter_payload(payload, schema.field_names).items()
    }


def has_identity_value(payload: Any, id_column: str | None) -> bool:
    """True when the raw payload carries a non-null value for the identity column."""
    if not id_column or not isinstance(payload, Mapping):
        return False
    return payload.get(id_column) is not None


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


@dataclass(frozen=True)
class WritePlan:
    """A single insert, or an upsert when conflict_column is set."""

    table_name: str
    columns: tuple[str, ...]
    params: tuple[Any, ...]
    conflict_column: str | None = None

    @property
    def is_upsert(self) -> bool:
        return self.conflict_column is not None

    @property
    def is_empty(self) -> bool:
        """No payload key matched a catalogued field; there is nothing to write."""
        return not self.columns

    @property
    def sql(self) -> str:
        table = quote_identifier(self.table_name)
        cols = ", ".join(quote_identifier(c) for c in self.columns)
        placeholders = ", ".join("?" for _ in self.columns)
        statement = f"INSERT INTO {table} ({cols}) VALUES ({placeholders})"
        if self.conflict_column is None:
            return statement
        assignments = ", ".join(
            f"{quote_identifier(c)} = excluded.{quote_identifier(c)}" for c in self.columns
        )
        return (
            f"{statement} ON CONFLICT ({quote_identifier(self.conflict_column)}) "
            f"DO UPDATE SET {assignments}"
        )


def _format_of(schema: TableSchema, name: str) -> str | None:
    descriptor = schema.field(name)
    return descriptor.format if descriptor else None


def plan_write(payload: Any, schema: TableSchema) -> WritePlan:
    """Build the statement for a parsed payload.

    Upsert is chosen from the raw payload, not the filtered row.
    """
    row = build_row(payload, schema)
    columns = tuple(row)
    params = tuple(row[name].bind(_format_of(schema, name)) for name in columns)
    conflict = None
    if has_identity_value(payload, schema.id_column):
        conflict = schema.id_column
    return WritePlan(
        table_name=schema.table_name,
        columns=columns,
        params=params,
        conflict_column=conflict,
    )
