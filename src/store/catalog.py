"""Table catalog: read access to the tables/fields metadata."""

from __future__ import annotations

from typing import Any

from src.models import FieldDescriptor, TableSchema
from src.store.db import WebhookStore


class TableCatalog:
    """Describes target tables: identity column and known fields."""

    def __init__(self, store: WebhookStore) -> None:
        self._store = store

    def get_table(self, table_name: str) -> dict[str, Any] | None:
        return self._store.fetch_one(
            "SELECT table_name, id_column FROM tables WHERE table_name = ?",
            (table_name,),
        )

    def get_fields(self, table_name: str) -> list[FieldDescriptor]:
        rows = self._store.fetch_all(
            """SELECT field_name, format, is_pk, is_nullable
               FROM fields WHERE table_name = ? ORDER BY id""",
            (table_name,),
        )
        return [
            FieldDescriptor(
                field_name=r["field_name"],
                format=r["format"],
                is_pk=bool(r["is_pk"]),
                is_nullable=bool(r["is_nullable"]),
            )
            for r in rows
        ]

    def get_schema(self, table_name: str) -> TableSchema | None:
        """Return the full schema, or None when the table is not catalogued."""
        table = self.get_table(table_name)
        if table is None:
            return None
        return TableSchema(
            table_name=table["table_name"],
            id_column=table["id_column"],
            fields=tuple(self.get_fields(table_name)),
        )

    def register(self, schema: TableSchema) -> None:
        """Record catalog metadata for an existing target table."""
        with self._store.transaction() as conn:
            conn.execute(
                """INSERT INTO tables (table_name, id_column) VALUES (?, ?)
                   ON CONFLICT(table_name) DO UPDATE SET id_column=excluded.id_column""",
                (schema.table_name, schema.id_column),
            )
            conn.execute("DELETE FROM fields WHERE table_name = ?", (schema.table_name,))
            conn.executemany(
                """INSERT INTO fields (table_name, field_name, format, is_pk, is_nullable)
                   VALUES (?, ?, ?, ?, ?)""",
                [
                    (schema.table_name, f.field_name, f.format, int(f.is_pk), int(f.is_nullable))
                    for f in schema.fields
                ],
            )
