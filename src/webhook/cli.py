"""Click CLI for managing webhook receivers, the table catalog and the ledger."""

from __future__ import annotations

import json
import sqlite3

import click
from pydantic import ValidationError

from src.models import AuthType, FieldDescriptor, ReceiverConfig, TableSchema
from src.store.catalog import TableCatalog
from src.store.db import WebhookStore
from src.store.directory import ReceiverDirectory
from src.store.ledger import IdempotencyLedger
from src.webhook.signature import compute_signature


@click.group()
@click.option("--db", default="data/webhooks.db", help="Webhook database path.")
@click.pass_context
def cli(ctx: click.Context, db: str) -> None:
    """Webhook ingestion administration CLI."""
    ctx.ensure_object(dict)
    store = WebhookStore(db)
    ctx.call_on_close(store.close)
    ctx.obj["store"] = store


@cli.group("receivers")
def receivers_group() -> None:
    """Manage webhook receivers."""


@receivers_group.command("add")
@click.option("--id", "receiver_id", type=int, required=True, help="Receiver id used in /hook/<id>.")
@click.option("--label", required=True, help="Human readable label.")
@click.option("--table", "table_name", required=True, help="Target table name.")
@click.option(
    "--auth-type",
    type=click.Choice([a.value for a in AuthType]),
    default=AuthType.NONE.value,
    show_default=True,
)
@click.option("--secret", default=None, help="Shared secret (required for hmac).")
@click.option("--description", default=None)
@click.pass_context
def receivers_add(
    ctx: click.Context,
    receiver_id: int,
    label: str,
    table_name: str,
    auth_type: str,
    secret: str | None,
    description: str | None,
) -> None:
    """Register a webhook receiver."""
    directory = ReceiverDirectory(ctx.obj["store"])
    try:
        receiver = ReceiverConfig(
            id=receiver_id,
            label=label,
            table_name=table_name,
            auth_type=AuthType(auth_type),
            secret=secret,
            description=description,
        )
        directory.add(receiver)
    except (ValueError, sqlite3.IntegrityError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Receiver registered: {receiver_id}")


@receivers_group.command("list")
@click.pass_context
def receivers_list(ctx: click.Context) -> None:
    """List webhook receivers (secrets are not shown)."""
    directory = ReceiverDirectory(ctx.obj["store"])
    output = [
        r.model_dump(mode="json", exclude={"secret"}) | {"has_secret": bool(r.secret)}
        for r in directory.list_all()
    ]
    click.echo(json.dumps(output, indent=2))


def _parse_field(value: str) -> FieldDescriptor:
    """Parse ``name:format[:pk][:required]``."""
    parts = value.split(":")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise click.BadParameter(f"expected name:format[:pk][:required], got {value!r}")
    flags = set(parts[2:])
    unknown = flags - {"pk", "required"}
    if unknown:
        raise click.BadParameter(f"unknown field flags: {', '.join(sorted(unknown))}")
    return FieldDescriptor(
        field_name=parts[0],
        format=parts[1],
        is_pk="pk" in flags,
        is_nullable="required" not in flags and "pk" not in flags,
    )


@cli.group("tables")
def tables_group() -> None:
    """Manage the target table catalog."""


@tables_group.command("add")
@click.argument("table_name")
@click.option("--id-column", default=None, help="Identity column used for upserts.")
@click.option(
    "--field", "field_specs", multiple=True, required=True,
    help="Field as name:format[:pk][:required]. Repeatable.",
)
@click.pass_context
def tables_add(
    ctx: click.Context, table_name: str, id_column: str | None, field_specs: tuple[str, ...],
) -> None:
    """Record catalog metadata for an existing table."""
    catalog = TableCatalog(ctx.obj["store"])
    fields = tuple(_parse_field(spec) for spec in field_specs)
    try:
        schema = TableSchema(table_name=table_name, id_column=id_column, fields=fields)
    except ValidationError as exc:
        raise click.ClickException(str(exc)) from exc
    catalog.register(schema)
    click.echo(f"Table registered: {table_name} ({len(fields)} fields)")


@cli.command()
@click.option("--id", "delivery_id", required=True, help="webhook-id header value.")
@click.option("--timestamp", required=True, help="webhook-timestamp header value.")
@click.option("--secret", required=True, help="Receiver secret.")
@click.argument("body")
def sign(delivery_id: str, timestamp: str, secret: str, body: str) -> None:
    """Print the webhook-signature header value for a body."""
    click.echo(compute_signature(delivery_id, timestamp, body, secret))


@cli.command()
@click.option("--receiver", "receiver_id", type=int, default=None, help="Only this receiver.")
@click.option("--limit", type=int, default=50, show_default=True)
@click.pass_context
def logs(ctx: click.Context, receiver_id: int | None, limit: int) -> None:
    """Show the most recent ledger entries."""
    ledger = IdempotencyLedger(ctx.obj["store"])
    entries = ledger.list_attempts(receiver_id=receiver_id, limit=limit)
    click.echo(json.dumps(entries, indent=2))
