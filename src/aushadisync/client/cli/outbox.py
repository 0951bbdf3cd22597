"""Outbox commands for the AushadiSync CLI.

Commands:
- enqueue: Record a local mutation
- pending: List entries waiting for sync
- purge: Delete entries already acknowledged by the server
"""

from __future__ import annotations

import json

import click

from aushadisync.client.cli.config import get_outbox_path
from aushadisync.client.outbox import OutboxStore
from aushadisync.core.types import Operation


def _parse_payload(ctx: click.Context, param: click.Parameter, value: str | None) -> object:
    if value is None:
        return {}
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}") from e


@click.command()
@click.argument("table_name")
@click.argument("row_id")
@click.argument(
    "operation",
    type=click.Choice([op.value for op in Operation]),
)
@click.option(
    "--payload",
    "-p",
    callback=_parse_payload,
    default=None,
    help="Mutation data as JSON (default: {}).",
)
def enqueue(table_name: str, row_id: str, operation: str, payload: object) -> None:
    """Record a mutation in the local outbox.

    Example:

        aushadisync enqueue sales s1 create -p '{"total": 120.5}'
    """
    store = OutboxStore(get_outbox_path())
    try:
        entry_id = store.enqueue(table_name, row_id, operation, payload)
        pending = store.count_unsynced()
    finally:
        store.close()
    click.echo(f"Queued {operation} {table_name}/{row_id} ({entry_id})")
    click.echo(f"{pending} pending")


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Print entries as JSON.")
def pending(as_json: bool) -> None:
    """List outbox entries waiting for sync, oldest first."""
    store = OutboxStore(get_outbox_path())
    try:
        entries = store.list_unsynced()
    finally:
        store.close()

    if as_json:
        click.echo(json.dumps([entry.to_dict() for entry in entries], indent=2))
        return

    if not entries:
        click.echo("Outbox is empty.")
        return

    for entry in entries:
        click.echo(
            f"{entry.timestamp}  {entry.operation.value:<6}  "
            f"{entry.table_name}/{entry.row_id}  {entry.id}"
        )
    click.echo(f"\n{len(entries)} pending")


@click.command()
def purge() -> None:
    """Delete entries already acknowledged by the server."""
    store = OutboxStore(get_outbox_path())
    try:
        deleted = store.clear_synced()
    finally:
        store.close()
    click.echo(f"Purged {deleted} synced entries")
