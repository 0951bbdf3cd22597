"""Sync commands for the AushadiSync CLI.

Commands:
- config: Show or update the server configuration
- push: Run one sync cycle now
- status: Show local and remote sync status
- run: Run the background sync worker until interrupted
"""

from __future__ import annotations

import logging
import sys
import time
from typing import TYPE_CHECKING

import click

from aushadisync.client.cli.config import (
    get_outbox_path,
    get_server_config,
    get_sync_settings,
    load_config,
    save_config,
    setup_logging,
)

if TYPE_CHECKING:
    from aushadisync.core.config import ServerConfig


def _require_server_config() -> ServerConfig:
    server_config = get_server_config()
    if server_config is None:
        click.echo(
            "Error: No server configured. Run 'aushadisync config --server URL' first.",
            err=True,
        )
        sys.exit(1)
    return server_config


@click.command()
@click.option("--server", "server_url", default=None, help="Server URL (e.g., http://localhost:8000).")
@click.option("--token", default=None, help="Bearer token sent to the server.")
@click.option("--interval", type=float, default=None, help="Seconds between sync cycles.")
@click.option("--purge-delay", type=float, default=None, help="Grace delay before purging synced entries.")
def config(
    server_url: str | None,
    token: str | None,
    interval: float | None,
    purge_delay: float | None,
) -> None:
    """Show or update the sync configuration."""
    current = load_config()
    updates: dict[str, str | float] = {}
    if server_url is not None:
        updates["server_url"] = server_url.rstrip("/")
    if token is not None:
        updates["auth_token"] = token
    if interval is not None:
        if interval <= 0:
            raise click.BadParameter("must be positive", param_hint="--interval")
        updates["sync_interval"] = interval
    if purge_delay is not None:
        if purge_delay < 0:
            raise click.BadParameter("must not be negative", param_hint="--purge-delay")
        updates["purge_delay"] = purge_delay

    if updates:
        current.update(updates)
        save_config(current)
        click.echo("Configuration saved.")

    for key, value in sorted(current.items()):
        if key == "auth_token":
            value = "********"
        click.echo(f"{key}: {value}")


@click.command()
def push() -> None:
    """Run one sync cycle now.

    Sends every pending entry as one batch. Exits with status 1 if the
    server is unreachable or rejects the batch.
    """
    from aushadisync.client.api import BatchClient
    from aushadisync.client.connectivity import ManualConnectivity
    from aushadisync.client.outbox import OutboxStore
    from aushadisync.client.timers import SchedulerTimers
    from aushadisync.client.worker import SyncOutcome, SyncWorker

    server_config = _require_server_config()
    settings = get_sync_settings()

    # No timer source: acknowledged entries are purged right away
    store = OutboxStore(get_outbox_path())
    client = BatchClient(server_config)
    timers = SchedulerTimers()
    try:
        connectivity = ManualConnectivity(online=client.health_check())
        worker = SyncWorker(
            store,
            client,
            connectivity,
            timers,
            sync_interval=settings.sync_interval,
            purge_delay=settings.purge_delay,
        )
        result = worker.force_sync()
    finally:
        timers.shutdown()
        client.close()
        store.close()

    if result.outcome is SyncOutcome.OFFLINE:
        click.echo(f"Error: Server unreachable at {server_config.server_url}", err=True)
        sys.exit(1)
    if result.outcome is SyncOutcome.FAILED:
        click.echo(f"Error: Sync failed: {result.error}", err=True)
        sys.exit(1)
    if result.outcome is SyncOutcome.EMPTY:
        click.echo("Nothing to sync.")
        return
    click.echo(f"Synced {result.sent} items.")


@click.command()
def status() -> None:
    """Show local outbox and server status."""
    from aushadisync.client.api import APIError, BatchClient
    from aushadisync.client.outbox import OutboxStore

    store = OutboxStore(get_outbox_path())
    try:
        stats = store.stats()
    finally:
        store.close()

    click.echo(f"Pending items: {stats['unsynced']}")
    click.echo(f"Synced (awaiting purge): {stats['synced']}")

    server_config = get_server_config()
    if server_config is None:
        click.echo("Server: not configured")
        return

    with BatchClient(server_config) as client:
        if not client.health_check():
            click.echo(f"Server: {server_config.server_url} (offline)")
            return
        click.echo(f"Server: {server_config.server_url} (online)")
        try:
            remote = client.get_remote_status()
        except APIError as e:
            click.echo(f"Remote status unavailable: {e}", err=True)
            return
    click.echo(f"Received by server: {remote.received_items}")
    if remote.last_sync:
        click.echo(f"Last received: {remote.last_sync.isoformat()}")


@click.command()
def run() -> None:
    """Run the sync worker until interrupted.

    Probes the server health endpoint to detect connectivity, pushes the
    outbox on a fixed interval and whenever the server comes back, and
    prints a status line whenever it changes.
    """
    from aushadisync.client.api import BatchClient
    from aushadisync.client.connectivity import HealthCheckConnectivity
    from aushadisync.client.outbox import OutboxStore
    from aushadisync.client.status import SyncStatusMonitor
    from aushadisync.client.timers import SchedulerTimers
    from aushadisync.client.worker import SyncStatus, SyncWorker

    if logging.getLogger("aushadisync").level > logging.INFO:
        setup_logging(level=logging.INFO)

    server_config = _require_server_config()
    settings = get_sync_settings()

    timers = SchedulerTimers()
    store = OutboxStore(get_outbox_path(), timers=timers)
    client = BatchClient(server_config)
    connectivity = HealthCheckConnectivity(
        client, timers, interval=settings.health_check_interval
    )
    worker = SyncWorker(
        store,
        client,
        connectivity,
        timers,
        sync_interval=settings.sync_interval,
        purge_delay=settings.purge_delay,
    )
    monitor = SyncStatusMonitor(
        worker, connectivity, timers, poll_interval=settings.status_poll_interval
    )

    def show(snapshot: SyncStatus) -> None:
        state = "online" if snapshot.is_online else "offline"
        line = f"[{snapshot.state.value}] {state}, {snapshot.pending_items} pending"
        if snapshot.last_sync:
            line += f", last sync {snapshot.last_sync}"
        click.echo(line)

    monitor.add_listener(show)

    click.echo(f"Syncing {get_outbox_path()} to {server_config.server_url} (Ctrl+C to stop)")
    worker.start()
    connectivity.start()
    monitor.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("\nStopping...")
    finally:
        monitor.stop()
        connectivity.stop()
        worker.close()
        timers.shutdown()
        client.close()
        store.close()
