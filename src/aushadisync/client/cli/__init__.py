"""Command-line interface for AushadiSync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- config: Show or update the sync configuration
- enqueue: Record a local mutation in the outbox
- pending: List entries waiting for sync
- purge: Delete entries already acknowledged by the server
- push: Run one sync cycle now
- status: Show local and remote sync status
- run: Run the background sync worker
- server: Run the batch-ingest server
"""

from __future__ import annotations

import click

from aushadisync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_outbox_path,
    load_config,
    save_config,
    setup_logging,
)
from aushadisync.client.cli.outbox import enqueue, pending, purge
from aushadisync.client.cli.server import server
from aushadisync.client.cli.sync import config, push, run, status


@click.group()
@click.version_option(package_name="aushadisync")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs.")
def cli(verbose: bool) -> None:
    """AushadiSync - offline outbox sync for the pharmacy POS."""
    setup_logging(verbose)


# Configuration
cli.add_command(config)

# Outbox commands
cli.add_command(enqueue)
cli.add_command(pending)
cli.add_command(purge)

# Sync commands
cli.add_command(push)
cli.add_command(status)
cli.add_command(run)

# Server command
cli.add_command(server)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "get_config_dir",
    "get_config_file",
    "get_outbox_path",
    "load_config",
    "save_config",
]
