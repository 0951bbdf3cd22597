"""Server command for the AushadiSync CLI.

Commands:
- server: Run the batch-ingest server
"""

from __future__ import annotations

import logging
import os

import click


@click.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind.")
@click.option("--port", default=8000, show_default=True, type=int, help="Port to listen on.")
@click.option(
    "--db-path",
    type=click.Path(),
    default=None,
    help="Path to database file (default: AUSHADISYNC_DB_PATH or ./aushadisync.db).",
)
def server(host: str, port: int, db_path: str | None) -> None:
    """Run the batch-ingest server.

    Examples:

        aushadisync server --port 8000

        aushadisync server --db-path /var/lib/aushadisync/aushadisync.db
    """
    import uvicorn

    from aushadisync.client.cli.config import ClickEchoHandler

    # The server installs its own stdout and file handlers
    app_logger = logging.getLogger("aushadisync")
    for handler in app_logger.handlers[:]:
        if isinstance(handler, ClickEchoHandler):
            app_logger.removeHandler(handler)

    if db_path:
        # Read by aushadisync.server.app at import time
        os.environ["AUSHADISYNC_DB_PATH"] = db_path

    click.echo(f"Starting AushadiSync server on http://{host}:{port}")
    uvicorn.run(
        "aushadisync.server.app:app_factory",
        factory=True,
        host=host,
        port=port,
    )
