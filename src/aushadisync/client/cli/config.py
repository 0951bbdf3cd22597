"""Configuration utilities for the AushadiSync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

import click

from aushadisync.core.config import ServerConfig, SyncSettings

CONFIG_DIR_ENV = "AUSHADISYNC_CONFIG_DIR"


def get_config_dir() -> Path:
    """Get the configuration directory for AushadiSync.

    Returns:
        Path from AUSHADISYNC_CONFIG_DIR, or ~/.aushadisync.
    """
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".aushadisync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def get_outbox_path() -> Path:
    """Get the path to the local outbox database."""
    return get_config_dir() / "outbox.db"


def load_config() -> dict[str, str | float]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, str | float]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_server_config() -> ServerConfig | None:
    """Build the server configuration, or None if no server is configured."""
    config = load_config()
    server_url = config.get("server_url")
    if not server_url:
        return None
    token = config.get("auth_token")
    return ServerConfig(
        server_url=str(server_url),
        token=str(token) if token else None,
        timeout=float(config.get("timeout", 30.0)),
    )


def get_sync_settings() -> SyncSettings:
    """Build worker timings from the config file."""
    return SyncSettings.from_dict(dict(load_config()))


class ClickEchoHandler(logging.Handler):
    """Logging handler writing through click.echo.

    The stream is resolved at emit time, so output follows whatever
    stderr click is currently bound to.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def setup_logging(verbose: bool = False, level: int = logging.WARNING) -> None:
    """Send aushadisync logs to stderr.

    Args:
        verbose: Force DEBUG level.
        level: Level used when not verbose.
    """
    root_logger = logging.getLogger("aushadisync")
    root_logger.setLevel(logging.DEBUG if verbose else level)

    if not any(isinstance(h, ClickEchoHandler) for h in root_logger.handlers):
        handler = ClickEchoHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root_logger.addHandler(handler)
