"""FastAPI application for the AushadiSync batch-ingest server.

This module creates and configures the FastAPI application with:
- GET /health
- POST /api/sync/batch
- GET /api/sync/status

Usage:
    uvicorn aushadisync.server.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from aushadisync.server.api.router import router as api_router
from aushadisync.server.database import Database

# Configuration from environment variables with defaults
DB_PATH = Path(os.environ.get("AUSHADISYNC_DB_PATH", "aushadisync.db"))
LOG_PATH = Path(os.environ.get("AUSHADISYNC_LOG_PATH", "aushadisync-server.log"))

logger = logging.getLogger(__name__)


def setup_logging(log_path: Path | None) -> None:
    """Configure logging to output to stdout and, optionally, a file.

    Args:
        log_path: Path to the log file (None for stdout only).
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(log_format)

    # Root logger for aushadisync
    root_logger = logging.getLogger("aushadisync")
    root_logger.setLevel(logging.INFO)

    # Stdout handler
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    if log_path is None:
        return

    # File handler
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Also capture uvicorn logs to file
    for uvicorn_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(uvicorn_name).addHandler(file_handler)


def create_app(db: Database) -> FastAPI:
    """Create FastAPI application with a given database.

    Args:
        db: Database instance.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        db_path = getattr(db, "_db_path", "in-memory")
        logger.info("AushadiSync server starting (database: %s)", db_path)

        yield

        logger.info("AushadiSync server shutting down")

    application = FastAPI(
        title="AushadiSync Server",
        description="Batch ingest endpoint for offline pharmacy POS outboxes",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.state.db = db
    application.include_router(api_router)

    return application


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode."""
    setup_logging(LOG_PATH)
    return create_app(db=Database(DB_PATH))
