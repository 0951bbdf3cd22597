"""Core module - Shared configuration and types."""

from aushadisync.core.config import (
    DEFAULT_HEALTH_CHECK_INTERVAL,
    DEFAULT_PURGE_DELAY,
    DEFAULT_STATUS_POLL_INTERVAL,
    DEFAULT_SYNC_INTERVAL,
    ServerConfig,
    SyncSettings,
)
from aushadisync.core.types import Operation, SyncState

__all__ = [
    # Config
    "DEFAULT_HEALTH_CHECK_INTERVAL",
    "DEFAULT_PURGE_DELAY",
    "DEFAULT_STATUS_POLL_INTERVAL",
    "DEFAULT_SYNC_INTERVAL",
    "ServerConfig",
    "SyncSettings",
    # Types
    "Operation",
    "SyncState",
]
