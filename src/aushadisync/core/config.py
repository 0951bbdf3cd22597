"""Shared configuration classes for aushadisync.

This module defines configuration classes used by both client and server components.
"""

from __future__ import annotations

from dataclasses import dataclass

# Reference timings of the offline sync layer
DEFAULT_SYNC_INTERVAL = 30.0  # seconds between timer-driven cycles
DEFAULT_PURGE_DELAY = 5.0  # grace delay before synced entries are deleted
DEFAULT_STATUS_POLL_INTERVAL = 5.0  # seconds between status snapshots
DEFAULT_HEALTH_CHECK_INTERVAL = 5.0  # seconds between connectivity probes


@dataclass
class ServerConfig:
    """Configuration for connecting to the remote batch endpoint.

    Attributes:
        server_url: Base URL of the server (e.g., "https://pos.example.com").
        token: Optional bearer token sent with every request.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str | None = None
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS.

        Returns:
            True if server uses HTTPS.
        """
        return self.server_url.startswith("https://")

    @property
    def headers(self) -> dict[str, str]:
        """Default request headers (bearer token when configured)."""
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}


@dataclass
class SyncSettings:
    """Timing configuration for the worker, the store and the status monitor.

    Attributes:
        sync_interval: Seconds between timer-driven sync cycles.
        purge_delay: Grace delay before synced entries are purged.
        status_poll_interval: Seconds between status monitor refreshes.
        health_check_interval: Seconds between connectivity probes.
    """

    sync_interval: float = DEFAULT_SYNC_INTERVAL
    purge_delay: float = DEFAULT_PURGE_DELAY
    status_poll_interval: float = DEFAULT_STATUS_POLL_INTERVAL
    health_check_interval: float = DEFAULT_HEALTH_CHECK_INTERVAL

    def __post_init__(self) -> None:
        for name in ("sync_interval", "status_poll_interval", "health_check_interval"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.purge_delay < 0:
            raise ValueError("purge_delay must not be negative")

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> SyncSettings:
        """Build settings from a config-file dictionary, ignoring unknown keys."""
        kwargs: dict[str, float] = {}
        for name in ("sync_interval", "purge_delay", "status_poll_interval", "health_check_interval"):
            value = data.get(name)
            if value is not None:
                kwargs[name] = float(value)  # type: ignore[arg-type]
        return cls(**kwargs)
