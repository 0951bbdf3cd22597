"""Status monitor bridging the sync worker to a display consumer.

This module provides:
- SyncStatusMonitor: Polls the worker's status snapshot for a UI badge

The monitor refreshes every poll interval and immediately on every
connectivity transition. It owns no state besides the last snapshot it
observed.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from aushadisync.core.config import DEFAULT_STATUS_POLL_INTERVAL

if TYPE_CHECKING:
    from collections.abc import Callable

    from aushadisync.client.connectivity import ConnectivityObserver
    from aushadisync.client.timers import TimerSource
    from aushadisync.client.worker import SyncStatus, SyncWorker

logger = logging.getLogger(__name__)


class SyncStatusMonitor:
    """Polling adapter exposing the worker status and a force_sync() passthrough.

    Usage:
        monitor = SyncStatusMonitor(worker, connectivity, timers)
        monitor.add_listener(lambda status: render(status.to_dict()))
        monitor.start()

        # Sync button
        monitor.force_sync()

        monitor.stop()
    """

    JOB_ID = "sync-status-poll"

    def __init__(
        self,
        worker: SyncWorker,
        connectivity: ConnectivityObserver,
        timers: TimerSource,
        poll_interval: float = DEFAULT_STATUS_POLL_INTERVAL,
    ) -> None:
        """Initialize the monitor.

        Args:
            worker: Worker to observe.
            connectivity: Connectivity signal triggering immediate refreshes.
            timers: Timer source for periodic polling.
            poll_interval: Seconds between refreshes (default: 5s).
        """
        self._worker = worker
        self._connectivity = connectivity
        self._timers = timers
        self._poll_interval = poll_interval

        self._lock = threading.Lock()
        self._snapshot = worker.get_sync_status()
        self._listeners: list[Callable[[SyncStatus], None]] = []
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def snapshot(self) -> SyncStatus:
        """Last observed status."""
        with self._lock:
            return self._snapshot

    def add_listener(self, callback: Callable[[SyncStatus], None]) -> None:
        """Register a callback invoked whenever the snapshot changes."""
        with self._lock:
            self._listeners.append(callback)

    def start(self) -> None:
        """Begin polling and listening for connectivity changes."""
        if self._unsubscribe is None:
            self._unsubscribe = self._connectivity.on_change(self._on_connectivity_change)
        self._timers.call_every(self.JOB_ID, self._poll_interval, self._poll)
        self.refresh()

    def stop(self) -> None:
        self._timers.cancel(self.JOB_ID)
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def refresh(self) -> SyncStatus:
        """Take a new snapshot now."""
        status = self._worker.get_sync_status()
        with self._lock:
            changed = status != self._snapshot
            self._snapshot = status
            listeners = list(self._listeners) if changed else []

        for listener in listeners:
            try:
                listener(status)
            except Exception:
                logger.exception("Status listener failed")
        return status

    def force_sync(self) -> SyncStatus:
        """Run a sync cycle, then return the refreshed snapshot."""
        self._worker.force_sync()
        return self.refresh()

    def _poll(self) -> None:
        try:
            self.refresh()
        except Exception:
            logger.exception("Error while polling sync status")

    def _on_connectivity_change(self, online: bool) -> None:
        self.refresh()
