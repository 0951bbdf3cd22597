"""Connectivity signal consumed by the sync worker.

This module provides:
- ConnectivityObserver: Protocol the worker depends on
- ManualConnectivity: Adapter driven by explicit online/offline signals
- HealthCheckConnectivity: Adapter polling the server health endpoint

Observers only broadcast transitions: reporting the state the observer
is already in does not call the listeners again.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Protocol

from aushadisync.core.config import DEFAULT_HEALTH_CHECK_INTERVAL

if TYPE_CHECKING:
    from collections.abc import Callable

    from aushadisync.client.api import BatchClient
    from aushadisync.client.timers import TimerSource

logger = logging.getLogger(__name__)


class ConnectivityObserver(Protocol):
    """Source of online/offline transitions."""

    @property
    def is_online(self) -> bool:
        """Current connectivity."""
        ...

    def on_change(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        """Register a listener called with the new state on every transition.

        Returns:
            A function that unregisters the listener.
        """
        ...


class ManualConnectivity:
    """Connectivity driven by set_online() calls (platform events, tests)."""

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._lock = threading.Lock()
        # Held while listeners run; reentrant so a listener may report again
        self._dispatch_lock = threading.RLock()
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def on_change(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        """Report the current connectivity, notifying listeners on change.

        Transitions are delivered one at a time and in the order they
        happened, so listeners never see a stale state last.
        """
        with self._dispatch_lock:
            with self._lock:
                if online == self._online:
                    return
                self._online = online
                listeners = list(self._listeners)

            logger.info("Connectivity changed: %s", "online" if online else "offline")
            for listener in listeners:
                try:
                    listener(online)
                except Exception:
                    logger.exception("Connectivity listener failed")

    def go_online(self) -> None:
        self.set_online(True)

    def go_offline(self) -> None:
        self.set_online(False)


class HealthCheckConnectivity(ManualConnectivity):
    """Connectivity derived from polling the server health endpoint.

    Usage:
        connectivity = HealthCheckConnectivity(client, timers)
        connectivity.start()
        ...
        connectivity.stop()
    """

    JOB_ID = "connectivity-probe"

    def __init__(
        self,
        client: BatchClient,
        timers: TimerSource,
        interval: float = DEFAULT_HEALTH_CHECK_INTERVAL,
        online: bool = False,
    ) -> None:
        """Initialize the probe.

        Args:
            client: Client used for health checks.
            timers: Timer source running the probe.
            interval: Seconds between health checks (default: 5s).
            online: Assumed state before the first probe.
        """
        super().__init__(online=online)
        self._client = client
        self._timers = timers
        self._interval = interval

    def start(self) -> None:
        """Probe right away, then every interval seconds."""
        self.probe()
        self._timers.call_every(self.JOB_ID, self._interval, self.probe)
        logger.info("Connectivity probe started (every %.0fs)", self._interval)

    def stop(self) -> None:
        self._timers.cancel(self.JOB_ID)

    def probe(self) -> bool:
        """Run one health check and publish the result."""
        online = self._client.health_check()
        self.set_online(online)
        return online
