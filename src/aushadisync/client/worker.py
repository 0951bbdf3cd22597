"""Background worker draining the outbox to the server.

This module provides:
- SyncWorker: Connectivity-aware worker pushing outbox batches
- SyncStatus: Snapshot of the worker for display consumers
- SyncResult / SyncOutcome: Result of one sync cycle

State machine:
    IDLE ──start()──► SCHEDULED ◄──► SYNCING
      ▲                  │  ▲
      │               offline online
    stop()               ▼  │
      └──────────────  OFFLINE

- Going offline from any state clears the timer. An in-flight batch is
  not cancelled; its outcome still updates the outbox when it arrives.
- Coming back online re-arms the timer, which also fires right away.
- At most one cycle runs at a time: a cycle requested while another one
  is in flight is skipped, not queued.

Sync cycle:
    1. Offline -> nothing to do.
    2. Read every unsynced entry (FIFO). None -> nothing to do.
    3. Send them as one batch.
    4. Acknowledged -> mark the whole batch synced, purge after a grace delay.
    5. Rejected or transport error -> every entry stays pending for the
       next cycle. There is no partial credit.

Delivery is at-least-once: if the server applied a batch but the local
mark step did not happen, the next cycle resends it. The server must
apply entries idempotently (it deduplicates by entry id).
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx

from aushadisync.client.api import APIError
from aushadisync.core.config import DEFAULT_PURGE_DELAY, DEFAULT_SYNC_INTERVAL
from aushadisync.core.types import SyncState

if TYPE_CHECKING:
    from collections.abc import Callable

    from aushadisync.client.api import BatchClient
    from aushadisync.client.connectivity import ConnectivityObserver
    from aushadisync.client.outbox import OutboxEntry, OutboxStore
    from aushadisync.client.timers import TimerSource

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "outbox-sync"

# Errors meaning "the batch was not acknowledged"
TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    APIError,
    httpx.HTTPError,
)


class SyncOutcome(Enum):
    """What a sync cycle did."""

    OFFLINE = "offline"  # No network, nothing attempted
    SKIPPED = "skipped"  # Another cycle was already in flight
    EMPTY = "empty"  # Nothing pending
    SUCCESS = "success"  # Batch acknowledged and marked synced
    FAILED = "failed"  # Batch rejected, entries left pending


@dataclass(frozen=True)
class SyncResult:
    """Result of one sync cycle."""

    outcome: SyncOutcome
    sent: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is not SyncOutcome.FAILED


@dataclass(frozen=True)
class SyncStatus:
    """Point-in-time snapshot of the worker.

    Attributes:
        is_online: Current connectivity.
        pending_items: Entries waiting for acknowledgment.
        is_worker_running: True while the periodic timer is armed.
        last_sync: ISO time of the last acknowledged batch.
        state: Current state machine state.
        last_error: Error of the last failed cycle (cleared on success).
    """

    is_online: bool
    pending_items: int
    is_worker_running: bool
    last_sync: str | None = None
    state: SyncState = SyncState.IDLE
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Consumer-facing shape."""
        return {
            "isOnline": self.is_online,
            "pendingItems": self.pending_items,
            "isWorkerRunning": self.is_worker_running,
            "lastSync": self.last_sync,
            "state": self.state.value,
            "lastError": self.last_error,
        }


class SyncWorker:
    """Drains an OutboxStore to the server whenever connectivity allows.

    Construct one per application and pass it to the consumers that need
    it. All collaborators are injected so the worker can run against a
    fake clock and a fake transport.

    Usage:
        worker = SyncWorker(store, client, connectivity, SchedulerTimers())
        worker.start()
        ...
        worker.force_sync()
        print(worker.get_sync_status().to_dict())
        ...
        worker.stop()
    """

    def __init__(
        self,
        store: OutboxStore,
        client: BatchClient,
        connectivity: ConnectivityObserver,
        timers: TimerSource,
        sync_interval: float = DEFAULT_SYNC_INTERVAL,
        purge_delay: float = DEFAULT_PURGE_DELAY,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            store: Outbox to drain.
            client: Transport used to push batches.
            connectivity: Online/offline signal.
            timers: Timer source for the periodic cycle.
            sync_interval: Seconds between timer-driven cycles (default: 30s).
            purge_delay: Grace delay before acknowledged entries are purged.
            clock: Returns the current time (default: UTC wall clock).
        """
        self._store = store
        self._client = client
        self._connectivity = connectivity
        self._timers = timers
        self._sync_interval = sync_interval
        self._purge_delay = purge_delay
        self._clock = clock or (lambda: datetime.now(UTC))

        self._state = SyncState.IDLE
        self._running = False
        self._state_lock = threading.RLock()
        # Held for the whole duration of a cycle
        self._cycle_lock = threading.Lock()

        self._last_sync: datetime | None = None
        self._last_error: str | None = None

        self._unsubscribe = connectivity.on_change(self._on_connectivity_change)

    # === Properties ===

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._connectivity.is_online

    @property
    def is_running(self) -> bool:
        """True while the periodic timer is armed."""
        return self._timers.is_scheduled(SYNC_JOB_ID)

    @property
    def last_sync(self) -> datetime | None:
        return self._last_sync

    # === Lifecycle ===

    def start(self) -> None:
        """Start periodic syncing (deferred until online)."""
        with self._state_lock:
            self._running = True
            if self._connectivity.is_online:
                self._arm()
            else:
                self._state = SyncState.OFFLINE
        logger.info(
            "Sync worker started (interval=%.0fs, online=%s)",
            self._sync_interval,
            self._connectivity.is_online,
        )

    def stop(self) -> None:
        """Stop periodic syncing. A cycle already in flight completes."""
        with self._state_lock:
            self._running = False
            self._disarm()
            self._state = SyncState.IDLE
        logger.info("Sync worker stopped")

    def close(self) -> None:
        """Stop and detach from the connectivity observer."""
        self.stop()
        self._unsubscribe()

    def _arm(self) -> None:
        if not self._timers.is_scheduled(SYNC_JOB_ID):
            self._timers.call_every(
                SYNC_JOB_ID,
                self._sync_interval,
                self._scheduled_sync,
                immediate=True,
            )
        if self._state is not SyncState.SYNCING:
            self._state = SyncState.SCHEDULED

    def _disarm(self) -> None:
        self._timers.cancel(SYNC_JOB_ID)

    def _on_connectivity_change(self, online: bool) -> None:
        with self._state_lock:
            if online:
                if not self._connectivity.is_online:
                    logger.debug("Ignoring stale online event")
                    return
                if not self._running:
                    self._state = SyncState.IDLE
                    return
                logger.info("Back online - resuming sync")
                self._arm()
            else:
                logger.info("Gone offline - pausing sync")
                self._disarm()
                self._state = SyncState.OFFLINE

    # === Sync cycle ===

    def force_sync(self) -> SyncResult:
        """Run a sync cycle now, out of band of the timer."""
        return self.sync_once()

    def _scheduled_sync(self) -> None:
        try:
            self.sync_once()
        except Exception:
            logger.exception("Unexpected error during scheduled sync")

    def sync_once(self) -> SyncResult:
        """Run one sync cycle.

        Returns:
            What the cycle did. Never raises for transport or storage errors.
        """
        if not self._connectivity.is_online:
            logger.debug("Offline - skipping sync")
            return SyncResult(SyncOutcome.OFFLINE)

        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("Sync already in progress - skipping")
            return SyncResult(SyncOutcome.SKIPPED)

        try:
            entries = self._store.list_unsynced()
            if not entries:
                logger.debug("No items to sync")
                return SyncResult(SyncOutcome.EMPTY)

            return self._push(entries)
        finally:
            self._cycle_lock.release()

    def _push(self, entries: list[OutboxEntry]) -> SyncResult:
        with self._state_lock:
            previous = self._state
            self._state = SyncState.SYNCING

        logger.info("Syncing %d items...", len(entries))
        try:
            try:
                result = self._client.send_batch(entries)
            except TRANSIENT_ERRORS as e:
                self._last_error = str(e) or type(e).__name__
                logger.warning(
                    "Sync failed, %d items left pending: %s", len(entries), self._last_error
                )
                return SyncResult(SyncOutcome.FAILED, sent=len(entries), error=self._last_error)

            self._store.mark_all_synced(entry.id for entry in entries)
            self._last_sync = self._clock()
            self._last_error = None
            self._store.schedule_purge(self._purge_delay)
            logger.info(
                "Successfully synced %d items (applied=%d, duplicates=%d)",
                len(entries),
                result.applied,
                result.duplicates,
            )
            return SyncResult(SyncOutcome.SUCCESS, sent=len(entries))
        finally:
            self._leave_syncing(previous)

    def _leave_syncing(self, previous: SyncState) -> None:
        with self._state_lock:
            if self._state is not SyncState.SYNCING:
                # Connectivity or stop() moved us elsewhere meanwhile
                return
            if self._timers.is_scheduled(SYNC_JOB_ID):
                self._state = SyncState.SCHEDULED
            elif previous is SyncState.SYNCING:
                self._state = SyncState.IDLE
            else:
                self._state = previous

    # === Status ===

    def get_sync_status(self) -> SyncStatus:
        """Snapshot for display consumers. Consumers poll it."""
        return SyncStatus(
            is_online=self._connectivity.is_online,
            pending_items=self._store.count_unsynced(),
            is_worker_running=self.is_running,
            last_sync=self._last_sync.isoformat() if self._last_sync else None,
            state=self._state,
            last_error=self._last_error,
        )
