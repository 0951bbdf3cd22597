"""Shared fixtures: manual timer source, fake transport, outbox store."""

from __future__ import annotations

import threading
from collections.abc import Callable, Generator, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest

from aushadisync.client.api import APIError, BatchResult
from aushadisync.client.connectivity import ManualConnectivity
from aushadisync.client.outbox import OutboxEntry, OutboxStore
from aushadisync.client.worker import SyncWorker

EPOCH = datetime(2025, 1, 1, 9, 0, 0, tzinfo=UTC)


@dataclass
class _Job:
    func: Callable[[], Any]
    next_run: float
    interval: float | None


class ManualTimers:
    """TimerSource driven by advance() instead of wall-clock time."""

    def __init__(self) -> None:
        self.now = 0.0
        self._jobs: dict[str, _Job] = {}

    def call_every(
        self,
        job_id: str,
        interval: float,
        func: Callable[[], Any],
        *,
        immediate: bool = False,
    ) -> None:
        first = self.now if immediate else self.now + interval
        self._jobs[job_id] = _Job(func, first, interval)

    def call_later(self, job_id: str, delay: float, func: Callable[[], Any]) -> None:
        self._jobs[job_id] = _Job(func, self.now + delay, None)

    def cancel(self, job_id: str) -> bool:
        return self._jobs.pop(job_id, None) is not None

    def is_scheduled(self, job_id: str) -> bool:
        return job_id in self._jobs

    def shutdown(self) -> None:
        self._jobs.clear()

    @property
    def job_ids(self) -> set[str]:
        return set(self._jobs)

    def advance(self, seconds: float = 0.0) -> None:
        """Move the clock forward, running every job that falls due."""
        target = self.now + seconds
        while True:
            due = [
                (job.next_run, job_id)
                for job_id, job in self._jobs.items()
                if job.next_run <= target
            ]
            if not due:
                break
            next_run, job_id = min(due)
            job = self._jobs[job_id]
            self.now = next_run
            if job.interval is None:
                del self._jobs[job_id]
            else:
                job.next_run = next_run + job.interval
            job.func()
        self.now = target

    def clock(self) -> datetime:
        return EPOCH + timedelta(seconds=self.now)


class FakeBatchClient:
    """Records batches instead of sending them.

    Attributes:
        batches: Every batch received, in order.
        fail: Reject batches with a 500 APIError.
        network_error: Fail with a transport error instead.
        gate: When set, send_batch blocks until the event is set.
    """

    def __init__(self, fail: bool = False) -> None:
        self.batches: list[list[OutboxEntry]] = []
        self.fail = fail
        self.network_error = False
        self.gate: threading.Event | None = None
        self.entered = threading.Event()
        self.healthy = True

    @property
    def calls(self) -> int:
        return len(self.batches)

    def send_batch(self, entries: Sequence[OutboxEntry]) -> BatchResult:
        self.batches.append(list(entries))
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.network_error:
            raise httpx.ConnectError("Connection refused")
        if self.fail:
            raise APIError("Failed to process sync batch", 500)
        return BatchResult(
            processed=len(entries),
            applied=len(entries),
            duplicates=0,
            message="Batch sync completed successfully",
        )

    def health_check(self) -> bool:
        return self.healthy


@pytest.fixture
def timers() -> ManualTimers:
    return ManualTimers()


@pytest.fixture
def store(tmp_path: Path, timers: ManualTimers) -> Generator[OutboxStore, None, None]:
    """Create an outbox store using the manual timer source."""
    s = OutboxStore(tmp_path / "outbox.db", timers=timers, clock=timers.clock)
    yield s
    s.close()


@pytest.fixture
def connectivity() -> ManualConnectivity:
    return ManualConnectivity(online=True)


@pytest.fixture
def client() -> FakeBatchClient:
    return FakeBatchClient()


@pytest.fixture
def worker(
    store: OutboxStore,
    client: FakeBatchClient,
    connectivity: ManualConnectivity,
    timers: ManualTimers,
) -> Generator[SyncWorker, None, None]:
    """Create a worker with a 30s interval and a 5s purge delay."""
    w = SyncWorker(
        store,
        client,  # type: ignore[arg-type]
        connectivity,
        timers,
        sync_interval=30.0,
        purge_delay=5.0,
        clock=timers.clock,
    )
    yield w
    w.close()
