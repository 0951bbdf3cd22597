"""Tests for the background sync worker."""

from __future__ import annotations

import threading
from collections.abc import Generator

import pytest

from aushadisync.client.api import BatchClient
from aushadisync.client.connectivity import ManualConnectivity
from aushadisync.client.outbox import OutboxStore
from aushadisync.client.worker import (
    SYNC_JOB_ID,
    SyncOutcome,
    SyncResult,
    SyncStatus,
    SyncWorker,
)
from aushadisync.core.config import ServerConfig
from aushadisync.core.types import SyncState
from tests.conftest import EPOCH, FakeBatchClient, ManualTimers


def enqueue_three(store: OutboxStore) -> list[str]:
    return [
        store.enqueue("sales", "s1", "create", {"total": 240.0}),
        store.enqueue("stock", "p1", "update", {"qty": 9}),
        store.enqueue("stock", "p2", "update", {"qty": 3}),
    ]


def run_in_background(worker: SyncWorker) -> tuple[threading.Thread, list[SyncResult]]:
    """Start a forced sync on another thread."""
    results: list[SyncResult] = []
    thread = threading.Thread(target=lambda: results.append(worker.force_sync()))
    thread.start()
    return thread, results


class TestLifecycle:
    """Tests for start/stop and the periodic timer."""

    def test_initial_state_is_idle(self, worker: SyncWorker, timers: ManualTimers) -> None:
        assert worker.state is SyncState.IDLE
        assert not timers.is_scheduled(SYNC_JOB_ID)

    def test_start_online_schedules(self, worker: SyncWorker, timers: ManualTimers) -> None:
        worker.start()

        assert worker.state is SyncState.SCHEDULED
        assert timers.is_scheduled(SYNC_JOB_ID)
        assert worker.is_running

    def test_start_offline_waits(
        self,
        worker: SyncWorker,
        connectivity: ManualConnectivity,
        timers: ManualTimers,
    ) -> None:
        connectivity.go_offline()

        worker.start()

        assert worker.state is SyncState.OFFLINE
        assert not timers.is_scheduled(SYNC_JOB_ID)

    def test_start_fires_immediately(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        timers: ManualTimers,
    ) -> None:
        store.enqueue("sales", "s1", "create", {})

        worker.start()
        timers.advance(0)

        assert client.calls == 1

    def test_fires_every_interval(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        timers: ManualTimers,
    ) -> None:
        worker.start()
        timers.advance(0)

        for expected in (1, 2, 3):
            store.enqueue("stock", f"p{expected}", "update", {})
            timers.advance(29)
            assert client.calls == expected - 1
            timers.advance(1)
            assert client.calls == expected

    def test_stop_clears_timer(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        timers: ManualTimers,
    ) -> None:
        store.enqueue("sales", "s1", "create", {})
        worker.start()

        worker.stop()
        timers.advance(120)

        assert worker.state is SyncState.IDLE
        assert not worker.is_running
        assert client.calls == 0

    def test_start_twice_keeps_one_timer(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        timers: ManualTimers,
    ) -> None:
        worker.start()
        timers.advance(0)
        store.enqueue("sales", "s1", "create", {})

        worker.start()
        timers.advance(0)

        # Re-arming an armed timer does not trigger an extra cycle
        assert client.calls == 0
        timers.advance(30)
        assert client.calls == 1

    def test_stopped_worker_ignores_online(
        self,
        worker: SyncWorker,
        connectivity: ManualConnectivity,
        timers: ManualTimers,
    ) -> None:
        worker.start()
        worker.stop()

        connectivity.go_offline()
        connectivity.go_online()

        assert worker.state is SyncState.IDLE
        assert not timers.is_scheduled(SYNC_JOB_ID)


class TestSyncCycle:
    """Tests for sync_once()."""

    def test_empty_outbox_makes_no_call(
        self, worker: SyncWorker, client: FakeBatchClient
    ) -> None:
        result = worker.sync_once()

        assert result.outcome is SyncOutcome.EMPTY
        assert client.calls == 0

    def test_fifo_batch(
        self, worker: SyncWorker, store: OutboxStore, client: FakeBatchClient
    ) -> None:
        """A batch contains exactly the pending entries, in enqueue order."""
        ids = [store.enqueue("stock", f"p{i}", "update", {"i": i}) for i in range(12)]

        result = worker.sync_once()

        assert result == SyncResult(SyncOutcome.SUCCESS, sent=12)
        assert client.calls == 1
        assert [entry.id for entry in client.batches[0]] == ids

    def test_success_marks_all_synced(
        self, worker: SyncWorker, store: OutboxStore, client: FakeBatchClient
    ) -> None:
        enqueue_three(store)

        worker.sync_once()

        assert store.list_unsynced() == []
        assert store.stats()["synced"] == 3

    @pytest.mark.parametrize("network_error", [False, True])
    def test_failure_marks_nothing(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        network_error: bool,
    ) -> None:
        ids = enqueue_three(store)
        client.fail = not network_error
        client.network_error = network_error

        result = worker.sync_once()

        assert result.outcome is SyncOutcome.FAILED
        assert result.sent == 3
        assert result.error
        assert [e.id for e in store.list_unsynced()] == ids
        assert store.stats()["synced"] == 0

    def test_failure_then_success_resends_everything(
        self, worker: SyncWorker, store: OutboxStore, client: FakeBatchClient
    ) -> None:
        ids = enqueue_three(store)
        client.fail = True
        worker.sync_once()

        client.fail = False
        fourth = store.enqueue("sales", "s2", "create", {})
        result = worker.sync_once()

        assert result.outcome is SyncOutcome.SUCCESS
        assert [e.id for e in client.batches[1]] == [*ids, fourth]

    def test_entries_enqueued_mid_flight_wait_for_next_cycle(
        self, worker: SyncWorker, store: OutboxStore, client: FakeBatchClient
    ) -> None:
        first = store.enqueue("sales", "s1", "create", {})
        client.gate = threading.Event()

        thread, results = run_in_background(worker)
        assert client.entered.wait(timeout=5)
        late = store.enqueue("sales", "s2", "create", {})
        client.gate.set()
        thread.join(timeout=5)

        assert results[0].outcome is SyncOutcome.SUCCESS
        assert [e.id for e in client.batches[0]] == [first]
        assert [e.id for e in store.list_unsynced()] == [late]

    def test_purge_after_grace_delay(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        timers: ManualTimers,
    ) -> None:
        enqueue_three(store)

        worker.sync_once()
        timers.advance(4)
        assert store.stats()["synced"] == 3

        timers.advance(1)
        assert store.stats() == {"total": 0, "unsynced": 0, "synced": 0}

    def test_force_sync_while_idle_returns_to_idle(
        self, worker: SyncWorker, store: OutboxStore, client: FakeBatchClient
    ) -> None:
        store.enqueue("sales", "s1", "create", {})

        result = worker.force_sync()

        assert result.outcome is SyncOutcome.SUCCESS
        assert worker.state is SyncState.IDLE

    def test_timer_cycle_returns_to_scheduled(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        timers: ManualTimers,
    ) -> None:
        enqueue_three(store)
        client.fail = True

        worker.start()
        timers.advance(0)

        assert client.calls == 1
        assert worker.state is SyncState.SCHEDULED

    def test_unexpected_error_keeps_schedule(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        timers: ManualTimers,
        caplog: pytest.LogCaptureFixture,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        store.enqueue("sales", "s1", "create", {})

        def explode(entries: object) -> None:
            raise RuntimeError("boom")

        monkeypatch.setattr(client, "send_batch", explode)

        worker.start()
        with caplog.at_level("ERROR", logger="aushadisync.client.worker"):
            timers.advance(0)

        assert "Unexpected error during scheduled sync" in caplog.text
        assert timers.is_scheduled(SYNC_JOB_ID)
        assert worker.state is SyncState.SCHEDULED
        assert store.count_unsynced() == 1


class TestOffline:
    """While offline nothing is sent and nothing changes."""

    def test_force_sync_offline_is_noop(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        connectivity: ManualConnectivity,
    ) -> None:
        ids = enqueue_three(store)
        connectivity.go_offline()

        result = worker.force_sync()

        assert result.outcome is SyncOutcome.OFFLINE
        assert client.calls == 0
        assert [e.id for e in store.list_unsynced()] == ids
        assert store.stats()["synced"] == 0

    def test_timer_does_not_fire_offline(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        connectivity: ManualConnectivity,
        timers: ManualTimers,
    ) -> None:
        enqueue_three(store)
        worker.start()
        connectivity.go_offline()

        timers.advance(300)

        assert client.calls == 0
        assert worker.state is SyncState.OFFLINE

    def test_in_flight_batch_completes_after_going_offline(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        connectivity: ManualConnectivity,
    ) -> None:
        enqueue_three(store)
        client.gate = threading.Event()

        thread, results = run_in_background(worker)
        assert client.entered.wait(timeout=5)
        connectivity.go_offline()
        client.gate.set()
        thread.join(timeout=5)

        assert results[0].outcome is SyncOutcome.SUCCESS
        assert store.list_unsynced() == []
        assert worker.state is SyncState.OFFLINE


class TestConnectivityTransitions:
    """Tests for online/offline handling."""

    def test_online_rearms_and_syncs_immediately(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        connectivity: ManualConnectivity,
        timers: ManualTimers,
    ) -> None:
        connectivity.go_offline()
        worker.start()
        store.enqueue("sales", "s1", "create", {})
        store.enqueue("stock", "p1", "update", {})

        connectivity.go_online()
        assert worker.state is SyncState.SCHEDULED
        timers.advance(0)

        assert client.calls == 1
        assert len(client.batches[0]) == 2

    def test_repeated_offline_is_noop(
        self,
        worker: SyncWorker,
        connectivity: ManualConnectivity,
        timers: ManualTimers,
    ) -> None:
        worker.start()
        connectivity.go_offline()
        connectivity.set_online(False)
        worker._on_connectivity_change(False)

        assert worker.state is SyncState.OFFLINE
        assert not timers.is_scheduled(SYNC_JOB_ID)

    def test_repeated_online_does_not_double_fire(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        timers: ManualTimers,
    ) -> None:
        worker.start()
        timers.advance(0)
        store.enqueue("sales", "s1", "create", {})

        worker._on_connectivity_change(True)
        worker._on_connectivity_change(True)
        timers.advance(0)

        assert client.calls == 0
        assert timers.job_ids == {SYNC_JOB_ID}

    @pytest.mark.parametrize(
        "initial",
        [SyncState.IDLE, SyncState.SCHEDULED, SyncState.SYNCING, SyncState.OFFLINE],
    )
    def test_online_then_offline_ends_offline(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        connectivity: ManualConnectivity,
        timers: ManualTimers,
        initial: SyncState,
    ) -> None:
        """From any state, online then offline leaves no timer behind."""
        thread = None
        if initial is SyncState.SCHEDULED:
            worker.start()
        elif initial is SyncState.OFFLINE:
            worker.start()
            connectivity.go_offline()
        elif initial is SyncState.SYNCING:
            worker.start()
            store.enqueue("sales", "s1", "create", {})
            client.gate = threading.Event()
            thread, _ = run_in_background(worker)
            assert client.entered.wait(timeout=5)
        assert worker.state is initial

        connectivity.go_online()
        connectivity.go_offline()

        if thread is not None:
            assert client.gate is not None
            client.gate.set()
            thread.join(timeout=5)

        assert worker.state is SyncState.OFFLINE
        assert not timers.is_scheduled(SYNC_JOB_ID)
        timers.advance(300)
        assert client.calls == (1 if initial is SyncState.SYNCING else 0)


class TestConcurrentCycles:
    """A cycle requested while another is in flight is skipped."""

    def test_second_force_sync_is_skipped(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
    ) -> None:
        ids = enqueue_three(store)
        client.gate = threading.Event()

        thread, results = run_in_background(worker)
        assert client.entered.wait(timeout=5)
        assert worker.state is SyncState.SYNCING

        second = worker.force_sync()
        client.gate.set()
        thread.join(timeout=5)

        assert second.outcome is SyncOutcome.SKIPPED
        assert results[0].outcome is SyncOutcome.SUCCESS
        assert client.calls == 1
        assert [e.id for e in client.batches[0]] == ids

    def test_timer_fire_during_forced_cycle_is_skipped(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        timers: ManualTimers,
    ) -> None:
        store.enqueue("sales", "s1", "create", {})
        client.gate = threading.Event()

        thread, _ = run_in_background(worker)
        assert client.entered.wait(timeout=5)
        worker.start()
        timers.advance(0)
        client.gate.set()
        thread.join(timeout=5)

        assert client.calls == 1
        assert worker.state is SyncState.SCHEDULED


class TestSyncStatus:
    """Tests for get_sync_status()."""

    def test_initial_status(self, worker: SyncWorker) -> None:
        status = worker.get_sync_status()

        assert status == SyncStatus(
            is_online=True,
            pending_items=0,
            is_worker_running=False,
            last_sync=None,
            state=SyncState.IDLE,
            last_error=None,
        )

    def test_to_dict_shape(self, worker: SyncWorker, store: OutboxStore) -> None:
        store.enqueue("sales", "s1", "create", {})
        worker.start()

        assert worker.get_sync_status().to_dict() == {
            "isOnline": True,
            "pendingItems": 1,
            "isWorkerRunning": True,
            "lastSync": None,
            "state": "scheduled",
            "lastError": None,
        }

    def test_last_sync_recorded_on_success(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        timers: ManualTimers,
    ) -> None:
        store.enqueue("sales", "s1", "create", {})
        timers.advance(12)

        worker.sync_once()

        assert worker.get_sync_status().last_sync == "2025-01-01T09:00:12+00:00"
        assert worker.last_sync is not None
        assert worker.last_sync > EPOCH

    def test_failure_keeps_last_sync_and_reports_error(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
    ) -> None:
        store.enqueue("sales", "s1", "create", {})
        worker.sync_once()
        store.enqueue("sales", "s2", "create", {})
        client.fail = True

        worker.sync_once()
        status = worker.get_sync_status()

        assert status.last_sync is not None
        assert status.pending_items == 1
        assert status.last_error == "Failed to process sync batch"


class TestScenarios:
    """End-to-end scenarios with the manual clock."""

    def test_successful_remote_drains_and_purges(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        timers: ManualTimers,
    ) -> None:
        ids = enqueue_three(store)

        worker.start()
        timers.advance(0)

        assert [e.id for e in client.batches[0]] == ids
        assert store.list_unsynced() == []
        timers.advance(5)
        assert store.stats()["synced"] == 0

    def test_failing_remote_keeps_everything_pending(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        timers: ManualTimers,
    ) -> None:
        ids = enqueue_three(store)
        client.fail = True

        worker.start()
        timers.advance(0)
        timers.advance(90)

        assert client.calls == 4
        assert [e.id for e in store.list_unsynced()] == ids
        assert worker.get_sync_status().pending_items == 3

    def test_offline_before_first_fire(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        connectivity: ManualConnectivity,
        timers: ManualTimers,
    ) -> None:
        store.enqueue("sales", "s1", "create", {})
        worker.start()

        connectivity.go_offline()
        timers.advance(60)

        status = worker.get_sync_status()
        assert status.is_online is False
        assert status.pending_items == 1
        assert client.calls == 0

    def test_back_online_sends_pending_batch(
        self,
        worker: SyncWorker,
        store: OutboxStore,
        client: FakeBatchClient,
        connectivity: ManualConnectivity,
        timers: ManualTimers,
    ) -> None:
        connectivity.go_offline()
        worker.start()
        ids = [
            store.enqueue("sales", "s1", "create", {}),
            store.enqueue("sales", "s2", "create", {}),
        ]
        timers.advance(45)
        assert client.calls == 0

        connectivity.go_online()
        timers.advance(0)

        assert client.calls == 1
        assert [e.id for e in client.batches[0]] == ids


class TestWithHttpClient:
    """The worker driven by the real BatchClient against a mocked server."""

    @pytest.fixture
    def http_worker(
        self,
        store: OutboxStore,
        connectivity: ManualConnectivity,
        timers: ManualTimers,
    ) -> Generator[SyncWorker, None, None]:
        client = BatchClient(ServerConfig(server_url="http://test"))
        w = SyncWorker(store, client, connectivity, timers, clock=timers.clock)
        yield w
        w.close()
        client.close()

    def test_redirect_leaves_batch_pending(
        self,
        http_worker: SyncWorker,
        store: OutboxStore,
        httpx_mock,  # type: ignore[no-untyped-def]
    ) -> None:
        entry_id = store.enqueue("sales", "s1", "create", {"total": 80})
        httpx_mock.add_response(
            method="POST",
            url="http://test/api/sync/batch",
            status_code=307,
            headers={"Location": "https://test/api/sync/batch"},
        )

        result = http_worker.force_sync()

        assert result.outcome is SyncOutcome.FAILED
        assert [e.id for e in store.list_unsynced()] == [entry_id]
        assert http_worker.get_sync_status().last_error is not None

    def test_malformed_acknowledgment_still_counts(
        self,
        http_worker: SyncWorker,
        store: OutboxStore,
        httpx_mock,  # type: ignore[no-untyped-def]
    ) -> None:
        store.enqueue("sales", "s1", "create", {"total": 80})
        httpx_mock.add_response(
            method="POST",
            url="http://test/api/sync/batch",
            json={"processed": 1, "applied": None},
        )

        result = http_worker.force_sync()

        assert result == SyncResult(SyncOutcome.SUCCESS, sent=1)
        assert store.list_unsynced() == []
        assert http_worker.get_sync_status().last_error is None


class TestStaleConnectivityEvents:
    """Late online events never re-arm the timer while offline."""

    def test_online_event_after_going_offline_is_ignored(
        self,
        worker: SyncWorker,
        connectivity: ManualConnectivity,
        timers: ManualTimers,
    ) -> None:
        worker.start()
        connectivity.go_offline()

        # Delivered late, after the observer already reports offline
        worker._on_connectivity_change(True)

        assert worker.state is SyncState.OFFLINE
        assert not timers.is_scheduled(SYNC_JOB_ID)
