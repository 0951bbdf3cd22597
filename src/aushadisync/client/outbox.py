"""Durable outbox of local mutations waiting to reach the server.

This module provides:
- OutboxEntry: One pending mutation (sale, stock adjustment, product edit)
- OutboxStore: SQLite-backed FIFO store of entries

Lifecycle of an entry:
    enqueue() -> synced=False -> mark_synced() -> synced=True -> purge

Entries are never modified except for the synced flag. Purge only
deletes synced rows and enqueue only creates unsynced rows, so enqueue,
drain and purge can interleave freely.

Failure semantics:
    Every sqlite3.Error is caught and logged. Reads fall back to an empty
    result and writes become no-ops, so callers treat "no data" and
    "storage failure" the same way and the next sync cycle simply retries.
    Data integrity on storage failure is not guaranteed beyond not
    crashing the caller.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from aushadisync.core.config import DEFAULT_PURGE_DELAY
from aushadisync.core.types import Operation

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from aushadisync.client.timers import TimerSource

logger = logging.getLogger(__name__)

PURGE_JOB_ID = "outbox-purge"


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class OutboxEntry:
    """A mutation recorded locally, waiting for remote acknowledgment.

    Attributes:
        id: Unique entry id generated at enqueue time.
        table_name: Logical target collection ("sales", "stock", ...).
        row_id: Identifier of the affected record.
        operation: create, update or delete.
        payload: JSON text snapshot of the mutation.
        timestamp: Creation time (ISO 8601).
        synced: True once the server acknowledged the batch holding it.
    """

    id: str
    table_name: str
    row_id: str
    operation: Operation
    payload: str
    timestamp: str
    synced: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> OutboxEntry:
        """Create OutboxEntry from database row."""
        return cls(
            id=row["id"],
            table_name=row["table_name"],
            row_id=row["row_id"],
            operation=Operation(row["operation"]),
            payload=row["payload"],
            timestamp=row["timestamp"],
            synced=bool(row["synced"]),
        )

    @property
    def data(self) -> Any:
        """Decoded payload."""
        return json.loads(self.payload)

    def to_dict(self) -> dict[str, Any]:
        """Wire representation sent to the batch endpoint."""
        return {
            "id": self.id,
            "tableName": self.table_name,
            "rowId": self.row_id,
            "operation": self.operation.value,
            "payload": self.payload,
            "timestamp": self.timestamp,
            "synced": self.synced,
        }

    def __repr__(self) -> str:
        return (
            f"OutboxEntry({self.operation.value} {self.table_name}/{self.row_id}, "
            f"id={self.id[:8]}, synced={self.synced})"
        )


class OutboxStore:
    """SQLite-backed outbox.

    Thread-safe: all database access goes through a single RLock, and the
    connection runs in autocommit mode with WAL enabled.
    """

    def __init__(
        self,
        db_path: Path,
        timers: TimerSource | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Open (or create) the outbox database.

        Args:
            db_path: Path to SQLite database file.
            timers: Timer source used for the deferred purge. Without one,
                schedule_purge() purges right away.
            clock: Returns the current time, used for entry timestamps.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._timers = timers
        self._clock = clock

        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS outbox (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                table_name TEXT NOT NULL,
                row_id TEXT NOT NULL,
                operation TEXT NOT NULL,
                payload TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                synced INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_outbox_synced ON outbox (synced, seq);
        """)

    @property
    def path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Cancel the pending purge and close the database connection."""
        self.cancel_purge()
        with self._lock:
            self._conn.close()

    # === Queue operations ===

    def enqueue(
        self,
        table_name: str,
        row_id: str,
        operation: Operation | str,
        payload: Any,
    ) -> str:
        """Record a local mutation.

        Args:
            table_name: Logical target collection.
            row_id: Identifier of the affected record.
            operation: create, update or delete.
            payload: Mutation data; serialized to JSON text.

        Returns:
            The new entry id.

        Raises:
            ValueError: If operation is not a known tag.
        """
        operation = Operation(operation)
        entry_id = uuid.uuid4().hex
        timestamp = self._clock().isoformat()
        serialized = json.dumps(payload, default=str)

        try:
            with self._lock:
                self._conn.execute(
                    """
                    INSERT INTO outbox (id, table_name, row_id, operation, payload, timestamp, synced)
                    VALUES (?, ?, ?, ?, ?, ?, 0)
                    """,
                    (entry_id, table_name, str(row_id), operation.value, serialized, timestamp),
                )
        except sqlite3.Error:
            logger.exception("Failed to persist outbox entry for %s/%s", table_name, row_id)
            return entry_id

        logger.debug("Enqueued %s %s/%s (id=%s)", operation.value, table_name, row_id, entry_id)
        return entry_id

    def list_unsynced(self) -> list[OutboxEntry]:
        """List all entries waiting for acknowledgment, oldest first."""
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT * FROM outbox WHERE synced = 0 ORDER BY seq"
                ).fetchall()
        except sqlite3.Error:
            logger.exception("Failed to read outbox")
            return []
        return [OutboxEntry.from_row(row) for row in rows]

    def get(self, entry_id: str) -> OutboxEntry | None:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT * FROM outbox WHERE id = ?", (entry_id,)
                ).fetchone()
        except sqlite3.Error:
            logger.exception("Failed to read outbox entry %s", entry_id)
            return None
        return OutboxEntry.from_row(row) if row else None

    def mark_synced(self, entry_id: str) -> None:
        """Flag one entry as acknowledged. Unknown or synced ids are ignored."""
        self.mark_all_synced([entry_id])

    def mark_all_synced(self, entry_ids: Iterable[str]) -> int:
        """Flag a whole batch as acknowledged in one transaction.

        Returns:
            Number of entries that changed from unsynced to synced.
        """
        ids = [(entry_id,) for entry_id in entry_ids]
        if not ids:
            return 0

        try:
            with self._lock:
                before = self._conn.total_changes
                self._conn.execute("BEGIN")
                try:
                    self._conn.executemany(
                        "UPDATE outbox SET synced = 1 WHERE id = ? AND synced = 0",
                        ids,
                    )
                    self._conn.execute("COMMIT")
                except sqlite3.Error:
                    # A failed COMMIT leaves the transaction open
                    if self._conn.in_transaction:
                        self._conn.execute("ROLLBACK")
                    raise
                changed = self._conn.total_changes - before
        except sqlite3.Error:
            logger.exception("Failed to mark %d outbox entries synced", len(ids))
            return 0

        logger.debug("Marked %d/%d outbox entries synced", changed, len(ids))
        return changed

    def clear_synced(self) -> int:
        """Delete acknowledged entries. Never touches unsynced entries.

        Returns:
            Number of entries deleted.
        """
        try:
            with self._lock:
                cursor = self._conn.execute("DELETE FROM outbox WHERE synced = 1")
                deleted = cursor.rowcount
        except sqlite3.Error:
            logger.exception("Failed to purge synced outbox entries")
            return 0

        if deleted > 0:
            logger.info("Purged %d synced outbox entries", deleted)
        return deleted

    # === Deferred purge ===

    def schedule_purge(self, delay: float = DEFAULT_PURGE_DELAY) -> None:
        """Purge synced entries after a grace delay.

        Re-arming before the delay elapses replaces the pending purge.
        """
        if self._timers is None or delay <= 0:
            self.clear_synced()
            return
        self._timers.call_later(PURGE_JOB_ID, delay, self._purge_job)

    def cancel_purge(self) -> bool:
        """Cancel the pending purge, if any."""
        if self._timers is None:
            return False
        return self._timers.cancel(PURGE_JOB_ID)

    def _purge_job(self) -> None:
        try:
            self.clear_synced()
        except Exception:
            logger.exception("Error during scheduled outbox purge")

    # === Statistics ===

    def count_unsynced(self) -> int:
        return self.stats()["unsynced"]

    def stats(self) -> dict[str, int]:
        """Get outbox statistics.

        Returns:
            Dictionary with total, unsynced and synced counts.
        """
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT COUNT(*) AS total, COALESCE(SUM(synced), 0) AS synced FROM outbox"
                ).fetchone()
        except sqlite3.Error:
            logger.exception("Failed to read outbox statistics")
            return {"total": 0, "unsynced": 0, "synced": 0}
        return {
            "total": row["total"],
            "unsynced": row["total"] - row["synced"],
            "synced": row["synced"],
        }

    def __len__(self) -> int:
        """Number of entries waiting for acknowledgment."""
        return self.count_unsynced()
