"""Server database using SQLAlchemy with SQLite.

This module provides:
- Idempotent application of outbox batches
- Current record state (latest payload per table/row)
- Sync statistics for the status endpoint
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from aushadisync.server.models import Base, SyncMutation, SyncRecord

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass
class IncomingMutation:
    """One entry of a batch, as received from a client."""

    id: str
    table_name: str
    row_id: str
    operation: str
    payload: str
    timestamp: str


@dataclass
class BatchOutcome:
    """Result of applying a batch."""

    processed: int
    applied: int
    duplicates: int


class Database:
    """SQLAlchemy database for received mutations.

    Uses SQLite with WAL mode for better concurrency with multiple readers.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # check_same_thread=False for multi-threaded access
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )

        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")

        Base.metadata.create_all(self._engine)

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine)

    # === Batch ingest ===

    def apply_batch(self, items: Sequence[IncomingMutation]) -> BatchOutcome:
        """Apply a batch of mutations in a single transaction.

        Mutations whose id was already received are skipped, so a client
        resending a batch after a lost acknowledgment changes nothing.
        Either every new mutation of the batch is stored or none is.

        Args:
            items: Mutations in the order the client enqueued them.

        Returns:
            Counts of processed, newly applied and duplicate mutations.
        """
        applied = 0
        duplicates = 0
        now = datetime.now(UTC)

        with self._session() as session, session.begin():
            seen: set[str] = set()
            for item in items:
                if item.id in seen or self._is_received(session, item.id):
                    duplicates += 1
                    continue
                seen.add(item.id)

                session.add(
                    SyncMutation(
                        id=item.id,
                        table_name=item.table_name,
                        row_id=item.row_id,
                        operation=item.operation,
                        payload=item.payload,
                        client_timestamp=item.timestamp,
                        received_at=now,
                    )
                )
                self._apply_to_record(session, item, now)
                applied += 1

        if applied:
            logger.info(
                "Applied %d mutations (%d duplicates ignored)", applied, duplicates
            )
        return BatchOutcome(processed=len(items), applied=applied, duplicates=duplicates)

    def _is_received(self, session: Session, mutation_id: str) -> bool:
        stmt = select(SyncMutation.seq).where(SyncMutation.id == mutation_id)
        return session.scalar(stmt) is not None

    def _apply_to_record(
        self, session: Session, item: IncomingMutation, now: datetime
    ) -> None:
        record = session.get(SyncRecord, (item.table_name, item.row_id))
        if record is None:
            record = SyncRecord(table_name=item.table_name, row_id=item.row_id)
            session.add(record)

        if item.operation == "delete":
            record.deleted = True
            if record.payload is None:
                record.payload = item.payload
        else:
            record.deleted = False
            record.payload = item.payload
        record.last_mutation_id = item.id
        record.updated_at = now
        session.flush()

    # === Queries ===

    def get_record(self, table_name: str, row_id: str) -> SyncRecord | None:
        """Get the current state of a record.

        Returns:
            SyncRecord if any mutation touched it, None otherwise.
        """
        with self._session() as session:
            record = session.get(SyncRecord, (table_name, row_id))
            if record:
                session.expunge(record)
            return record

    def list_mutations(self, table_name: str | None = None) -> list[SyncMutation]:
        """List received mutations in arrival order."""
        with self._session() as session:
            stmt = select(SyncMutation).order_by(SyncMutation.seq)
            if table_name:
                stmt = stmt.where(SyncMutation.table_name == table_name)
            mutations = list(session.scalars(stmt).all())
            for mutation in mutations:
                session.expunge(mutation)
            return mutations

    def count_mutations(self) -> int:
        with self._session() as session:
            return session.scalar(select(func.count()).select_from(SyncMutation)) or 0

    def get_last_received_at(self) -> datetime | None:
        """Get the arrival time of the most recent mutation."""
        with self._session() as session:
            latest = session.scalar(select(func.max(SyncMutation.received_at)))
        if latest is not None and latest.tzinfo is None:
            # SQLite drops the offset
            latest = latest.replace(tzinfo=UTC)
        return latest
