"""Sync API routes: batch ingest and status.

Clients push their whole outbox as one batch. The batch is acknowledged
or rejected as a unit; entries are applied idempotently by id, so a
client replaying a batch after a lost acknowledgment is harmless.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from aushadisync.server.api.deps import get_db
from aushadisync.server.database import Database
from aushadisync.server.schemas import BatchRequest, BatchResponse, SyncStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.post("/batch", response_model=BatchResponse)
def sync_batch(
    request: BatchRequest,
    db: Database = Depends(get_db),
) -> BatchResponse:
    """Apply a batch of outbox entries.

    Returns:
        BatchResponse with processed, applied and duplicate counts.

    Raises:
        HTTPException: 500 if the batch could not be stored (nothing applied).
    """
    try:
        outcome = db.apply_batch([item.to_mutation() for item in request.items])
    except SQLAlchemyError as e:
        logger.exception("Failed to process sync batch of %d items", len(request.items))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process sync batch",
        ) from e

    return BatchResponse(
        processed=outcome.processed,
        applied=outcome.applied,
        duplicates=outcome.duplicates,
        message="Batch sync completed successfully",
    )


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(db: Database = Depends(get_db)) -> SyncStatusResponse:
    """Get the server-side sync status."""
    try:
        received = db.count_mutations()
        last = db.get_last_received_at()
    except SQLAlchemyError as e:
        logger.exception("Failed to get sync status")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get sync status",
        ) from e

    return SyncStatusResponse(
        received_items=received,
        last_sync=last.isoformat() if last else None,
        online=True,
    )
