"""Pydantic schemas for API request/response models.

Field names follow the camelCase wire format used by the clients.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from aushadisync.server.database import IncomingMutation

# === Sync schemas ===


class OutboxItem(BaseModel):
    """One outbox entry inside a batch."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1, max_length=64)
    table_name: str = Field(alias="tableName", min_length=1, max_length=100)
    row_id: str = Field(alias="rowId", min_length=1, max_length=255)
    operation: Literal["create", "update", "delete"]
    payload: str
    timestamp: str
    synced: bool = False

    def to_mutation(self) -> IncomingMutation:
        return IncomingMutation(
            id=self.id,
            table_name=self.table_name,
            row_id=self.row_id,
            operation=self.operation,
            payload=self.payload,
            timestamp=self.timestamp,
        )


class BatchRequest(BaseModel):
    """Request body for batch sync."""

    items: list[OutboxItem]


class BatchResponse(BaseModel):
    """Acknowledgment of a whole batch."""

    processed: int
    applied: int
    duplicates: int
    message: str


class SyncStatusResponse(BaseModel):
    """Server-side sync status."""

    model_config = ConfigDict(populate_by_name=True)

    received_items: int = Field(serialization_alias="receivedItems")
    last_sync: str | None = Field(serialization_alias="lastSync")
    online: bool = True


# === Health schema ===


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
