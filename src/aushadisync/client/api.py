"""HTTP client for the remote batch-ingest endpoint.

This module provides:
- BatchClient: HTTP client for pushing outbox batches to the server
- BatchResult / RemoteSyncStatus: parsed server responses
- APIError hierarchy for non-success responses

Transport failures (connection refused, DNS, timeouts) are raised as
httpx.HTTPError subclasses; the sync worker treats both those and
APIError as "batch not acknowledged".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from collections.abc import Sequence

    from aushadisync.client.outbox import OutboxEntry
    from aushadisync.core.config import ServerConfig

logger = logging.getLogger(__name__)

BATCH_PATH = "/api/sync/batch"
STATUS_PATH = "/api/sync/status"
HEALTH_PATH = "/health"


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication failed."""


class NotFoundError(APIError):
    """Resource not found."""


def _as_count(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class BatchResult:
    """Acknowledgment of a batch by the server."""

    processed: int
    applied: int
    duplicates: int
    message: str

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_processed: int = 0) -> BatchResult:
        """Create from API response dictionary.

        Missing, null or non-numeric counts fall back to defaults: the
        status code is the acknowledgment, the counts are informational.
        """
        processed = _as_count(data.get("processed"), default_processed)
        message = data.get("message")
        return cls(
            processed=processed,
            applied=_as_count(data.get("applied"), processed),
            duplicates=_as_count(data.get("duplicates"), 0),
            message=message if isinstance(message, str) else "",
        )


@dataclass
class RemoteSyncStatus:
    """Server-side view of the sync pipeline."""

    received_items: int
    last_sync: datetime | None
    online: bool

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteSyncStatus:
        """Create from API response dictionary."""
        return cls(
            received_items=int(data.get("receivedItems", 0)),
            last_sync=(
                datetime.fromisoformat(data["lastSync"])
                if data.get("lastSync")
                else None
            ),
            online=bool(data.get("online", True)),
        )


def _error_detail(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or default
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or default)
    return default


class BatchClient:
    """HTTP client for the sync endpoints of the server."""

    def __init__(self, config: ServerConfig) -> None:
        """Initialize the client.

        Args:
            config: Server configuration with URL, optional token and settings.
        """
        self._config = config
        self._client = httpx.Client(
            base_url=config.server_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers=config.headers,
        )

    @property
    def server_url(self) -> str:
        return self._config.server_url

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> BatchClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            raise AuthenticationError("Invalid or expired token", 401)
        if response.status_code == 404:
            raise NotFoundError("Resource not found", 404)
        if response.status_code >= 400:
            raise APIError(_error_detail(response, "Unknown error"), response.status_code)
        if not response.is_success:
            # Redirects are not followed: the request never reached the endpoint
            raise APIError(
                f"Unexpected response: {response.status_code} {response.reason_phrase}",
                response.status_code,
            )
        return response

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the server is reachable and healthy.

        Returns:
            True if server is healthy.
        """
        try:
            response = self._client.get(HEALTH_PATH)
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    # === Sync operations ===

    def send_batch(self, entries: Sequence[OutboxEntry]) -> BatchResult:
        """Push a batch of outbox entries.

        The server acknowledges or rejects the whole batch.

        Args:
            entries: Entries to send, in the order they were enqueued.

        Returns:
            Parsed acknowledgment.

        Raises:
            APIError: If the server rejects the batch.
            httpx.HTTPError: On transport failure.
        """
        response = self._handle_response(
            self._client.post(
                BATCH_PATH,
                json={"items": [entry.to_dict() for entry in entries]},
            )
        )
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        return BatchResult.from_dict(data, default_processed=len(entries))

    def get_remote_status(self) -> RemoteSyncStatus:
        """Get the server-side sync status."""
        response = self._handle_response(self._client.get(STATUS_PATH))
        return RemoteSyncStatus.from_dict(response.json())
