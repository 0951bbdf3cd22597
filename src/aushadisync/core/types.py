"""Shared types for aushadisync.

This module defines types and enums used by both client and server.
"""

from __future__ import annotations

from enum import Enum


class SyncState(str, Enum):
    """State of the background sync worker.

    IDLE is the initial state and the state after an explicit stop.
    """

    IDLE = "idle"
    SCHEDULED = "scheduled"
    SYNCING = "syncing"
    OFFLINE = "offline"


class Operation(str, Enum):
    """Kind of mutation recorded in the outbox."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
