"""Shared types for devicesync.

This module defines the enums used by the sync core, the store backends
and the HTTP layer.
"""

from __future__ import annotations

from enum import Enum


class DeviceStatus(str, Enum):
    """Status hint of a registered device.

    The registry never probes the network, so this is eventually
    consistent: a device may be ONLINE while actually disconnected.
    """

    ONLINE = "online"
    OFFLINE = "offline"
    SYNCING = "syncing"
    ERROR = "error"


class EntityType(str, Enum):
    """Known kinds of user-owned entities."""

    PROGRESS = "progress"
    PREFERENCES = "preferences"
    COURSE_STATE = "course_state"
    NOTES = "notes"
    GENERIC = "generic"


class ConflictStrategy(str, Enum):
    """Named rule used to pick a winner between conflicting payloads."""

    LAST_WRITE_WINS = "last-write-wins"
    FIRST_WRITE_WINS = "first-write-wins"
    SERVER_WINS = "server-wins"
    CLIENT_WINS = "client-wins"
    MERGE = "merge"


class WinningSource(str, Enum):
    """Which side's payload ended up persisted."""

    SERVER = "server"
    CLIENT = "client"
    MERGED = "merged"


class OperationType(str, Enum):
    """Kind of change held in the offline queue."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
