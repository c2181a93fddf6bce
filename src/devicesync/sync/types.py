"""Shared types and dataclasses for sync operations.

This module provides:
- Device: Registry record for one client device
- SyncStatus, SyncStatusInfo: Stored state of one entity and its read projection
- SyncRequest, SyncResult: Input and output of SyncCoordinator.sync_entity
- QueuedOperation: Pending offline change held by the OfflineQueue
- DrainResult, QueueStatus: Queue processing results
- Type aliases for handlers and hooks
"""

from __future__ import annotations

import copy
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from devicesync.core.types import ConflictStrategy, DeviceStatus, OperationType

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

Payload = dict[str, Any]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Return an aware datetime, assuming UTC for naive values."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def entity_key(user_id: str, entity_type: str, entity_id: str) -> tuple[str, str, str]:
    """Unique key of a SyncStatus row."""
    return (user_id, entity_type, entity_id)


@dataclass
class Device:
    """A client device known to the registry.

    Attributes:
        device_id: Globally unique, client-generated identifier.
        user_id: Owner of the device (immutable after creation).
        display_name: Optional human-readable name.
        kind: Optional device kind (desktop, mobile, tablet...).
        user_agent: Optional user agent string reported at registration.
        status: Last known status hint.
        last_seen_at: Last registration, heartbeat or status change.
        last_sync_at: Last accepted sync from this device.
        created_at: First registration time.
    """

    device_id: str
    user_id: str
    display_name: str | None = None
    kind: str | None = None
    user_agent: str | None = None
    status: DeviceStatus = DeviceStatus.ONLINE
    last_seen_at: datetime = field(default_factory=utcnow)
    last_sync_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "device_id": self.device_id,
            "user_id": self.user_id,
            "display_name": self.display_name,
            "kind": self.kind,
            "user_agent": self.user_agent,
            "status": self.status.value,
            "last_seen_at": self.last_seen_at.isoformat(),
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class SyncStatus:
    """Server-side state of one entity for one user.

    The version starts at 1 on the first accepted sync and grows by exactly
    one on every accepted sync, whether or not a conflict was resolved.
    """

    user_id: str
    entity_type: str
    entity_id: str
    version: int
    last_modified_at: datetime
    last_modified_by_device_id: str
    payload: Payload = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str, str]:
        """Unique (user_id, entity_type, entity_id) key."""
        return entity_key(self.user_id, self.entity_type, self.entity_id)


@dataclass(frozen=True)
class SyncStatusInfo:
    """Read-only projection of a SyncStatus row."""

    entity_type: str
    entity_id: str
    version: int
    last_modified_at: datetime
    last_modified_by_device_id: str
    payload: Payload

    @classmethod
    def from_status(cls, status: SyncStatus) -> SyncStatusInfo:
        """Project a stored status, detaching the payload."""
        return cls(
            entity_type=status.entity_type,
            entity_id=status.entity_id,
            version=status.version,
            last_modified_at=status.last_modified_at,
            last_modified_by_device_id=status.last_modified_by_device_id,
            payload=copy.deepcopy(status.payload),
        )


@dataclass
class SyncRequest:
    """Client state submitted for one entity.

    Attributes:
        user_id: Pre-authenticated owner.
        device_id: Submitting device.
        entity_type: Kind of entity (see EntityType; other strings allowed).
        entity_id: Entity identifier, unique per user and type.
        version: Server version the client last saw (0 for a new entity).
        payload: Full client-side state of the entity.
        updated_at: When the client changed the entity (defaults to now).
    """

    user_id: str
    device_id: str
    entity_type: str
    entity_id: str
    version: int
    payload: Payload = field(default_factory=dict)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class SyncResult:
    """Outcome of an accepted sync."""

    success: bool
    version: int
    last_modified_at: datetime
    payload: Payload
    conflict_resolved: bool
    strategy: ConflictStrategy
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "success": self.success,
            "version": self.version,
            "last_modified_at": self.last_modified_at.isoformat(),
            "payload": self.payload,
            "conflict_resolved": self.conflict_resolved,
            "strategy": self.strategy.value,
            "message": self.message,
        }


@dataclass
class QueuedOperation:
    """A change that could not be applied while its device was offline.

    Owned by the OfflineQueue; handlers only read it.
    """

    id: str
    user_id: str
    device_id: str
    entity_type: str
    entity_id: str
    operation: OperationType
    version: int
    payload: Payload | None = None
    queued_at: datetime = field(default_factory=utcnow)
    retry_count: int = 0
    last_error: str | None = None

    @property
    def ordering_key(self) -> tuple[str, str, str, str]:
        """Items sharing this key must be applied in enqueue order."""
        return (self.user_id, self.device_id, self.entity_type, self.entity_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "device_id": self.device_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "operation": self.operation.value,
            "version": self.version,
            "payload": self.payload,
            "queued_at": self.queued_at.isoformat(),
            "retry_count": self.retry_count,
            "last_error": self.last_error,
        }


@dataclass
class DrainResult:
    """Counts from one queue drain.

    Attributes:
        processed: Items applied and removed.
        failed: Handler invocations that raised (kept or dropped).
        dropped: Failed items removed after exhausting their retries.
    """

    processed: int = 0
    failed: int = 0
    dropped: int = 0


@dataclass(frozen=True)
class QueueStatus:
    """Snapshot of the offline queue."""

    pending_count: int
    is_processing: bool


# Type aliases for injected callables
ProcessHandler = Callable[[QueuedOperation], Awaitable[None]]
DeviceOnlineHook = Callable[[str, str], Awaitable[Any]]
Clock = Callable[[], datetime]
