"""Multi-device sync coordination.

Architecture:
    DeviceRegistry → SyncCoordinator ← OfflineQueue
                          │
                 resolve_conflict → SyncStore
                          │
                  NotificationSink

Components:
- **resolve_conflict**: Pure strategy table (last/first-write-wins, server/client-wins, merge)
- **OfflineQueue**: FIFO of changes made offline, drained with bounded retries
- **DeviceRegistry**: Device identity and status hints; registration drains the queue
- **SyncCoordinator**: Versioned, conflict-resolving entity sync
- **ConflictHistory**: Bounded per-entity record of resolved conflicts
- **SyncStore**: Persistence port (InMemoryStore here, Database in the server)
"""

from devicesync.sync.conflicts import (
    FALLBACK_STRATEGY,
    ConflictInput,
    ConflictResult,
    default_strategy,
    has_conflict,
    merge_payloads,
    normalize_strategy,
    resolve_conflict,
)
from devicesync.sync.coordinator import SyncCoordinator
from devicesync.sync.history import ConflictHistory, ConflictRecord
from devicesync.sync.notifier import (
    DEVICE_STATUS,
    QUEUE_PROCESSED,
    SYNC_COMPLETE,
    NotificationSink,
    NullNotificationSink,
    SyncEvent,
)
from devicesync.sync.queue import OfflineQueue
from devicesync.sync.registry import DeviceRegistry
from devicesync.sync.store import InMemoryStore, SyncStore
from devicesync.sync.types import (
    Device,
    DrainResult,
    QueuedOperation,
    QueueStatus,
    SyncRequest,
    SyncResult,
    SyncStatus,
    SyncStatusInfo,
)

__all__ = [
    # Conflicts
    "FALLBACK_STRATEGY",
    "ConflictInput",
    "ConflictResult",
    "default_strategy",
    "has_conflict",
    "merge_payloads",
    "normalize_strategy",
    "resolve_conflict",
    # History
    "ConflictHistory",
    "ConflictRecord",
    # Notification
    "DEVICE_STATUS",
    "QUEUE_PROCESSED",
    "SYNC_COMPLETE",
    "NotificationSink",
    "NullNotificationSink",
    "SyncEvent",
    # Services
    "DeviceRegistry",
    "OfflineQueue",
    "SyncCoordinator",
    # Storage
    "InMemoryStore",
    "SyncStore",
    # Types
    "Device",
    "DrainResult",
    "QueuedOperation",
    "QueueStatus",
    "SyncRequest",
    "SyncResult",
    "SyncStatus",
    "SyncStatusInfo",
]
