"""Core module - Shared settings, enums and errors."""

from devicesync.core.config import SyncSettings
from devicesync.core.errors import (
    DeviceSyncError,
    NotFoundError,
    QueueFullError,
    ValidationError,
    VersionConflictError,
)
from devicesync.core.types import (
    ConflictStrategy,
    DeviceStatus,
    EntityType,
    OperationType,
    WinningSource,
)

__all__ = [
    # Config
    "SyncSettings",
    # Errors
    "DeviceSyncError",
    "NotFoundError",
    "QueueFullError",
    "ValidationError",
    "VersionConflictError",
    # Types
    "ConflictStrategy",
    "DeviceStatus",
    "EntityType",
    "OperationType",
    "WinningSource",
]
