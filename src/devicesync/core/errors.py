"""Error taxonomy for the sync core.

Each error maps onto one transport status code in the HTTP layer:

- ValidationError -> 400
- NotFoundError -> 404
- QueueFullError -> 429
- VersionConflictError -> 409 (only after the coordinator gives up retrying)
- anything else -> 500
"""

from __future__ import annotations


class DeviceSyncError(Exception):
    """Base class for all devicesync errors."""


class ValidationError(DeviceSyncError):
    """Raised when a required field is missing or malformed.

    Raised before any state is mutated. Never retried automatically.
    """


class NotFoundError(DeviceSyncError):
    """Raised when an explicitly requested device or entity does not exist."""


class QueueFullError(DeviceSyncError):
    """Raised by enqueue when the offline queue is at capacity."""

    def __init__(self, max_size: int) -> None:
        super().__init__(f"Sync queue full (max {max_size})")
        self.max_size = max_size


class VersionConflictError(DeviceSyncError):
    """Raised by a store when a compare-and-swap on an entity version fails."""

    def __init__(self, key: tuple[str, str, str], expected: int, actual: int) -> None:
        super().__init__(
            f"Version conflict on {'/'.join(key)}: "
            f"expected version {expected}, but current version is {actual}"
        )
        self.key = key
        self.expected = expected
        self.actual = actual
