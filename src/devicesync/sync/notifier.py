"""Notification port for sync outcomes.

The coordinator reports what happened through a NotificationSink. Delivery
is fire-and-forget: a sink must return quickly and must not make the sync
that triggered it fail. The coordinator still guards every call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from devicesync.sync.types import utcnow

SYNC_COMPLETE = "sync-complete"
QUEUE_PROCESSED = "queue-processed"
DEVICE_STATUS = "device-status"


@dataclass(frozen=True)
class SyncEvent:
    """One notification addressed to all connected clients of a user."""

    user_id: str
    name: str
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict (the wire message)."""
        return {
            "type": self.name,
            "user_id": self.user_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


class NotificationSink(Protocol):
    """Protocol for delivering sync events to connected clients."""

    def send_sync_event(self, event: SyncEvent) -> None:
        """Deliver an event without blocking the caller."""
        ...


class NullNotificationSink:
    """Sink that discards every event."""

    def send_sync_event(self, event: SyncEvent) -> None:
        return None
