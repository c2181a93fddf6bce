"""Bounded in-memory history of resolved conflicts.

Conflicts are transient resolution outcomes, not a persisted status. The
history keeps the last few records per entity so that a lost or overridden
client change can be reconciled by hand.
"""

from __future__ import annotations

import copy
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from devicesync.core.types import ConflictStrategy, WinningSource
from devicesync.sync.conflicts import ConflictInput, ConflictResult
from devicesync.sync.types import Payload, entity_key


@dataclass(frozen=True)
class ConflictRecord:
    """A resolved conflict for one entity."""

    entity_type: str
    entity_id: str
    device_id: str
    server_version: int
    client_version: int
    server_payload: Payload
    client_payload: Payload
    strategy: ConflictStrategy
    resolved_payload: Payload
    winning_source: WinningSource
    detected_at: datetime

    @classmethod
    def from_resolution(
        cls,
        conflict: ConflictInput,
        result: ConflictResult,
        detected_at: datetime,
    ) -> ConflictRecord:
        """Build a record from the inputs and outcome of a resolution."""
        return cls(
            entity_type=conflict.entity_type,
            entity_id=conflict.entity_id,
            device_id=conflict.device_id,
            server_version=conflict.server_version,
            client_version=conflict.client_version,
            server_payload=copy.deepcopy(conflict.server_payload),
            client_payload=copy.deepcopy(conflict.client_payload),
            strategy=result.strategy,
            resolved_payload=copy.deepcopy(result.payload),
            winning_source=result.winning_source,
            detected_at=detected_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "device_id": self.device_id,
            "server_version": self.server_version,
            "client_version": self.client_version,
            "server_payload": self.server_payload,
            "client_payload": self.client_payload,
            "strategy": self.strategy.value,
            "resolved_payload": self.resolved_payload,
            "winning_source": self.winning_source.value,
            "detected_at": self.detected_at.isoformat(),
        }


class ConflictHistory:
    """Keeps the last ``max_per_entity`` conflict records of each entity.

    A size of 0 disables recording.
    """

    def __init__(self, max_per_entity: int = 10) -> None:
        self._max = max_per_entity
        self._records: dict[tuple[str, str, str], deque[ConflictRecord]] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._max > 0

    def record(self, user_id: str, record: ConflictRecord) -> None:
        if not self.enabled:
            return
        key = entity_key(user_id, record.entity_type, record.entity_id)
        with self._lock:
            bucket = self._records.get(key)
            if bucket is None:
                bucket = deque(maxlen=self._max)
                self._records[key] = bucket
            bucket.append(record)

    def get(self, user_id: str, entity_type: str, entity_id: str) -> list[ConflictRecord]:
        """Records for one entity, oldest first."""
        with self._lock:
            return list(self._records.get(entity_key(user_id, entity_type, entity_id), ()))

    def for_user(self, user_id: str) -> list[ConflictRecord]:
        """All records of a user, most recent first."""
        with self._lock:
            records = [
                record
                for key, bucket in self._records.items()
                if key[0] == user_id
                for record in bucket
            ]
        return sorted(records, key=lambda r: r.detected_at, reverse=True)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
