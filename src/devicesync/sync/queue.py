"""Offline operation queue with retry.

This module provides:
- OfflineQueue: FIFO queue of changes made while a device was offline,
  drained sequentially through an injected handler

Drain rules:
- Items are applied one at a time in enqueue order; the handler of one item
  is awaited before the next starts.
- On success the item is removed.
- On failure retry_count is incremented and last_error recorded. Once
  retry_count reaches max_retries the item is dropped and logged as a lost
  update; otherwise it stays at its position and is retried on the next
  drain. A fixed delay is awaited after every failure.
- A failed item that stays in the queue blocks the later items of the same
  (user, device, entity type, entity id) for the rest of the pass, so those
  can never be applied out of order. Other entities keep draining.
- Two drains never run at the same time; a concurrent call returns an empty
  result.

Persistence (SQLite):
    The queue supports optional SQLite persistence so pending changes
    survive a restart. Each operation (enqueue/update/remove) commits
    immediately. Items are reloaded in their original order.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import json
import logging
import sqlite3
import threading
import time
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from devicesync.core.errors import QueueFullError
from devicesync.sync.types import (
    DrainResult,
    Payload,
    ProcessHandler,
    QueuedOperation,
    utcnow,
)
from devicesync.sync.validation import (
    coerce_operation,
    require_payload,
    require_text,
    require_version,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds
DEFAULT_MAX_QUEUE_SIZE = 1000


class OfflineQueue:
    """Queue of pending offline operations.

    Thread-safe for enqueue and inspection; drains are coroutines and are
    serialized by the processing flag.

    Attributes:
        max_retries: Processing attempts before an item is dropped.
        retry_delay: Seconds awaited after each failed item.
        max_queue_size: Length at which enqueue raises QueueFullError.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
        persistence_path: Path | None = None,
    ) -> None:
        """Initialize the queue.

        Args:
            max_retries: Processing attempts before an item is dropped.
            retry_delay: Seconds to wait after a failed item.
            max_queue_size: Maximum number of pending items.
            persistence_path: Optional path to SQLite DB for persistence.
        """
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_queue_size = max_queue_size
        self._lock = threading.RLock()
        self._items: list[QueuedOperation] = []
        self._handler: ProcessHandler | None = None
        self._processing = False
        self._counter = itertools.count(1)
        self._persistence_path = persistence_path
        self._db: sqlite3.Connection | None = None

        if persistence_path:
            self._init_persistence()
            self._load_from_persistence()

    # === Persistence ===

    def _init_persistence(self) -> None:
        """Initialize SQLite database for persistence."""
        if not self._persistence_path:
            return

        self._persistence_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(
            str(self._persistence_path),
            check_same_thread=False,
        )
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("""
            CREATE TABLE IF NOT EXISTS offline_queue (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT UNIQUE NOT NULL,
                user_id TEXT NOT NULL,
                device_id TEXT NOT NULL,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                operation TEXT NOT NULL,
                version INTEGER NOT NULL,
                payload TEXT,
                queued_at TEXT NOT NULL,
                retry_count INTEGER NOT NULL DEFAULT 0,
                last_error TEXT
            )
        """)
        self._db.commit()
        logger.debug("Initialized offline queue persistence at %s", self._persistence_path)

    def _load_from_persistence(self) -> None:
        """Load pending items from SQLite on startup."""
        if not self._db:
            return

        cursor = self._db.execute(
            "SELECT id, user_id, device_id, entity_type, entity_id, operation, version, "
            "payload, queued_at, retry_count, last_error FROM offline_queue ORDER BY seq"
        )
        for row in cursor:
            (item_id, user_id, device_id, entity_type, entity_id, operation,
             version, payload_json, queued_at, retry_count, last_error) = row
            self._items.append(
                QueuedOperation(
                    id=item_id,
                    user_id=user_id,
                    device_id=device_id,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    operation=coerce_operation(operation),
                    version=version,
                    payload=json.loads(payload_json) if payload_json is not None else None,
                    queued_at=datetime.fromisoformat(queued_at),
                    retry_count=retry_count,
                    last_error=last_error,
                )
            )

        if self._items:
            logger.info("Loaded %d pending operations from persistence", len(self._items))

    def _persist_item(self, item: QueuedOperation) -> None:
        if not self._db:
            return

        self._db.execute(
            """
            INSERT INTO offline_queue
            (id, user_id, device_id, entity_type, entity_id, operation, version,
             payload, queued_at, retry_count, last_error)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item.id,
                item.user_id,
                item.device_id,
                item.entity_type,
                item.entity_id,
                item.operation.value,
                item.version,
                json.dumps(item.payload) if item.payload is not None else None,
                item.queued_at.isoformat(),
                item.retry_count,
                item.last_error,
            ),
        )
        self._db.commit()

    def _persist_retry(self, item: QueuedOperation) -> None:
        if not self._db:
            return

        self._db.execute(
            "UPDATE offline_queue SET retry_count = ?, last_error = ? WHERE id = ?",
            (item.retry_count, item.last_error, item.id),
        )
        self._db.commit()

    def _remove_from_persistence(self, item_id: str) -> None:
        if not self._db:
            return

        self._db.execute("DELETE FROM offline_queue WHERE id = ?", (item_id,))
        self._db.commit()

    # === Queue operations ===

    def set_process_handler(self, handler: ProcessHandler) -> None:
        """Set the coroutine function that applies one item."""
        self._handler = handler

    def enqueue(
        self,
        user_id: str,
        device_id: str,
        entity_type: str,
        entity_id: str,
        operation: Any,
        version: int,
        payload: Payload | None = None,
    ) -> str:
        """Append an operation to the queue.

        Args:
            user_id: Owner of the entity.
            device_id: Device that made the change.
            entity_type: Kind of entity.
            entity_id: Entity identifier.
            operation: create, update or delete.
            version: Server version the device last saw.
            payload: Client state of the entity.

        Returns:
            The id assigned to the queued item.

        Raises:
            ValidationError: If a field is missing or malformed.
            QueueFullError: If the queue already holds max_queue_size items.
        """
        item_operation = coerce_operation(operation)
        item = QueuedOperation(
            id="",
            user_id=require_text("user_id", user_id),
            device_id=require_text("device_id", device_id),
            entity_type=require_text("entity_type", entity_type),
            entity_id=require_text("entity_id", entity_id),
            operation=item_operation,
            version=require_version(version),
            payload=copy.deepcopy(require_payload(payload, optional=True)),
        )

        with self._lock:
            if len(self._items) >= self.max_queue_size:
                logger.warning(
                    "Sync queue full (max_size=%d), rejecting %s %s/%s",
                    self.max_queue_size,
                    item.operation.value,
                    item.entity_type,
                    item.entity_id,
                )
                raise QueueFullError(self.max_queue_size)

            item.id = f"q_{int(time.time() * 1000)}_{next(self._counter)}"
            item.queued_at = utcnow()
            self._persist_item(item)
            self._items.append(item)
            logger.debug(
                "Sync queue: enqueued %s %s/%s, queue size=%d",
                item.operation.value,
                item.entity_type,
                item.entity_id,
                len(self._items),
            )
            return item.id

    def get_pending_count(self, user_id: str | None = None) -> int:
        """Number of pending items, optionally for one user."""
        with self._lock:
            if user_id is None:
                return len(self._items)
            return sum(1 for item in self._items if item.user_id == user_id)

    def get_pending_items(self, user_id: str | None = None) -> list[QueuedOperation]:
        """Snapshot of pending items in queue order (copies)."""
        with self._lock:
            return [
                copy.deepcopy(item)
                for item in self._items
                if user_id is None or item.user_id == user_id
            ]

    def is_processing(self) -> bool:
        """Whether a drain is in flight."""
        return self._processing

    def clear(self) -> int:
        """Remove all items from the queue.

        Returns:
            Number of items removed
        """
        with self._lock:
            count = len(self._items)
            self._items.clear()
            if self._db:
                self._db.execute("DELETE FROM offline_queue")
                self._db.commit()
            logger.info("Cleared %d operations from sync queue", count)
            return count

    def close(self) -> None:
        """Close the persistence connection."""
        with self._lock:
            if self._db:
                self._db.close()
                self._db = None
            logger.debug("Offline queue closed")

    def __len__(self) -> int:
        return self.get_pending_count()

    # === Processing ===

    async def process_queue(self) -> DrainResult:
        """Drain the whole queue once, in FIFO order."""
        return await self._drain(user_id=None)

    async def process_queue_for_user(self, user_id: str) -> DrainResult:
        """Drain only the items of one user, in FIFO order."""
        return await self._drain(user_id=user_id)

    def _contains(self, item_id: str) -> bool:
        with self._lock:
            return any(item.id == item_id for item in self._items)

    def _remove(self, item_id: str) -> None:
        with self._lock:
            self._items = [item for item in self._items if item.id != item_id]
            self._remove_from_persistence(item_id)

    def _mark_failed(self, item: QueuedOperation, error: str) -> bool:
        """Record a failed attempt.

        Returns:
            True if the item was dropped after exhausting its retries.
        """
        with self._lock:
            index = next((i for i, q in enumerate(self._items) if q.id == item.id), None)
            if index is None:
                return False

            current = self._items[index]
            failed = replace(current, retry_count=current.retry_count + 1, last_error=error)
            if failed.retry_count >= self.max_retries:
                del self._items[index]
                self._remove_from_persistence(failed.id)
                logger.warning(
                    "Sync queue: dropped item %s after %d retries (lost update: "
                    "user=%s device=%s entity=%s/%s operation=%s version=%d): %s",
                    failed.id,
                    failed.retry_count,
                    failed.user_id,
                    failed.device_id,
                    failed.entity_type,
                    failed.entity_id,
                    failed.operation.value,
                    failed.version,
                    error,
                )
                return True

            self._items[index] = failed
            self._persist_retry(failed)
            logger.debug(
                "Sync queue: will retry item %s, retry %d/%d",
                failed.id,
                failed.retry_count,
                self.max_retries,
            )
            return False

    async def _drain(self, user_id: str | None) -> DrainResult:
        with self._lock:
            if self._processing:
                logger.debug("Sync queue: process already in progress, skipping")
                return DrainResult()
            if self._handler is None:
                logger.warning("Sync queue: no process handler set")
                return DrainResult()
            self._processing = True
            handler = self._handler
            snapshot = [
                item for item in self._items if user_id is None or item.user_id == user_id
            ]

        result = DrainResult()
        blocked: set[tuple[str, str, str, str]] = set()
        try:
            for item in snapshot:
                if item.ordering_key in blocked:
                    continue
                if not self._contains(item.id):
                    # Removed by clear() while draining
                    continue

                try:
                    await handler(copy.deepcopy(item))
                except Exception as e:
                    result.failed += 1
                    if self._mark_failed(item, str(e) or type(e).__name__):
                        result.dropped += 1
                    else:
                        blocked.add(item.ordering_key)
                    await asyncio.sleep(self.retry_delay)
                else:
                    self._remove(item.id)
                    result.processed += 1

            if result.processed or result.failed:
                logger.info(
                    "Sync queue: processed %d items, %d failed, %d dropped%s",
                    result.processed,
                    result.failed,
                    result.dropped,
                    f" (user={user_id})" if user_id else "",
                )
        finally:
            with self._lock:
                self._processing = False

        return result
