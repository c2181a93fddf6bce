"""Sync coordinator.

Orchestrates entity sync:

    client ──► sync_entity() ──► resolve_conflict() ──► store.apply_sync()
                                                              │
                                               NotificationSink.send_sync_event()

and drains the offline queue when a device comes back:

    registry.register_device() ──► on_device_online() ──► queue.process_queue_for_user()
                                                              │
                                                        sync_entity() per item

Versioning:
    Every accepted sync writes version = previous + 1, whether or not a
    conflict was resolved, so no two syncs of an entity ever observe the
    same version and every client gets a fresh anchor for its next write.

Concurrency:
    Syncs of different entities run concurrently. Syncs of the same entity
    are serialized by a per-entity asyncio.Lock, and the store write is a
    compare-and-swap on the version read at the start, retried from the
    read on VersionConflictError. The lock covers a single process; the CAS
    keeps several processes sharing one durable store correct.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import weakref

from devicesync.core.errors import VersionConflictError
from devicesync.core.types import ConflictStrategy, DeviceStatus
from devicesync.sync.conflicts import (
    ConflictInput,
    default_strategy,
    normalize_strategy,
    resolve_conflict,
)
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
from devicesync.sync.store import SyncStore
from devicesync.sync.types import (
    EPOCH,
    Clock,
    Device,
    DrainResult,
    Payload,
    QueuedOperation,
    QueueStatus,
    SyncRequest,
    SyncResult,
    SyncStatus,
    SyncStatusInfo,
    entity_key,
    utcnow,
)
from devicesync.sync.validation import (
    require_payload,
    require_text,
    require_timestamp,
    require_version,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CAS_ATTEMPTS = 5


class SyncCoordinator:
    """Applies client state to entities and drains the offline queue.

    Wires itself into its collaborators on construction: it becomes the
    queue's process handler and the registry's online hook.
    """

    def __init__(
        self,
        store: SyncStore,
        registry: DeviceRegistry,
        queue: OfflineQueue,
        notifier: NotificationSink | None = None,
        history: ConflictHistory | None = None,
        clock: Clock = utcnow,
        max_cas_attempts: int = DEFAULT_MAX_CAS_ATTEMPTS,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Persistence for sync status.
            registry: Device registry (its online hook is set to on_device_online).
            queue: Offline queue (its handler is set to apply queued items).
            notifier: Sink for sync events (events are discarded if None).
            history: Conflict history (a default-sized one if None).
            clock: Source of the current time.
            max_cas_attempts: Store writes attempted before a version
                conflict is propagated.
        """
        self._store = store
        self._registry = registry
        self._queue = queue
        self._notifier: NotificationSink = notifier or NullNotificationSink()
        self._history = history if history is not None else ConflictHistory()
        self._clock = clock
        self._max_cas_attempts = max_cas_attempts
        self._locks: weakref.WeakValueDictionary[tuple[str, str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

        self._queue.set_process_handler(self._apply_queued)
        self._registry.set_online_hook(self.on_device_online)

    @property
    def queue(self) -> OfflineQueue:
        return self._queue

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    def set_notifier(self, notifier: NotificationSink | None) -> None:
        """Replace the notification sink (for late binding)."""
        self._notifier = notifier or NullNotificationSink()

    # === Entity sync ===

    def _lock_for(self, key: tuple[str, str, str]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @staticmethod
    def _validate(request: SyncRequest) -> None:
        require_text("user_id", request.user_id)
        require_text("device_id", request.device_id)
        require_text("entity_type", request.entity_type)
        require_text("entity_id", request.entity_id)
        require_version(request.version)
        require_payload(request.payload)
        require_timestamp("updated_at", request.updated_at)

    async def sync_entity(
        self,
        request: SyncRequest,
        strategy: ConflictStrategy | str | None = None,
    ) -> SyncResult:
        """Apply a client's state for one entity.

        Args:
            request: Client state and the version it was based on.
            strategy: Explicit strategy; the entity type's default if None.
                Unknown names fall back to last-write-wins.

        Returns:
            SyncResult with the new version and the resolved payload.

        Raises:
            ValidationError: If the request is incomplete (nothing is written).
            VersionConflictError: If concurrent writers kept winning the
                compare-and-swap after max_cas_attempts.
        """
        self._validate(request)
        chosen = (
            normalize_strategy(strategy)
            if strategy is not None
            else default_strategy(request.entity_type)
        )
        client_payload: Payload = copy.deepcopy(request.payload or {})
        key = entity_key(request.user_id, request.entity_type, request.entity_id)

        async with self._lock_for(key):
            attempt = 0
            while True:
                attempt += 1
                current = self._store.get_sync_status(*key)
                conflict = ConflictInput(
                    entity_type=request.entity_type,
                    entity_id=request.entity_id,
                    device_id=request.device_id,
                    server_version=current.version if current else 0,
                    server_updated_at=current.last_modified_at if current else EPOCH,
                    server_payload=current.payload if current else {},
                    client_version=request.version,
                    client_updated_at=request.updated_at,
                    client_payload=client_payload,
                )
                resolution = resolve_conflict(conflict, chosen)

                expected_version = current.version if current else 0
                now = self._clock()
                status = SyncStatus(
                    user_id=request.user_id,
                    entity_type=request.entity_type,
                    entity_id=request.entity_id,
                    version=expected_version + 1,
                    last_modified_at=now,
                    last_modified_by_device_id=request.device_id,
                    payload=copy.deepcopy(resolution.payload),
                )
                try:
                    stored = self._store.apply_sync(status, expected_version)
                except VersionConflictError as e:
                    if attempt >= self._max_cas_attempts:
                        logger.error(
                            "Giving up on %s/%s after %d version conflicts: %s",
                            request.entity_type,
                            request.entity_id,
                            attempt,
                            e,
                        )
                        raise
                    logger.info("Concurrent write on %s/%s, re-resolving: %s",
                                request.entity_type, request.entity_id, e)
                    continue
                break

        if resolution.conflict_detected:
            logger.info(
                "Conflict on %s/%s (client v%d, server v%d) resolved by %s: %s wins",
                request.entity_type,
                request.entity_id,
                request.version,
                expected_version,
                resolution.strategy.value,
                resolution.winning_source.value,
            )
            self._history.record(
                request.user_id, ConflictRecord.from_resolution(conflict, resolution, now)
            )

        self._notify(
            SyncEvent(
                user_id=request.user_id,
                name=SYNC_COMPLETE,
                data={
                    "entity_type": request.entity_type,
                    "entity_id": request.entity_id,
                    "version": stored.version,
                    "conflict_resolved": resolution.conflict_detected,
                    "strategy": resolution.strategy.value,
                    "device_id": request.device_id,
                },
            )
        )

        return SyncResult(
            success=True,
            version=stored.version,
            last_modified_at=stored.last_modified_at,
            payload=stored.payload,
            conflict_resolved=resolution.conflict_detected,
            strategy=resolution.strategy,
            message=resolution.message,
        )

    def get_sync_status(
        self,
        user_id: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
    ) -> list[SyncStatusInfo]:
        """Current state of a user's entities, optionally filtered."""
        statuses = self._store.find_sync_statuses(user_id, entity_type, entity_id)
        return [SyncStatusInfo.from_status(status) for status in statuses]

    def get_conflict_history(
        self,
        user_id: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
    ) -> list[ConflictRecord]:
        """Recently resolved conflicts, for one entity or a whole user, newest first."""
        if entity_type is not None and entity_id is not None:
            return list(reversed(self._history.get(user_id, entity_type, entity_id)))
        records = self._history.for_user(user_id)
        if entity_type is not None:
            records = [r for r in records if r.entity_type == entity_type]
        return records

    # === Offline queue ===

    def enqueue(
        self,
        user_id: str,
        device_id: str,
        entity_type: str,
        entity_id: str,
        operation: str,
        version: int,
        payload: Payload | None = None,
    ) -> str:
        """Queue a change for later application.

        Raises:
            ValidationError: If a field is missing or malformed.
            QueueFullError: If the queue is at capacity.
        """
        return self._queue.enqueue(
            user_id=user_id,
            device_id=device_id,
            entity_type=entity_type,
            entity_id=entity_id,
            operation=operation,
            version=version,
            payload=payload,
        )

    async def process_queue(self) -> DrainResult:
        """Drain the whole offline queue."""
        return await self._queue.process_queue()

    async def process_queue_for_user(self, user_id: str) -> DrainResult:
        """Drain one user's queued operations."""
        return await self._queue.process_queue_for_user(user_id)

    def get_queue_status(self) -> QueueStatus:
        return QueueStatus(
            pending_count=self._queue.get_pending_count(),
            is_processing=self._queue.is_processing(),
        )

    async def _apply_queued(self, item: QueuedOperation) -> None:
        # The operation kind is informational: every queued change carries the
        # full client state and is applied through the same versioned path.
        await self.sync_entity(
            SyncRequest(
                user_id=item.user_id,
                device_id=item.device_id,
                entity_type=item.entity_type,
                entity_id=item.entity_id,
                version=item.version,
                payload=item.payload or {},
                updated_at=item.queued_at,
            )
        )

    async def on_device_online(self, user_id: str, device_id: str) -> DrainResult:
        """Apply the queued changes of a user whose device just came online.

        The device is marked SYNCING while its user's items drain, then
        ONLINE, or ERROR if any item failed.
        """
        if self._queue.get_pending_count(user_id) == 0:
            return DrainResult()

        self._registry.set_status(device_id, DeviceStatus.SYNCING)
        try:
            result = await self._queue.process_queue_for_user(user_id)
        except BaseException:
            self._registry.set_status(device_id, DeviceStatus.ERROR)
            raise

        self._registry.set_status(
            device_id, DeviceStatus.ERROR if result.failed else DeviceStatus.ONLINE
        )
        if result.processed or result.failed:
            self._notify(
                SyncEvent(
                    user_id=user_id,
                    name=QUEUE_PROCESSED,
                    data={
                        "device_id": device_id,
                        "processed": result.processed,
                        "failed": result.failed,
                        "dropped": result.dropped,
                    },
                )
            )
        return result

    # === Notification ===

    def notify_device_status(self, device: Device) -> None:
        """Tell the other clients of a user that a device changed status."""
        self._notify(
            SyncEvent(
                user_id=device.user_id,
                name=DEVICE_STATUS,
                data={"device_id": device.device_id, "status": device.status.value},
            )
        )

    def _notify(self, event: SyncEvent) -> None:
        try:
            self._notifier.send_sync_event(event)
        except Exception:
            logger.warning("Failed to deliver %s event to user %s", event.name, event.user_id,
                           exc_info=True)
