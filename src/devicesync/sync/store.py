"""Storage port for devices and entity sync status.

This module provides:
- SyncStore: Abstract interface the registry and coordinator persist through
- InMemoryStore: Process-local implementation for tests and single-node use

A durable implementation backed by SQLAlchemy lives in
devicesync.server.database.
"""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from datetime import datetime

from devicesync.core.errors import VersionConflictError
from devicesync.core.types import DeviceStatus
from devicesync.sync.types import Device, SyncStatus, as_utc, entity_key

# Statuses the stale-device sweep may downgrade to OFFLINE
LIVE_STATUSES = (DeviceStatus.ONLINE, DeviceStatus.SYNCING)


class SyncStore(ABC):
    """Abstract interface for device and sync status persistence.

    Implementations must make apply_sync atomic: either the status row and
    the device's last_sync_at are both written, or neither is.
    """

    # === Devices ===

    @abstractmethod
    def get_device(self, device_id: str) -> Device | None:
        """Get a device by id.

        Returns:
            Device if found, None otherwise.
        """

    @abstractmethod
    def upsert_device(self, device: Device) -> Device:
        """Create a device, or replace the stored record with the same id.

        Returns:
            The stored device.
        """

    @abstractmethod
    def touch_device(
        self,
        device_id: str,
        last_seen_at: datetime,
        status: DeviceStatus | None = None,
    ) -> Device | None:
        """Refresh last_seen_at and optionally the status of a device.

        Returns:
            Updated device, or None if the device is unknown.
        """

    @abstractmethod
    def list_devices(self, user_id: str) -> list[Device]:
        """List the devices of a user, most recently seen first."""

    @abstractmethod
    def list_stale_devices(self, cutoff: datetime) -> list[Device]:
        """List online or syncing devices last seen before cutoff."""

    # === Sync status ===

    @abstractmethod
    def get_sync_status(
        self, user_id: str, entity_type: str, entity_id: str
    ) -> SyncStatus | None:
        """Get the status of one entity.

        Returns:
            SyncStatus if the entity was ever synced, None otherwise.
        """

    @abstractmethod
    def find_sync_statuses(
        self,
        user_id: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
    ) -> list[SyncStatus]:
        """List statuses of a user, optionally filtered by type and id."""

    @abstractmethod
    def apply_sync(self, status: SyncStatus, expected_version: int) -> SyncStatus:
        """Write a new entity version if the stored one is still expected_version.

        Also sets last_sync_at of status.last_modified_by_device_id to
        status.last_modified_at when that device is known.

        Args:
            status: New state to store.
            expected_version: Version read before resolving (0 = must not exist).

        Returns:
            The stored status.

        Raises:
            VersionConflictError: If another writer got there first.
        """

    def close(self) -> None:
        """Release resources held by the store."""


class InMemoryStore(SyncStore):
    """Dict-backed store. State is lost when the process exits.

    Thread-safe; returns copies so callers never alias stored records.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._devices: dict[str, Device] = {}
        self._statuses: dict[tuple[str, str, str], SyncStatus] = {}

    @property
    def location(self) -> str:
        return "memory"

    def get_device(self, device_id: str) -> Device | None:
        with self._lock:
            device = self._devices.get(device_id)
            return copy.deepcopy(device) if device else None

    def upsert_device(self, device: Device) -> Device:
        with self._lock:
            self._devices[device.device_id] = copy.deepcopy(device)
            return copy.deepcopy(device)

    def touch_device(
        self,
        device_id: str,
        last_seen_at: datetime,
        status: DeviceStatus | None = None,
    ) -> Device | None:
        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                return None
            device.last_seen_at = last_seen_at
            if status is not None:
                device.status = status
            return copy.deepcopy(device)

    def list_devices(self, user_id: str) -> list[Device]:
        with self._lock:
            devices = [copy.deepcopy(d) for d in self._devices.values() if d.user_id == user_id]
        return sorted(devices, key=lambda d: as_utc(d.last_seen_at), reverse=True)

    def list_stale_devices(self, cutoff: datetime) -> list[Device]:
        with self._lock:
            return [
                copy.deepcopy(d)
                for d in self._devices.values()
                if d.status in LIVE_STATUSES and as_utc(d.last_seen_at) < as_utc(cutoff)
            ]

    def get_sync_status(
        self, user_id: str, entity_type: str, entity_id: str
    ) -> SyncStatus | None:
        with self._lock:
            status = self._statuses.get(entity_key(user_id, entity_type, entity_id))
            return copy.deepcopy(status) if status else None

    def find_sync_statuses(
        self,
        user_id: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
    ) -> list[SyncStatus]:
        with self._lock:
            statuses = [
                copy.deepcopy(s)
                for s in self._statuses.values()
                if s.user_id == user_id
                and (entity_type is None or s.entity_type == entity_type)
                and (entity_id is None or s.entity_id == entity_id)
            ]
        return sorted(statuses, key=lambda s: (s.entity_type, s.entity_id))

    def apply_sync(self, status: SyncStatus, expected_version: int) -> SyncStatus:
        with self._lock:
            current = self._statuses.get(status.key)
            actual = current.version if current else 0
            if actual != expected_version:
                raise VersionConflictError(status.key, expected_version, actual)

            self._statuses[status.key] = copy.deepcopy(status)
            device = self._devices.get(status.last_modified_by_device_id)
            if device is not None:
                device.last_sync_at = status.last_modified_at
            return copy.deepcopy(status)
