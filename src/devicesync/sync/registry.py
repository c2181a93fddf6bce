"""Device registry.

Tracks device identity, status hints and last-seen/last-sync times. The
registry is not a source of truth for liveness: it never probes the
network, and a device may be reported online while it is disconnected.

Registration is the primary "device came online" signal, so
register_device awaits the injected online hook (normally the coordinator
draining that user's offline queue).
"""

from __future__ import annotations

import logging
from datetime import timedelta

from devicesync.core.errors import ValidationError
from devicesync.core.types import DeviceStatus
from devicesync.sync.store import SyncStore
from devicesync.sync.types import Clock, Device, DeviceOnlineHook, utcnow
from devicesync.sync.validation import require_text

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Registry of client devices backed by a SyncStore."""

    def __init__(self, store: SyncStore, clock: Clock = utcnow) -> None:
        """Initialize the registry.

        Args:
            store: Persistence for device records.
            clock: Source of the current time.
        """
        self._store = store
        self._clock = clock
        self._online_hook: DeviceOnlineHook | None = None

    def set_online_hook(self, hook: DeviceOnlineHook | None) -> None:
        """Set the coroutine called with (user_id, device_id) after registration."""
        self._online_hook = hook

    async def register_device(
        self,
        device_id: str,
        user_id: str,
        name: str | None = None,
        kind: str | None = None,
        user_agent: str | None = None,
    ) -> Device:
        """Register or refresh a device and mark it online.

        Upserts by device_id. Metadata given as None keeps the stored value.

        Args:
            device_id: Client-generated unique id.
            user_id: Owner of the device.
            name: Display name.
            kind: Device kind (desktop, mobile, tablet...).
            user_agent: Reported user agent.

        Returns:
            The stored device record.

        Raises:
            ValidationError: If ids are missing, or the device already
                belongs to another user.
        """
        require_text("device_id", device_id)
        require_text("user_id", user_id)

        now = self._clock()
        existing = self._store.get_device(device_id)
        if existing is not None and existing.user_id != user_id:
            raise ValidationError(
                f"Device {device_id} is registered to another user"
            )

        if existing is None:
            device = Device(
                device_id=device_id,
                user_id=user_id,
                display_name=name,
                kind=kind,
                user_agent=user_agent,
                status=DeviceStatus.ONLINE,
                last_seen_at=now,
                created_at=now,
            )
        else:
            device = existing
            device.display_name = name if name is not None else existing.display_name
            device.kind = kind if kind is not None else existing.kind
            device.user_agent = user_agent if user_agent is not None else existing.user_agent
            device.status = DeviceStatus.ONLINE
            device.last_seen_at = now

        device = self._store.upsert_device(device)
        logger.info("Device registered: %s for user %s", device_id, user_id)

        if self._online_hook is not None:
            await self._online_hook(user_id, device_id)
            refreshed = self._store.get_device(device_id)
            if refreshed is not None:
                device = refreshed

        return device

    def unregister_device(self, device_id: str) -> None:
        """Mark a device offline. Unknown ids are a no-op."""
        device = self._store.touch_device(device_id, self._clock(), DeviceStatus.OFFLINE)
        if device is None:
            logger.debug("Unregister for unknown device %s ignored", device_id)
            return
        logger.info("Device unregistered: %s", device_id)

    def heartbeat(self, device_id: str) -> None:
        """Refresh last_seen_at without changing the status. Unknown ids are a no-op."""
        if self._store.touch_device(device_id, self._clock()) is None:
            logger.debug("Heartbeat for unknown device %s ignored", device_id)

    def set_status(self, device_id: str, status: DeviceStatus) -> Device | None:
        """Set the status hint of a device.

        Returns:
            Updated device, or None if unknown.
        """
        return self._store.touch_device(device_id, self._clock(), status)

    def list_devices(self, user_id: str) -> list[Device]:
        """All devices of a user, most recently seen first."""
        return self._store.list_devices(user_id)

    def get_device(self, device_id: str) -> Device | None:
        """Get a device, or None if unknown."""
        return self._store.get_device(device_id)

    def mark_stale_offline(self, older_than: timedelta) -> list[Device]:
        """Mark live devices without a recent heartbeat as offline.

        Args:
            older_than: Devices last seen before now - older_than are stale.

        Returns:
            The devices that were marked offline.
        """
        cutoff = self._clock() - older_than
        marked: list[Device] = []
        for device in self._store.list_stale_devices(cutoff):
            # Keep last_seen_at: it records the last real contact
            updated = self._store.touch_device(
                device.device_id, device.last_seen_at, DeviceStatus.OFFLINE
            )
            if updated is not None:
                marked.append(updated)

        if marked:
            logger.info("Marked %d stale devices offline", len(marked))
        return marked
