"""Scheduler for periodic maintenance tasks.

This module provides:
- Periodic offline queue drain (picks up items left for retry)
- Periodic stale-device sweep (devices without a heartbeat go offline)
- Job functions usable directly from the CLI or tests
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from devicesync.sync.types import Device, DrainResult

if TYPE_CHECKING:
    from devicesync.sync.coordinator import SyncCoordinator

logger = logging.getLogger(__name__)


async def drain_pending_queue(coordinator: SyncCoordinator) -> DrainResult:
    """Drain the offline queue if anything is pending.

    Args:
        coordinator: Sync coordinator.

    Returns:
        DrainResult (empty when nothing was pending).
    """
    if coordinator.get_queue_status().pending_count == 0:
        logger.debug("Queue drain: nothing pending")
        return DrainResult()
    return await coordinator.process_queue()


def sweep_stale_devices(coordinator: SyncCoordinator, older_than_seconds: int) -> list[Device]:
    """Mark devices without a recent heartbeat offline and announce it.

    Args:
        coordinator: Sync coordinator (for the registry and notifications).
        older_than_seconds: Seconds without contact after which a device is stale.

    Returns:
        Devices that were marked offline.
    """
    marked = coordinator.registry.mark_stale_offline(timedelta(seconds=older_than_seconds))
    for device in marked:
        coordinator.notify_device_status(device)
    return marked


class MaintenanceScheduler:
    """Runs queue drains and stale-device sweeps on fixed intervals.

    Jobs run on the application's event loop, so start() must be called
    from a running loop (the app lifespan).
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        queue_drain_interval: int = 30,
        stale_sweep_interval: int = 60,
        device_offline_after: int = 300,
    ) -> None:
        """Initialize the scheduler.

        Args:
            coordinator: Sync coordinator.
            queue_drain_interval: Seconds between queue drains.
            stale_sweep_interval: Seconds between stale-device sweeps.
            device_offline_after: Seconds without contact before a device is stale.
        """
        self._coordinator = coordinator
        self._queue_drain_interval = queue_drain_interval
        self._stale_sweep_interval = stale_sweep_interval
        self._device_offline_after = device_offline_after
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    async def _drain_job(self) -> None:
        """Job function for the scheduled queue drain."""
        try:
            await drain_pending_queue(self._coordinator)
        except Exception:
            logger.exception("Error during scheduled queue drain")

    async def _sweep_job(self) -> None:
        """Job function for the scheduled stale-device sweep.

        Must stay a coroutine: the hub only delivers events scheduled from
        the event loop.
        """
        try:
            sweep_stale_devices(self._coordinator, self._device_offline_after)
        except Exception:
            logger.exception("Error during scheduled stale-device sweep")

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            self._drain_job,
            trigger=IntervalTrigger(seconds=self._queue_drain_interval),
            id="queue_drain",
            name="Offline queue drain",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.add_job(
            self._sweep_job,
            trigger=IntervalTrigger(seconds=self._stale_sweep_interval),
            id="stale_device_sweep",
            name="Stale device sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self._scheduler.start()
        logger.info(
            "Maintenance scheduler started (queue drain every %ds, stale sweep every %ds)",
            self._queue_drain_interval,
            self._stale_sweep_interval,
        )

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Maintenance scheduler stopped")

    async def drain_now(self) -> DrainResult:
        """Run the queue drain immediately (manual trigger)."""
        return await drain_pending_queue(self._coordinator)

    def sweep_now(self) -> list[Device]:
        """Run the stale-device sweep immediately (manual trigger)."""
        return sweep_stale_devices(self._coordinator, self._device_offline_after)
