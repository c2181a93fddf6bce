"""Tests for periodic maintenance jobs."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.websockets import WebSocketState

from devicesync.core.types import DeviceStatus
from devicesync.server.scheduler import (
    MaintenanceScheduler,
    drain_pending_queue,
    sweep_stale_devices,
)
from devicesync.server.ws import SyncEventHub
from devicesync.sync.coordinator import SyncCoordinator
from devicesync.sync.queue import OfflineQueue
from devicesync.sync.registry import DeviceRegistry
from devicesync.sync.store import InMemoryStore


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock()


@pytest.fixture
def coordinator(clock: FakeClock, notifier: MagicMock) -> SyncCoordinator:
    store = InMemoryStore()
    return SyncCoordinator(
        store,
        DeviceRegistry(store, clock=clock),
        OfflineQueue(retry_delay=0),
        notifier=notifier,
        clock=clock,
    )


class TestDrainPendingQueue:
    """Tests for drain_pending_queue."""

    @pytest.mark.asyncio
    async def test_nothing_pending(self, coordinator: SyncCoordinator) -> None:
        result = await drain_pending_queue(coordinator)
        assert (result.processed, result.failed, result.dropped) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_applies_pending_items(self, coordinator: SyncCoordinator) -> None:
        coordinator.enqueue("u1", "d1", "notes", "n1", "create", 0, {"text": "hi"})
        coordinator.enqueue("u2", "d2", "notes", "n2", "create", 0, {"text": "yo"})

        result = await drain_pending_queue(coordinator)

        assert result.processed == 2
        assert coordinator.get_queue_status().pending_count == 0
        [status] = coordinator.get_sync_status("u1", "notes")
        assert status.version == 1


class TestSweepStaleDevices:
    """Tests for sweep_stale_devices."""

    @pytest.mark.asyncio
    async def test_marks_stale_devices_offline(
        self, coordinator: SyncCoordinator, clock: FakeClock, notifier: MagicMock
    ) -> None:
        await coordinator.registry.register_device("old", "u1")
        clock.now += timedelta(minutes=10)
        await coordinator.registry.register_device("fresh", "u1")
        notifier.reset_mock()

        marked = sweep_stale_devices(coordinator, older_than_seconds=300)

        assert [d.device_id for d in marked] == ["old"]
        assert coordinator.registry.get_device("old").status == DeviceStatus.OFFLINE
        assert coordinator.registry.get_device("fresh").status == DeviceStatus.ONLINE
        notifier.send_sync_event.assert_called_once()
        event = notifier.send_sync_event.call_args[0][0]
        assert event.name == "device-status"
        assert event.data == {"device_id": "old", "status": "offline"}

    def test_nothing_stale(self, coordinator: SyncCoordinator, notifier: MagicMock) -> None:
        assert sweep_stale_devices(coordinator, older_than_seconds=300) == []
        notifier.send_sync_event.assert_not_called()


class TestMaintenanceScheduler:
    """Tests for MaintenanceScheduler."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, coordinator: SyncCoordinator) -> None:
        scheduler = MaintenanceScheduler(coordinator, queue_drain_interval=3600)
        scheduler.start()
        assert scheduler.running
        jobs = {job.id for job in scheduler._scheduler.get_jobs()}
        assert jobs == {"queue_drain", "stale_device_sweep"}

        scheduler.start()  # idempotent
        scheduler.stop()
        assert not scheduler.running

    def test_stop_when_not_started(self, coordinator: SyncCoordinator) -> None:
        MaintenanceScheduler(coordinator).stop()

    @pytest.mark.asyncio
    async def test_drain_now(self, coordinator: SyncCoordinator) -> None:
        coordinator.enqueue("u1", "d1", "notes", "n1", "create", 0, {"text": "hi"})
        result = await MaintenanceScheduler(coordinator).drain_now()
        assert result.processed == 1

    @pytest.mark.asyncio
    async def test_sweep_now(self, coordinator: SyncCoordinator, clock: FakeClock) -> None:
        await coordinator.registry.register_device("d1", "u1")
        clock.now += timedelta(seconds=61)
        scheduler = MaintenanceScheduler(coordinator, device_offline_after=60)
        assert [d.device_id for d in scheduler.sweep_now()] == ["d1"]

    @pytest.mark.asyncio
    async def test_jobs_log_instead_of_raising(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        broken = MagicMock()
        broken.get_queue_status.side_effect = RuntimeError("boom")
        broken.registry.mark_stale_offline.side_effect = RuntimeError("boom")
        scheduler = MaintenanceScheduler(broken)

        await scheduler._drain_job()
        await scheduler._sweep_job()

        assert "Error during scheduled queue drain" in caplog.text
        assert "Error during scheduled stale-device sweep" in caplog.text

    @pytest.mark.asyncio
    async def test_scheduled_sweep_pushes_device_status(self, clock: FakeClock) -> None:
        """A sweep fired by the scheduler should reach connected clients."""
        store = InMemoryStore()
        hub = SyncEventHub()
        coordinator = SyncCoordinator(
            store, DeviceRegistry(store, clock=clock), OfflineQueue(retry_delay=0),
            notifier=hub, clock=clock,
        )
        ws = MagicMock()
        ws.accept = AsyncMock()
        ws.send_text = AsyncMock()
        ws.client_state = WebSocketState.CONNECTED
        await hub.connect(ws, "u1")
        await coordinator.registry.register_device("d1", "u1")
        ws.send_text.reset_mock()
        clock.now += timedelta(minutes=10)

        scheduler = MaintenanceScheduler(
            coordinator, queue_drain_interval=3600, stale_sweep_interval=1,
            device_offline_after=60,
        )
        scheduler.start()
        try:
            for _ in range(40):
                if ws.send_text.called:
                    break
                await asyncio.sleep(0.1)
        finally:
            scheduler.stop()

        assert coordinator.registry.get_device("d1").status == DeviceStatus.OFFLINE
        message = json.loads(ws.send_text.call_args[0][0])
        assert message["type"] == "device-status"
        assert message["data"] == {"device_id": "d1", "status": "offline"}
