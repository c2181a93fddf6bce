"""Tests for SyncStore implementations (in-memory and SQLite)."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from devicesync.core.errors import VersionConflictError
from devicesync.core.types import DeviceStatus
from devicesync.server.database import Database
from devicesync.sync.store import InMemoryStore, SyncStore
from devicesync.sync.types import Device, SyncStatus

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> SyncStore:
    """Create each store backend."""
    if request.param == "memory":
        s: SyncStore = InMemoryStore()
    else:
        s = Database(tmp_path / "test.db")
    yield s
    s.close()


def make_device(device_id: str = "d1", user_id: str = "u1", seen: datetime = T0,
                status: DeviceStatus = DeviceStatus.ONLINE) -> Device:
    return Device(
        device_id=device_id,
        user_id=user_id,
        display_name="Laptop",
        status=status,
        last_seen_at=seen,
        created_at=seen,
    )


def make_status(version: int, payload: dict | None = None, device_id: str = "d1",
                entity_id: str = "e1", at: datetime = T0) -> SyncStatus:
    return SyncStatus(
        user_id="u1",
        entity_type="progress",
        entity_id=entity_id,
        version=version,
        last_modified_at=at,
        last_modified_by_device_id=device_id,
        payload=payload if payload is not None else {"v": version},
    )


class TestDatabaseCreation:
    """Tests for SQLite initialization."""

    def test_creates_db_file(self, tmp_path: Path) -> None:
        db_path = tmp_path / "nested" / "test.db"
        db = Database(db_path)
        assert db_path.exists()
        assert db.location == str(db_path)
        db.close()

    def test_uses_wal_mode(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")
        with db._engine.connect() as conn:
            result = conn.exec_driver_sql("PRAGMA journal_mode").fetchone()
        assert result is not None
        assert result[0].lower() == "wal"
        db.close()

    def test_data_survives_reopen(self, tmp_path: Path) -> None:
        db = Database(tmp_path / "test.db")
        db.upsert_device(make_device())
        db.apply_sync(make_status(1, {"nested": {"k": [1, 2]}}), 0)
        db.close()

        db = Database(tmp_path / "test.db")
        status = db.get_sync_status("u1", "progress", "e1")
        device = db.get_device("d1")
        db.close()

        assert status.payload == {"nested": {"k": [1, 2]}}
        assert status.last_modified_at == T0
        assert device.last_sync_at == T0


class TestDevices:
    """Tests for device persistence."""

    def test_upsert_and_get(self, store: SyncStore) -> None:
        store.upsert_device(make_device())
        device = store.get_device("d1")
        assert device is not None
        assert device.display_name == "Laptop"
        assert device.status == DeviceStatus.ONLINE
        assert device.last_seen_at == T0
        assert device.last_seen_at.tzinfo is not None

    def test_get_unknown(self, store: SyncStore) -> None:
        assert store.get_device("ghost") is None

    def test_upsert_replaces(self, store: SyncStore) -> None:
        store.upsert_device(make_device())
        updated = make_device(status=DeviceStatus.OFFLINE)
        updated.display_name = "Renamed"
        store.upsert_device(updated)
        device = store.get_device("d1")
        assert device.display_name == "Renamed"
        assert device.status == DeviceStatus.OFFLINE

    def test_touch_device(self, store: SyncStore) -> None:
        store.upsert_device(make_device())
        later = T0 + timedelta(minutes=1)

        device = store.touch_device("d1", later, DeviceStatus.SYNCING)

        assert device.last_seen_at == later
        assert device.status == DeviceStatus.SYNCING
        assert store.touch_device("ghost", later) is None

    def test_list_devices_ordered_by_last_seen(self, store: SyncStore) -> None:
        store.upsert_device(make_device("old", seen=T0))
        store.upsert_device(make_device("new", seen=T0 + timedelta(hours=1)))
        store.upsert_device(make_device("other", user_id="u2"))
        assert [d.device_id for d in store.list_devices("u1")] == ["new", "old"]

    def test_list_stale_devices(self, store: SyncStore) -> None:
        store.upsert_device(make_device("stale-online", seen=T0))
        store.upsert_device(make_device("stale-syncing", seen=T0, status=DeviceStatus.SYNCING))
        store.upsert_device(make_device("stale-offline", seen=T0, status=DeviceStatus.OFFLINE))
        store.upsert_device(make_device("fresh", seen=T0 + timedelta(hours=1)))

        stale = store.list_stale_devices(T0 + timedelta(minutes=5))

        assert sorted(d.device_id for d in stale) == ["stale-online", "stale-syncing"]


class TestSyncStatus:
    """Tests for versioned entity status."""

    def test_first_write_requires_expected_zero(self, store: SyncStore) -> None:
        stored = store.apply_sync(make_status(1), 0)
        assert stored.version == 1
        assert store.get_sync_status("u1", "progress", "e1").payload == {"v": 1}

    def test_create_conflicts_when_row_exists(self, store: SyncStore) -> None:
        store.apply_sync(make_status(1), 0)
        with pytest.raises(VersionConflictError) as exc_info:
            store.apply_sync(make_status(1, {"other": True}), 0)
        assert exc_info.value.actual == 1
        assert store.get_sync_status("u1", "progress", "e1").payload == {"v": 1}

    def test_update_with_stale_expected_version(self, store: SyncStore) -> None:
        store.apply_sync(make_status(1), 0)
        store.apply_sync(make_status(2), 1)
        with pytest.raises(VersionConflictError) as exc_info:
            store.apply_sync(make_status(2, {"late": True}), 1)
        assert exc_info.value.expected == 1
        assert exc_info.value.actual == 2

    def test_update_unknown_entity_conflicts(self, store: SyncStore) -> None:
        with pytest.raises(VersionConflictError):
            store.apply_sync(make_status(4), 3)

    def test_apply_sync_sets_device_last_sync(self, store: SyncStore) -> None:
        store.upsert_device(make_device())
        at = T0 + timedelta(minutes=3)
        store.apply_sync(make_status(1, at=at), 0)
        assert store.get_device("d1").last_sync_at == at

    def test_failed_apply_leaves_device_untouched(self, store: SyncStore) -> None:
        store.upsert_device(make_device())
        store.apply_sync(make_status(1), 0)
        with pytest.raises(VersionConflictError):
            store.apply_sync(make_status(2, at=T0 + timedelta(hours=1)), 0)
        assert store.get_device("d1").last_sync_at == T0

    def test_find_sync_statuses(self, store: SyncStore) -> None:
        store.apply_sync(make_status(1, entity_id="b"), 0)
        store.apply_sync(make_status(1, entity_id="a"), 0)
        other = make_status(1, entity_id="a")
        other.entity_type = "notes"
        store.apply_sync(other, 0)

        assert [(s.entity_type, s.entity_id) for s in store.find_sync_statuses("u1")] == [
            ("notes", "a"),
            ("progress", "a"),
            ("progress", "b"),
        ]
        assert len(store.find_sync_statuses("u1", "progress")) == 2
        assert len(store.find_sync_statuses("u1", "progress", "a")) == 1
        assert store.find_sync_statuses("u2") == []

    def test_returned_payload_is_detached(self, store: SyncStore) -> None:
        store.apply_sync(make_status(1, {"k": {"x": 1}}), 0)
        status = store.get_sync_status("u1", "progress", "e1")
        status.payload["k"]["x"] = 2
        assert store.get_sync_status("u1", "progress", "e1").payload == {"k": {"x": 1}}
