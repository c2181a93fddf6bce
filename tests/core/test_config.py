"""Tests for settings and the error taxonomy."""

from __future__ import annotations

from pathlib import Path

import pytest

from devicesync.core.config import SyncSettings
from devicesync.core.errors import (
    DeviceSyncError,
    NotFoundError,
    QueueFullError,
    ValidationError,
    VersionConflictError,
)


class TestSyncSettings:
    """Tests for SyncSettings."""

    def test_defaults(self) -> None:
        settings = SyncSettings()
        assert settings.db_path is None
        assert settings.queue_path is None
        assert settings.max_retries == 3
        assert settings.retry_delay == 1.0
        assert settings.max_queue_size == 1000
        assert settings.conflict_history_size == 10
        assert settings.scheduler_enabled is True

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_retries": 0},
            {"retry_delay": -1},
            {"max_queue_size": 0},
            {"conflict_history_size": -1},
            {"device_offline_after": 0},
            {"queue_drain_interval": 0},
        ],
    )
    def test_rejects_invalid_values(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            SyncSettings(**kwargs)

    def test_from_env(self) -> None:
        settings = SyncSettings.from_env(
            {
                "DEVICESYNC_DB_PATH": "/var/lib/devicesync/sync.db",
                "DEVICESYNC_QUEUE_PATH": "/var/lib/devicesync/queue.db",
                "DEVICESYNC_MAX_RETRIES": "5",
                "DEVICESYNC_RETRY_DELAY": "0.5",
                "DEVICESYNC_MAX_QUEUE_SIZE": "20",
                "DEVICESYNC_SCHEDULER_ENABLED": "false",
                "DEVICESYNC_DEVICE_OFFLINE_AFTER": "90",
            }
        )
        assert settings.db_path == Path("/var/lib/devicesync/sync.db")
        assert settings.queue_path == Path("/var/lib/devicesync/queue.db")
        assert settings.max_retries == 5
        assert settings.retry_delay == 0.5
        assert settings.max_queue_size == 20
        assert settings.scheduler_enabled is False
        assert settings.device_offline_after == 90

    def test_from_env_empty_uses_defaults(self) -> None:
        assert SyncSettings.from_env({}) == SyncSettings()

    def test_from_env_reads_os_environ(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEVICESYNC_MAX_QUEUE_SIZE", "7")
        assert SyncSettings.from_env().max_queue_size == 7


class TestErrors:
    def test_hierarchy(self) -> None:
        for cls in (ValidationError, NotFoundError, QueueFullError, VersionConflictError):
            assert issubclass(cls, DeviceSyncError)

    def test_queue_full_message(self) -> None:
        err = QueueFullError(1000)
        assert str(err) == "Sync queue full (max 1000)"
        assert err.max_size == 1000

    def test_version_conflict_fields(self) -> None:
        err = VersionConflictError(("u1", "notes", "n1"), 2, 3)
        assert (err.expected, err.actual) == (2, 3)
        assert "u1/notes/n1" in str(err)
