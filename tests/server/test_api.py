"""Tests for FastAPI server endpoints."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from devicesync.core.config import SyncSettings
from devicesync.server.app import create_app
from devicesync.server.database import Database
from devicesync.sync.store import InMemoryStore


def make_settings(tmp_path: Path, **overrides) -> SyncSettings:
    values = {
        "scheduler_enabled": False,
        "retry_delay": 0,
        "log_path": tmp_path / "server.log",
    }
    values.update(overrides)
    return SyncSettings(**values)


@pytest.fixture
def client(tmp_path: Path) -> Generator[TestClient, None, None]:
    """Create a test client over an in-memory store."""
    app = create_app(make_settings(tmp_path), store=InMemoryStore())
    with TestClient(app) as test_client:
        yield test_client


def sync_body(version: int, payload: dict, device_id: str = "d1", **extra) -> dict:
    body = {
        "user_id": "u1",
        "device_id": device_id,
        "entity_type": "progress",
        "entity_id": "course-1",
        "version": version,
        "payload": payload,
    }
    body.update(extra)
    return body


def queue_body(entity_id: str = "course-1", **extra) -> dict:
    body = {
        "user_id": "u1",
        "device_id": "d1",
        "entity_type": "progress",
        "entity_id": entity_id,
        "operation": "update",
        "version": 0,
        "payload": {"pct": 70},
    }
    body.update(extra)
    return body


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    def test_health_check(self, client: TestClient) -> None:
        """Health endpoint should return OK."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestDeviceEndpoints:
    """Tests for device registry endpoints."""

    def test_register_device(self, client: TestClient) -> None:
        response = client.post(
            "/api/sync/devices/register",
            json={"device_id": "d1", "user_id": "u1", "name": "Laptop", "kind": "desktop"},
        )
        assert response.status_code == 201
        data = response.json()
        assert data["device_id"] == "d1"
        assert data["status"] == "online"
        assert data["display_name"] == "Laptop"
        assert data["last_sync_at"] is None

    def test_register_other_users_device_is_400(self, client: TestClient) -> None:
        client.post("/api/sync/devices/register", json={"device_id": "d1", "user_id": "u1"})
        response = client.post(
            "/api/sync/devices/register", json={"device_id": "d1", "user_id": "u2"}
        )
        assert response.status_code == 400

    def test_register_missing_field_is_400(self, client: TestClient) -> None:
        response = client.post("/api/sync/devices/register", json={"device_id": "d1"})
        assert response.status_code == 400

    def test_get_device(self, client: TestClient) -> None:
        client.post("/api/sync/devices/register", json={"device_id": "d1", "user_id": "u1"})
        response = client.get("/api/sync/devices/d1")
        assert response.status_code == 200
        assert response.json()["user_id"] == "u1"

    def test_get_unknown_device_is_404(self, client: TestClient) -> None:
        response = client.get("/api/sync/devices/ghost")
        assert response.status_code == 404
        assert "ghost" in response.json()["detail"]

    def test_heartbeat_and_unregister(self, client: TestClient) -> None:
        client.post("/api/sync/devices/register", json={"device_id": "d1", "user_id": "u1"})

        assert client.post(
            "/api/sync/devices/heartbeat", json={"device_id": "d1"}
        ).status_code == 204
        assert client.delete("/api/sync/devices/d1").status_code == 204
        assert client.get("/api/sync/devices/d1").json()["status"] == "offline"

    def test_unknown_device_heartbeat_and_unregister_are_noops(self, client: TestClient) -> None:
        assert client.post(
            "/api/sync/devices/heartbeat", json={"device_id": "ghost"}
        ).status_code == 204
        assert client.delete("/api/sync/devices/ghost").status_code == 204

    def test_list_user_devices(self, client: TestClient) -> None:
        client.post("/api/sync/devices/register", json={"device_id": "d1", "user_id": "u1"})
        client.post("/api/sync/devices/register", json={"device_id": "d2", "user_id": "u1"})
        client.post("/api/sync/devices/register", json={"device_id": "d3", "user_id": "u2"})

        response = client.get("/api/sync/users/u1/devices")

        assert response.status_code == 200
        assert sorted(d["device_id"] for d in response.json()) == ["d1", "d2"]


class TestSyncEndpoints:
    """Tests for entity sync endpoints."""

    def test_sync_flow_with_conflict(self, client: TestClient) -> None:
        first = client.post("/api/sync/sync", json=sync_body(0, {"pct": 10}))
        assert first.status_code == 200
        assert first.json()["version"] == 1
        assert first.json()["conflict_resolved"] is False

        second = client.post("/api/sync/sync", json=sync_body(1, {"pct": 40}))
        assert second.json()["version"] == 2

        stale = client.post(
            "/api/sync/sync",
            json=sync_body(
                1,
                {"pct": 25},
                device_id="d2",
                updated_at="2000-01-01T00:00:00Z",
                strategy="last-write-wins",
            ),
        )
        data = stale.json()
        assert data["version"] == 3
        assert data["conflict_resolved"] is True
        assert data["payload"] == {"pct": 40}
        assert data["strategy"] == "last-write-wins"

        conflicts = client.get("/api/sync/users/u1/conflicts").json()
        assert len(conflicts) == 1
        assert conflicts[0]["device_id"] == "d2"
        assert conflicts[0]["winning_source"] == "server"

    def test_entity_conflicts_newest_first(self, client: TestClient) -> None:
        client.post("/api/sync/sync", json=sync_body(0, {"pct": 10}))
        client.post("/api/sync/sync", json=sync_body(0, {"pct": 20}, device_id="d2"))
        client.post("/api/sync/sync", json=sync_body(0, {"pct": 30}, device_id="d3"))

        conflicts = client.get(
            "/api/sync/users/u1/conflicts",
            params={"entity_type": "progress", "entity_id": "course-1"},
        ).json()

        assert [c["device_id"] for c in conflicts] == ["d3", "d2"]

    def test_unknown_strategy_falls_back(self, client: TestClient) -> None:
        response = client.post(
            "/api/sync/sync", json=sync_body(0, {"pct": 1}, strategy="newest-wins")
        )
        assert response.status_code == 200
        assert response.json()["strategy"] == "last-write-wins"

    @pytest.mark.parametrize(
        "body",
        [
            sync_body(-1, {}),
            sync_body(True, {}),
            sync_body("1", {}),
            sync_body(0, ["list"]),
            {"user_id": "u1", "device_id": "d1", "entity_type": "progress", "version": 0},
            sync_body(0, {}, entity_id=""),
            sync_body(0, {}, user_id="   "),
        ],
    )
    def test_invalid_sync_is_400(self, client: TestClient, body: dict) -> None:
        response = client.post("/api/sync/sync", json=body)
        assert response.status_code == 400
        assert client.get("/api/sync/users/u1/status").json() == []

    def test_status_filters(self, client: TestClient) -> None:
        client.post("/api/sync/sync", json=sync_body(0, {"pct": 10}))
        client.post(
            "/api/sync/sync",
            json=sync_body(0, {"theme": "dark"}, entity_type="preferences", entity_id="prefs"),
        )

        all_statuses = client.get("/api/sync/users/u1/status").json()
        assert len(all_statuses) == 2

        prefs = client.get(
            "/api/sync/users/u1/status", params={"entity_type": "preferences"}
        ).json()
        assert [s["entity_id"] for s in prefs] == ["prefs"]
        assert prefs[0]["version"] == 1
        assert prefs[0]["last_modified_by_device_id"] == "d1"

    def test_sync_updates_device_last_sync(self, client: TestClient) -> None:
        client.post("/api/sync/devices/register", json={"device_id": "d1", "user_id": "u1"})
        client.post("/api/sync/sync", json=sync_body(0, {"pct": 10}))
        assert client.get("/api/sync/devices/d1").json()["last_sync_at"] is not None


class TestQueueEndpoints:
    """Tests for offline queue endpoints."""

    def test_enqueue_and_status(self, client: TestClient) -> None:
        response = client.post("/api/sync/queue", json=queue_body())
        assert response.status_code == 202
        assert response.json()["id"].startswith("q_")
        assert response.json()["pending_count"] == 1

        status = client.get("/api/sync/queue/status").json()
        assert status == {"pending_count": 1, "is_processing": False}

    def test_invalid_operation_is_400(self, client: TestClient) -> None:
        response = client.post("/api/sync/queue", json=queue_body(operation="upsert"))
        assert response.status_code == 400

    def test_full_queue_is_429(self, tmp_path: Path) -> None:
        app = create_app(make_settings(tmp_path, max_queue_size=1), store=InMemoryStore())
        with TestClient(app) as client:
            assert client.post("/api/sync/queue", json=queue_body("a")).status_code == 202
            response = client.post("/api/sync/queue", json=queue_body("b"))
            assert response.status_code == 429
            assert "Sync queue full" in response.json()["detail"]
            assert client.get("/api/sync/queue/status").json()["pending_count"] == 1

    def test_process_queue(self, client: TestClient) -> None:
        client.post("/api/sync/queue", json=queue_body("a"))
        client.post("/api/sync/queue", json=queue_body("b", user_id="u2"))

        user_only = client.post("/api/sync/queue/process", params={"user_id": "u1"}).json()
        assert user_only == {"processed": 1, "failed": 0, "dropped": 0}

        rest = client.post("/api/sync/queue/process").json()
        assert rest["processed"] == 1
        assert client.get("/api/sync/queue/status").json()["pending_count"] == 0

    def test_registration_drains_queue(self, client: TestClient) -> None:
        client.post("/api/sync/queue", json=queue_body())

        response = client.post(
            "/api/sync/devices/register", json={"device_id": "d1", "user_id": "u1"}
        )

        assert response.json()["status"] == "online"
        assert client.get("/api/sync/queue/status").json()["pending_count"] == 0
        [status] = client.get("/api/sync/users/u1/status").json()
        assert status["payload"] == {"pct": 70}


class TestWebSocket:
    """Tests for real-time notifications."""

    def test_sync_pushes_event_to_user(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/users/u1") as ws:
            client.post("/api/sync/sync", json=sync_body(0, {"pct": 10}))
            message = ws.receive_json()

        assert message["type"] == "sync-complete"
        assert message["user_id"] == "u1"
        assert message["data"]["version"] == 1
        assert message["data"]["entity_id"] == "course-1"

    def test_unregister_pushes_device_status(self, client: TestClient) -> None:
        client.post("/api/sync/devices/register", json={"device_id": "d1", "user_id": "u1"})
        with client.websocket_connect("/ws/users/u1") as ws:
            client.delete("/api/sync/devices/d1")
            message = ws.receive_json()

        assert message["type"] == "device-status"
        assert message["data"] == {"device_id": "d1", "status": "offline"}


class TestSqliteBackedApp:
    """The app should run unchanged on the SQLite store."""

    def test_sync_persists_to_database(self, tmp_path: Path) -> None:
        settings = make_settings(tmp_path, db_path=tmp_path / "sync.db")
        with TestClient(create_app(settings)) as client:
            client.post("/api/sync/devices/register", json={"device_id": "d1", "user_id": "u1"})
            assert client.post("/api/sync/sync", json=sync_body(0, {"pct": 5})).status_code == 200

        db = Database(tmp_path / "sync.db")
        status = db.get_sync_status("u1", "progress", "course-1")
        device = db.get_device("d1")
        db.close()
        assert status.version == 1
        assert status.payload == {"pct": 5}
        assert device.last_sync_at is not None
