"""WebSocket hub for real-time sync notifications.

This module provides:
- SyncEventHub: Per-user WebSocket connections and event fan-out
- The /ws/users/{user_id} endpoint

Architecture:
    SyncCoordinator ──send_sync_event──► SyncEventHub ──ws──► every client of the user
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from devicesync.sync.notifier import SyncEvent

if TYPE_CHECKING:
    from devicesync.sync.registry import DeviceRegistry

logger = logging.getLogger(__name__)


class SyncEventHub:
    """Central hub for WebSocket connections, keyed by user.

    Implements the NotificationSink protocol: send_sync_event schedules
    delivery on the running loop and returns immediately.

    Thread-safe for use with asyncio.
    """

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = {}  # user_id -> sockets
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()

    async def connect(self, websocket: WebSocket, user_id: str) -> None:
        """Accept and register a client connection.

        Args:
            websocket: The WebSocket connection.
            user_id: User the client belongs to.
        """
        await websocket.accept()

        async with self._lock:
            self._connections.setdefault(user_id, set()).add(websocket)

        logger.info("Client connected for user %s", user_id)

    async def disconnect(self, websocket: WebSocket, user_id: str) -> None:
        """Handle client disconnection.

        Args:
            websocket: The WebSocket that disconnected.
            user_id: User the client belonged to.
        """
        async with self._lock:
            sockets = self._connections.get(user_id)
            if sockets is not None:
                sockets.discard(websocket)
                if not sockets:
                    del self._connections[user_id]

        logger.info("Client disconnected for user %s", user_id)

    def connection_count(self, user_id: str | None = None) -> int:
        """Number of open connections, for one user or overall."""
        if user_id is not None:
            return len(self._connections.get(user_id, ()))
        return sum(len(sockets) for sockets in self._connections.values())

    async def broadcast(self, event: SyncEvent) -> int:
        """Send an event to every connection of its user.

        Connections that fail are dropped.

        Args:
            event: Event to deliver.

        Returns:
            Number of connections the event was sent to.
        """
        message = json.dumps(event.to_dict())

        async with self._lock:
            sockets = list(self._connections.get(event.user_id, ()))

            sent = 0
            disconnected = []
            for ws in sockets:
                try:
                    if ws.client_state == WebSocketState.CONNECTED:
                        await ws.send_text(message)
                        sent += 1
                except Exception:
                    disconnected.append(ws)

            # Clean up disconnected
            if disconnected:
                remaining = self._connections.get(event.user_id, set())
                for ws in disconnected:
                    remaining.discard(ws)
                if not remaining:
                    self._connections.pop(event.user_id, None)

        logger.debug("Sent %s to %d clients of user %s", event.name, sent, event.user_id)
        return sent

    def send_sync_event(self, event: SyncEvent) -> None:
        """Schedule delivery of an event without waiting for it.

        For use from the coordinator. Does nothing when no event loop is
        running.

        Args:
            event: Event to deliver.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No event loop, skipping %s notification", event.name)
            return

        task = loop.create_task(self.broadcast(event))
        # Keep a reference until done so the task is not garbage collected
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close_all(self) -> None:
        """Close every connection (on shutdown)."""
        async with self._lock:
            sockets = [ws for group in self._connections.values() for ws in group]
            self._connections.clear()

        for ws in sockets:
            with contextlib.suppress(Exception):
                await ws.close()


async def handle_client_message(
    registry: DeviceRegistry, user_id: str, data: dict[str, Any]
) -> None:
    """Handle an incoming client message.

    Expected message formats:
        {"type": "heartbeat", "device_id": "laptop-1"}

    Args:
        registry: Device registry.
        user_id: User of the connection.
        data: Message data.
    """
    msg_type = data.get("type")

    if msg_type == "heartbeat":
        device_id = data.get("device_id")
        device = registry.get_device(device_id) if isinstance(device_id, str) else None
        if device is not None and device.user_id == user_id:
            registry.heartbeat(device.device_id)
    else:
        logger.warning("Unknown message type from user %s: %s", user_id, msg_type)


# WebSocket router
router = APIRouter(tags=["websocket"])


@router.websocket("/ws/users/{user_id}")
async def websocket_user(websocket: WebSocket, user_id: str) -> None:
    """WebSocket endpoint for the clients of one user.

    Message format (server -> client):
        {"type": "sync-complete", "user_id": ..., "data": {...}, "timestamp": ...}
        {"type": "queue-processed", ...}
        {"type": "device-status", ...}

    Message format (client -> server):
        {"type": "heartbeat", "device_id": "..."}

    Args:
        websocket: The WebSocket connection.
        user_id: User whose events to receive.
    """
    hub: SyncEventHub = websocket.app.state.hub
    registry: DeviceRegistry = websocket.app.state.registry

    await hub.connect(websocket, user_id)

    try:
        while True:
            data = await websocket.receive_json()
            await handle_client_message(registry, user_id, data)
    except WebSocketDisconnect:
        await hub.disconnect(websocket, user_id)
    except Exception as e:
        logger.exception("Error in client WebSocket: %s", e)
        await hub.disconnect(websocket, user_id)
