"""FastAPI dependencies for API routes."""

from __future__ import annotations

from fastapi import Request

from devicesync.sync.coordinator import SyncCoordinator
from devicesync.sync.registry import DeviceRegistry


def get_coordinator(request: Request) -> SyncCoordinator:
    """Get sync coordinator from app state."""
    coordinator: SyncCoordinator = request.app.state.coordinator
    return coordinator


def get_registry(request: Request) -> DeviceRegistry:
    """Get device registry from app state."""
    registry: DeviceRegistry = request.app.state.registry
    return registry
