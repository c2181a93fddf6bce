"""Device registry API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from devicesync.core.errors import NotFoundError
from devicesync.server.api.deps import get_coordinator, get_registry
from devicesync.server.schemas import (
    DeviceHeartbeatRequest,
    DeviceRegisterRequest,
    DeviceResponse,
    device_to_response,
)
from devicesync.sync.coordinator import SyncCoordinator
from devicesync.sync.registry import DeviceRegistry

router = APIRouter(prefix="/api/sync", tags=["devices"])


@router.post(
    "/devices/register",
    response_model=DeviceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_device(
    request: DeviceRegisterRequest,
    registry: DeviceRegistry = Depends(get_registry),
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> DeviceResponse:
    """Register a device (or refresh it) and apply its user's queued changes."""
    device = await registry.register_device(
        device_id=request.device_id,
        user_id=request.user_id,
        name=request.name,
        kind=request.kind,
        user_agent=request.user_agent,
    )
    coordinator.notify_device_status(device)
    return device_to_response(device)


@router.post("/devices/heartbeat", status_code=status.HTTP_204_NO_CONTENT)
def heartbeat(
    request: DeviceHeartbeatRequest,
    registry: DeviceRegistry = Depends(get_registry),
) -> Response:
    """Refresh a device's last-seen time. Unknown devices are ignored."""
    registry.heartbeat(request.device_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/devices/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unregister_device(
    device_id: str,
    registry: DeviceRegistry = Depends(get_registry),
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> Response:
    """Mark a device offline. Unknown devices are ignored."""
    registry.unregister_device(device_id)
    device = registry.get_device(device_id)
    if device is not None:
        coordinator.notify_device_status(device)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/devices/{device_id}", response_model=DeviceResponse)
def get_device(
    device_id: str,
    registry: DeviceRegistry = Depends(get_registry),
) -> DeviceResponse:
    """Get one device."""
    device = registry.get_device(device_id)
    if device is None:
        raise NotFoundError(f"Device not found: {device_id}")
    return device_to_response(device)


@router.get("/users/{user_id}/devices", response_model=list[DeviceResponse])
def list_devices(
    user_id: str,
    registry: DeviceRegistry = Depends(get_registry),
) -> list[DeviceResponse]:
    """List a user's devices, most recently seen first."""
    return [device_to_response(d) for d in registry.list_devices(user_id)]
