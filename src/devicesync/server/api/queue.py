"""Offline queue API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from devicesync.server.api.deps import get_coordinator
from devicesync.server.schemas import (
    DrainResponse,
    EnqueueRequest,
    EnqueueResponse,
    QueueStatusResponse,
    queue_status_to_response,
)
from devicesync.sync.coordinator import SyncCoordinator

router = APIRouter(prefix="/api/sync/queue", tags=["queue"])


@router.post("", response_model=EnqueueResponse, status_code=status.HTTP_202_ACCEPTED)
def enqueue(
    request: EnqueueRequest,
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> EnqueueResponse:
    """Queue a change made while the device was offline."""
    item_id = coordinator.enqueue(
        user_id=request.user_id,
        device_id=request.device_id,
        entity_type=request.entity_type,
        entity_id=request.entity_id,
        operation=request.operation,
        version=request.version,
        payload=request.payload,
    )
    return EnqueueResponse(
        id=item_id,
        pending_count=coordinator.get_queue_status().pending_count,
    )


@router.post("/process", response_model=DrainResponse)
async def process_queue(
    user_id: str | None = Query(default=None),
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> DrainResponse:
    """Drain the queue, or only one user's items."""
    if user_id:
        result = await coordinator.process_queue_for_user(user_id)
    else:
        result = await coordinator.process_queue()
    return DrainResponse(
        processed=result.processed,
        failed=result.failed,
        dropped=result.dropped,
    )


@router.get("/status", response_model=QueueStatusResponse)
def queue_status(
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> QueueStatusResponse:
    """Pending item count and whether a drain is running."""
    return queue_status_to_response(coordinator.get_queue_status())
