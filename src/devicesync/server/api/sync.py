"""Entity sync API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from devicesync.server.api.deps import get_coordinator
from devicesync.server.schemas import (
    ConflictRecordResponse,
    SyncEntityRequest,
    SyncResultResponse,
    SyncStatusResponse,
    conflict_to_response,
    result_to_response,
    status_to_response,
)
from devicesync.sync.coordinator import SyncCoordinator
from devicesync.sync.types import SyncRequest, utcnow

router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.post("/sync", response_model=SyncResultResponse)
async def sync_entity(
    request: SyncEntityRequest,
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> SyncResultResponse:
    """Apply a client's state for one entity, resolving conflicts."""
    result = await coordinator.sync_entity(
        SyncRequest(
            user_id=request.user_id,
            device_id=request.device_id,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            version=request.version,
            payload=request.payload,
            updated_at=request.updated_at or utcnow(),
        ),
        strategy=request.strategy,
    )
    return result_to_response(result)


@router.get("/users/{user_id}/status", response_model=list[SyncStatusResponse])
def get_sync_status(
    user_id: str,
    entity_type: str | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> list[SyncStatusResponse]:
    """Current state of a user's entities, optionally filtered."""
    return [
        status_to_response(info)
        for info in coordinator.get_sync_status(user_id, entity_type, entity_id)
    ]


@router.get("/users/{user_id}/conflicts", response_model=list[ConflictRecordResponse])
def get_conflicts(
    user_id: str,
    entity_type: str | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    coordinator: SyncCoordinator = Depends(get_coordinator),
) -> list[ConflictRecordResponse]:
    """Recently resolved conflicts of a user, newest first."""
    return [
        conflict_to_response(record)
        for record in coordinator.get_conflict_history(user_id, entity_type, entity_id)
    ]
