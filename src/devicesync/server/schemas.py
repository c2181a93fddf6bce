"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, StrictInt

from devicesync.sync.history import ConflictRecord
from devicesync.sync.types import Device, QueueStatus, SyncResult, SyncStatusInfo

# === Device schemas ===


class DeviceRegisterRequest(BaseModel):
    """Request body for device registration."""

    device_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    name: str | None = None
    kind: str | None = None
    user_agent: str | None = None


class DeviceHeartbeatRequest(BaseModel):
    """Request body for a device heartbeat."""

    device_id: str = Field(min_length=1)


class DeviceResponse(BaseModel):
    """Device data in responses."""

    device_id: str
    user_id: str
    display_name: str | None
    kind: str | None
    user_agent: str | None
    status: str
    last_seen_at: str
    last_sync_at: str | None
    created_at: str


# === Sync schemas ===


class SyncEntityRequest(BaseModel):
    """Request body for syncing one entity."""

    user_id: str = Field(min_length=1)
    device_id: str = Field(min_length=1)
    entity_type: str = Field(min_length=1)
    entity_id: str = Field(min_length=1)
    version: StrictInt = Field(ge=0)
    payload: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime | None = None  # client modification time, defaults to now
    strategy: str | None = None  # entity type default if omitted


class SyncResultResponse(BaseModel):
    """Outcome of an accepted sync."""

    success: bool
    version: int
    last_modified_at: str
    payload: dict[str, Any]
    conflict_resolved: bool
    strategy: str
    message: str | None


class SyncStatusResponse(BaseModel):
    """Current server state of one entity."""

    entity_type: str
    entity_id: str
    version: int
    last_modified_at: str
    last_modified_by_device_id: str
    payload: dict[str, Any]


class ConflictRecordResponse(BaseModel):
    """One resolved conflict."""

    entity_type: str
    entity_id: str
    device_id: str
    server_version: int
    client_version: int
    server_payload: dict[str, Any]
    client_payload: dict[str, Any]
    strategy: str
    resolved_payload: dict[str, Any]
    winning_source: str
    detected_at: str


# === Queue schemas ===


class EnqueueRequest(BaseModel):
    """Request body for queueing an offline change."""

    user_id: str = Field(min_length=1)
    device_id: str = Field(min_length=1)
    entity_type: str = Field(min_length=1)
    entity_id: str = Field(min_length=1)
    operation: str
    version: StrictInt = Field(ge=0)
    payload: dict[str, Any] | None = None


class EnqueueResponse(BaseModel):
    """Response for a queued change."""

    id: str
    pending_count: int


class DrainResponse(BaseModel):
    """Counts from one queue drain."""

    processed: int
    failed: int
    dropped: int


class QueueStatusResponse(BaseModel):
    """Snapshot of the offline queue."""

    pending_count: int
    is_processing: bool


# === Health schema ===


class HealthResponse(BaseModel):
    """Health check response."""

    status: str


# === Converters ===


def device_to_response(device: Device) -> DeviceResponse:
    """Convert Device to response model."""
    return DeviceResponse(**device.to_dict())


def result_to_response(result: SyncResult) -> SyncResultResponse:
    """Convert SyncResult to response model."""
    return SyncResultResponse(**result.to_dict())


def status_to_response(info: SyncStatusInfo) -> SyncStatusResponse:
    """Convert SyncStatusInfo to response model."""
    return SyncStatusResponse(
        entity_type=info.entity_type,
        entity_id=info.entity_id,
        version=info.version,
        last_modified_at=info.last_modified_at.isoformat(),
        last_modified_by_device_id=info.last_modified_by_device_id,
        payload=info.payload,
    )


def conflict_to_response(record: ConflictRecord) -> ConflictRecordResponse:
    """Convert ConflictRecord to response model."""
    return ConflictRecordResponse(**record.to_dict())


def queue_status_to_response(status: QueueStatus) -> QueueStatusResponse:
    """Convert QueueStatus to response model."""
    return QueueStatusResponse(
        pending_count=status.pending_count,
        is_processing=status.is_processing,
    )
