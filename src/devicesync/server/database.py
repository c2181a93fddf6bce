"""Server database using SQLAlchemy with SQLite.

This module provides:
- Device registration storage
- Entity sync status storage with version compare-and-swap

Database implements the SyncStore port, so the registry and coordinator
run unchanged on top of it.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from devicesync.core.errors import VersionConflictError
from devicesync.core.types import DeviceStatus
from devicesync.server.models import Base, DeviceRecord, SyncStatusRecord
from devicesync.sync.store import LIVE_STATUSES, SyncStore
from devicesync.sync.types import Device, SyncStatus, as_utc

if TYPE_CHECKING:
    from sqlalchemy import Engine, Select


def _to_device(record: DeviceRecord) -> Device:
    return Device(
        device_id=record.device_id,
        user_id=record.user_id,
        display_name=record.display_name,
        kind=record.kind,
        user_agent=record.user_agent,
        status=DeviceStatus(record.status),
        last_seen_at=as_utc(record.last_seen_at),
        last_sync_at=as_utc(record.last_sync_at) if record.last_sync_at else None,
        created_at=as_utc(record.created_at),
    )


def _to_status(record: SyncStatusRecord) -> SyncStatus:
    return SyncStatus(
        user_id=record.user_id,
        entity_type=record.entity_type,
        entity_id=record.entity_id,
        version=record.version,
        last_modified_at=as_utc(record.last_modified_at),
        last_modified_by_device_id=record.last_modified_by_device_id,
        payload=dict(record.payload or {}),
    )


class Database(SyncStore):
    """SQLAlchemy database for devices and entity sync status.

    Uses SQLite with WAL mode for better concurrency with multiple readers.
    Rows are converted to plain dataclasses before the session closes, so
    nothing returned is bound to a session.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # check_same_thread=False: FastAPI runs sync endpoints in a threadpool
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )

        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")

        Base.metadata.create_all(self._engine)

    @property
    def location(self) -> str:
        return str(self._db_path)

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine)

    # === Device operations ===

    def get_device(self, device_id: str) -> Device | None:
        """Get a device by id.

        Args:
            device_id: Device id.

        Returns:
            Device if found, None otherwise.
        """
        with self._session() as session:
            record = session.get(DeviceRecord, device_id)
            return _to_device(record) if record else None

    def upsert_device(self, device: Device) -> Device:
        with self._session() as session:
            record = session.get(DeviceRecord, device.device_id)
            if record is None:
                record = DeviceRecord(device_id=device.device_id, created_at=device.created_at)
                session.add(record)

            record.user_id = device.user_id
            record.display_name = device.display_name
            record.kind = device.kind
            record.user_agent = device.user_agent
            record.status = device.status.value
            record.last_seen_at = device.last_seen_at
            record.last_sync_at = device.last_sync_at

            session.commit()
            session.refresh(record)
            return _to_device(record)

    def touch_device(
        self,
        device_id: str,
        last_seen_at: datetime,
        status: DeviceStatus | None = None,
    ) -> Device | None:
        with self._session() as session:
            record = session.get(DeviceRecord, device_id)
            if record is None:
                return None

            record.last_seen_at = last_seen_at
            if status is not None:
                record.status = status.value

            session.commit()
            session.refresh(record)
            return _to_device(record)

    def list_devices(self, user_id: str) -> list[Device]:
        """List the devices of a user, most recently seen first."""
        with self._session() as session:
            stmt = (
                select(DeviceRecord)
                .where(DeviceRecord.user_id == user_id)
                .order_by(DeviceRecord.last_seen_at.desc())
            )
            return [_to_device(r) for r in session.execute(stmt).scalars()]

    def list_stale_devices(self, cutoff: datetime) -> list[Device]:
        with self._session() as session:
            stmt = select(DeviceRecord).where(
                DeviceRecord.status.in_([s.value for s in LIVE_STATUSES]),
                DeviceRecord.last_seen_at < cutoff,
            )
            return [_to_device(r) for r in session.execute(stmt).scalars()]

    # === Sync status operations ===

    @staticmethod
    def _status_stmt(
        user_id: str, entity_type: str, entity_id: str
    ) -> Select[tuple[SyncStatusRecord]]:
        return select(SyncStatusRecord).where(
            SyncStatusRecord.user_id == user_id,
            SyncStatusRecord.entity_type == entity_type,
            SyncStatusRecord.entity_id == entity_id,
        )

    def get_sync_status(
        self, user_id: str, entity_type: str, entity_id: str
    ) -> SyncStatus | None:
        with self._session() as session:
            record = session.execute(
                self._status_stmt(user_id, entity_type, entity_id)
            ).scalar_one_or_none()
            return _to_status(record) if record else None

    def find_sync_statuses(
        self,
        user_id: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
    ) -> list[SyncStatus]:
        with self._session() as session:
            stmt = select(SyncStatusRecord).where(SyncStatusRecord.user_id == user_id)
            if entity_type is not None:
                stmt = stmt.where(SyncStatusRecord.entity_type == entity_type)
            if entity_id is not None:
                stmt = stmt.where(SyncStatusRecord.entity_id == entity_id)
            stmt = stmt.order_by(SyncStatusRecord.entity_type, SyncStatusRecord.entity_id)
            return [_to_status(r) for r in session.execute(stmt).scalars()]

    def _current_version(self, user_id: str, entity_type: str, entity_id: str) -> int:
        current = self.get_sync_status(user_id, entity_type, entity_id)
        return current.version if current else 0

    def apply_sync(self, status: SyncStatus, expected_version: int) -> SyncStatus:
        """Write a new entity version with conflict detection.

        The status row and the device's last_sync_at are committed in one
        transaction.

        Args:
            status: New state to store.
            expected_version: Version read before resolving (0 = must not exist).

        Returns:
            The stored status.

        Raises:
            VersionConflictError: If the stored version is no longer
                expected_version.
        """
        key = status.key
        with self._session() as session:
            try:
                if expected_version == 0:
                    session.add(
                        SyncStatusRecord(
                            user_id=status.user_id,
                            entity_type=status.entity_type,
                            entity_id=status.entity_id,
                            version=status.version,
                            last_modified_at=status.last_modified_at,
                            last_modified_by_device_id=status.last_modified_by_device_id,
                            payload=status.payload,
                        )
                    )
                    session.flush()
                else:
                    result = session.execute(
                        update(SyncStatusRecord)
                        .where(
                            SyncStatusRecord.user_id == status.user_id,
                            SyncStatusRecord.entity_type == status.entity_type,
                            SyncStatusRecord.entity_id == status.entity_id,
                            SyncStatusRecord.version == expected_version,
                        )
                        .values(
                            version=status.version,
                            last_modified_at=status.last_modified_at,
                            last_modified_by_device_id=status.last_modified_by_device_id,
                            payload=status.payload,
                        )
                    )
                    if result.rowcount != 1:
                        session.rollback()
                        raise VersionConflictError(
                            key, expected_version, self._current_version(*key)
                        )
            except IntegrityError:
                # Another writer created the row first
                session.rollback()
                raise VersionConflictError(
                    key, expected_version, self._current_version(*key)
                ) from None

            session.execute(
                update(DeviceRecord)
                .where(DeviceRecord.device_id == status.last_modified_by_device_id)
                .values(last_sync_at=status.last_modified_at)
            )
            session.commit()

            record = session.execute(self._status_stmt(*key)).scalar_one()
            return _to_status(record)
