"""FastAPI application for the devicesync server.

This module creates and configures the FastAPI application with:
- REST API for device registration, entity sync and the offline queue
- WebSocket push of sync events to every client of a user
- Periodic queue drains and stale-device sweeps

Usage:
    uvicorn devicesync.server.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from devicesync import __version__
from devicesync.core.config import SyncSettings
from devicesync.core.errors import (
    DeviceSyncError,
    NotFoundError,
    QueueFullError,
    ValidationError,
    VersionConflictError,
)
from devicesync.server.api.router import router as api_router
from devicesync.server.database import Database
from devicesync.server.scheduler import MaintenanceScheduler
from devicesync.server.ws import SyncEventHub
from devicesync.server.ws import router as ws_router
from devicesync.sync.coordinator import SyncCoordinator
from devicesync.sync.history import ConflictHistory
from devicesync.sync.queue import OfflineQueue
from devicesync.sync.registry import DeviceRegistry
from devicesync.sync.store import InMemoryStore, SyncStore

logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[DeviceSyncError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    VersionConflictError: status.HTTP_409_CONFLICT,
    QueueFullError: status.HTTP_429_TOO_MANY_REQUESTS,
}


def setup_logging(log_path: Path) -> None:
    """Configure logging to output to both file and stdout.

    Args:
        log_path: Path to the log file.
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(log_format)

    # Root logger for devicesync
    root_logger = logging.getLogger("devicesync")
    root_logger.setLevel(logging.INFO)
    if root_logger.handlers:
        return  # Already configured

    # Stdout handler
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    # File handler
    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Also capture uvicorn logs to file
    for uvicorn_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(uvicorn_name)
        uvicorn_logger.addHandler(file_handler)


def create_store(settings: SyncSettings) -> SyncStore:
    """Build the store selected by the settings (SQLite if db_path is set)."""
    if settings.db_path is not None:
        return Database(settings.db_path)
    return InMemoryStore()


async def _sync_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map sync core errors onto HTTP status codes."""
    code = next(
        (c for cls, c in _ERROR_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("Unhandled sync error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


async def _request_validation_handler(request: Request, exc: Exception) -> JSONResponse:
    """Report malformed request bodies as 400 like every other validation error."""
    errors = exc.errors() if isinstance(exc, RequestValidationError) else []
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(errors)},
    )


def create_app(
    settings: SyncSettings | None = None,
    store: SyncStore | None = None,
) -> FastAPI:
    """Create FastAPI application and wire the sync core.

    Tests pass an isolated store and settings with the scheduler disabled.

    Args:
        settings: Server settings (defaults are used if None).
        store: Store to use instead of the one selected by settings.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or SyncSettings()
    store = store if store is not None else create_store(settings)

    registry = DeviceRegistry(store)
    queue = OfflineQueue(
        max_retries=settings.max_retries,
        retry_delay=settings.retry_delay,
        max_queue_size=settings.max_queue_size,
        persistence_path=settings.queue_path,
    )
    hub = SyncEventHub()
    coordinator = SyncCoordinator(
        store=store,
        registry=registry,
        queue=queue,
        notifier=hub,
        history=ConflictHistory(settings.conflict_history_size),
    )
    scheduler = (
        MaintenanceScheduler(
            coordinator,
            queue_drain_interval=settings.queue_drain_interval,
            stale_sweep_interval=settings.stale_sweep_interval,
            device_offline_after=settings.device_offline_after,
        )
        if settings.scheduler_enabled
        else None
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        # Startup
        logger.info("=" * 60)
        logger.info("devicesync server starting")
        logger.info("=" * 60)
        logger.info("  Store:     %s", getattr(store, "location", type(store).__name__))
        logger.info("  Queue:     %s", settings.queue_path or "memory")
        logger.info("  Pending:   %d queued operations", len(queue))
        logger.info("  Scheduler: %s", "enabled" if scheduler else "disabled")
        logger.info("  Logs:      %s", settings.log_path.absolute())
        logger.info("=" * 60)

        if scheduler is not None:
            scheduler.start()

        yield

        # Shutdown
        logger.info("devicesync server shutting down")
        if scheduler is not None:
            scheduler.stop()
        await hub.close_all()
        queue.close()
        store.close()

    application = FastAPI(
        title="devicesync",
        description="Multi-device sync coordination server",
        version=__version__,
        lifespan=lifespan,
    )

    application.state.settings = settings
    application.state.store = store
    application.state.registry = registry
    application.state.queue = queue
    application.state.hub = hub
    application.state.coordinator = coordinator
    application.state.scheduler = scheduler

    application.add_exception_handler(DeviceSyncError, _sync_error_handler)
    application.add_exception_handler(RequestValidationError, _request_validation_handler)

    application.include_router(api_router)
    application.include_router(ws_router)

    return application


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode."""
    settings = SyncSettings.from_env()
    setup_logging(settings.log_path)
    return create_app(settings)
