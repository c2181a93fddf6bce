"""Shared configuration for devicesync.

Settings are read from ``DEVICESYNC_*`` environment variables by the server
and the CLI, and can be constructed directly in tests.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "DEVICESYNC_"


@dataclass
class SyncSettings:
    """Configuration of the sync core and its server.

    Attributes:
        db_path: SQLite database for devices and sync status. None keeps
            everything in memory.
        queue_path: SQLite file backing the offline queue. None keeps the
            queue in memory.
        log_path: Log file written next to stdout.
        max_retries: Processing attempts before a queued item is dropped.
        retry_delay: Seconds to wait after each failed queue item.
        max_queue_size: Queue length at which enqueue is rejected.
        conflict_history_size: Conflict records kept per entity (0 disables).
        device_offline_after: Seconds without heartbeat before the sweeper
            marks a device offline.
        scheduler_enabled: Whether the server runs periodic maintenance jobs.
        queue_drain_interval: Seconds between periodic queue drains.
        stale_sweep_interval: Seconds between stale-device sweeps.
    """

    db_path: Path | None = None
    queue_path: Path | None = None
    log_path: Path = Path("devicesync-server.log")
    max_retries: int = 3
    retry_delay: float = 1.0
    max_queue_size: int = 1000
    conflict_history_size: int = 10
    device_offline_after: int = 300
    scheduler_enabled: bool = True
    queue_drain_interval: int = 30
    stale_sweep_interval: int = 60

    def __post_init__(self) -> None:
        """Validate numeric limits."""
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.retry_delay < 0:
            raise ValueError("retry_delay must not be negative")
        if self.max_queue_size < 1:
            raise ValueError("max_queue_size must be at least 1")
        if self.conflict_history_size < 0:
            raise ValueError("conflict_history_size must not be negative")
        if self.device_offline_after < 1:
            raise ValueError("device_offline_after must be at least 1 second")
        if self.queue_drain_interval < 1 or self.stale_sweep_interval < 1:
            raise ValueError("scheduler intervals must be at least 1 second")

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> SyncSettings:
        """Build settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ).

        Returns:
            Settings with defaults for every unset variable.
        """
        env = os.environ if environ is None else environ

        def _get(name: str) -> str | None:
            value = env.get(ENV_PREFIX + name)
            return value if value else None

        def _path(name: str) -> Path | None:
            value = _get(name)
            return Path(value) if value else None

        defaults = cls()
        return cls(
            db_path=_path("DB_PATH"),
            queue_path=_path("QUEUE_PATH"),
            log_path=_path("LOG_PATH") or defaults.log_path,
            max_retries=int(_get("MAX_RETRIES") or defaults.max_retries),
            retry_delay=float(_get("RETRY_DELAY") or defaults.retry_delay),
            max_queue_size=int(_get("MAX_QUEUE_SIZE") or defaults.max_queue_size),
            conflict_history_size=int(
                _get("CONFLICT_HISTORY_SIZE") or defaults.conflict_history_size
            ),
            device_offline_after=int(
                _get("DEVICE_OFFLINE_AFTER") or defaults.device_offline_after
            ),
            scheduler_enabled=(_get("SCHEDULER_ENABLED") or "1").lower()
            not in ("0", "false", "no", "off"),
            queue_drain_interval=int(
                _get("QUEUE_DRAIN_INTERVAL") or defaults.queue_drain_interval
            ),
            stale_sweep_interval=int(
                _get("STALE_SWEEP_INTERVAL") or defaults.stale_sweep_interval
            ),
        )
