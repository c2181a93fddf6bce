"""Command-line interface for devicesync.

Commands:
- serve: Run the sync server with uvicorn
- devices: List the devices of a user
- status: Show the synced entities of a user
- drain: Apply pending offline operations once

The inspection commands read the SQLite database named by --db-path or
DEVICESYNC_DB_PATH.
"""

from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path

import click

from devicesync import __version__
from devicesync.core.config import SyncSettings


def _open_database(db_path: str | None) -> tuple[SyncSettings, Path]:
    settings = SyncSettings.from_env()
    resolved = Path(db_path) if db_path else settings.db_path
    if resolved is None:
        click.echo("Error: no database configured (use --db-path or DEVICESYNC_DB_PATH).", err=True)
        sys.exit(1)
    if not resolved.exists():
        click.echo(f"Error: Database not found: {resolved}", err=True)
        click.echo("Make sure the server has been run at least once.", err=True)
        sys.exit(1)
    return settings, resolved


db_path_option = click.option(
    "--db-path",
    type=click.Path(),
    default=None,
    help="Path to database file (default: DEVICESYNC_DB_PATH).",
)


@click.group()
@click.version_option(__version__)
def cli() -> None:
    """devicesync - Multi-device sync coordination."""


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", default=8000, type=int, show_default=True, help="Bind port.")
@click.option("--reload", is_flag=True, help="Reload on code changes (development).")
def serve(host: str, port: int, reload: bool) -> None:
    """Run the sync server.

    Configuration is read from DEVICESYNC_* environment variables.
    """
    import uvicorn

    uvicorn.run(
        "devicesync.server.app:app_factory",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@cli.command()
@click.argument("user_id")
@db_path_option
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table.")
def devices(user_id: str, db_path: str | None, as_json: bool) -> None:
    """List the devices of USER_ID, most recently seen first."""
    from devicesync.server.database import Database

    _, db_file = _open_database(db_path)
    db = Database(db_file)
    try:
        found = db.list_devices(user_id)
    finally:
        db.close()

    if as_json:
        click.echo(json.dumps([d.to_dict() for d in found], indent=2))
        return
    if not found:
        click.echo(f"No devices for user {user_id}.")
        return
    for device in found:
        name = device.display_name or "-"
        last_sync = device.last_sync_at.isoformat() if device.last_sync_at else "never"
        click.echo(
            f"{device.device_id}  {device.status.value:<8}  {name}  "
            f"seen {device.last_seen_at.isoformat()}  synced {last_sync}"
        )


@cli.command()
@click.argument("user_id")
@db_path_option
@click.option("--entity-type", "-t", default=None, help="Only this entity type.")
def status(user_id: str, db_path: str | None, entity_type: str | None) -> None:
    """Show the synced entities of USER_ID."""
    from devicesync.server.database import Database

    _, db_file = _open_database(db_path)
    db = Database(db_file)
    try:
        statuses = db.find_sync_statuses(user_id, entity_type)
    finally:
        db.close()

    if not statuses:
        click.echo(f"No synced entities for user {user_id}.")
        return
    for s in statuses:
        click.echo(
            f"{s.entity_type}/{s.entity_id}  v{s.version}  "
            f"by {s.last_modified_by_device_id} at {s.last_modified_at.isoformat()}"
        )


@cli.command()
@db_path_option
@click.option(
    "--queue-path",
    type=click.Path(),
    default=None,
    help="Path to queue file (default: DEVICESYNC_QUEUE_PATH).",
)
@click.option("--user-id", default=None, help="Only drain this user's operations.")
def drain(db_path: str | None, queue_path: str | None, user_id: str | None) -> None:
    """Apply pending offline operations once.

    Useful after a restart when no device has reconnected yet. Do not run
    it against a queue file that a live server is draining.
    """
    from devicesync.server.database import Database
    from devicesync.sync.coordinator import SyncCoordinator
    from devicesync.sync.queue import OfflineQueue
    from devicesync.sync.registry import DeviceRegistry

    settings, db_file = _open_database(db_path)
    resolved_queue = Path(queue_path) if queue_path else settings.queue_path
    if resolved_queue is None or not resolved_queue.exists():
        click.echo("No persisted queue found; nothing to drain.")
        return
    settings = replace(settings, queue_path=resolved_queue)

    db = Database(db_file)
    queue = OfflineQueue(
        max_retries=settings.max_retries,
        retry_delay=settings.retry_delay,
        max_queue_size=settings.max_queue_size,
        persistence_path=settings.queue_path,
    )
    coordinator = SyncCoordinator(db, DeviceRegistry(db), queue)
    try:
        if user_id:
            result = asyncio.run(coordinator.process_queue_for_user(user_id))
        else:
            result = asyncio.run(coordinator.process_queue())
        click.echo(
            f"Processed {result.processed}, failed {result.failed}, "
            f"dropped {result.dropped}; {len(queue)} still pending."
        )
    finally:
        queue.close()
        db.close()


def main() -> None:
    """Console script entry point."""
    cli()


if __name__ == "__main__":
    main()
