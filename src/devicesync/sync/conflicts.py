"""Conflict detection and resolution.

Decides, for one entity, which payload wins when a client submits a state
based on a different version than the server holds. Everything here is a
pure function of its arguments: no I/O, no shared state, safe to call
concurrently and to replay.

Conflict predicate:
    A conflict exists iff client_version != server_version. Equal versions
    mean the client is resubmitting on top of what it already had (or is
    writing a new entity), and its payload is accepted as-is.

Strategies:
    last-write-wins   client wins if client_updated_at >= server_updated_at
    first-write-wins  server wins if server_updated_at <= client_updated_at
    server-wins       server payload always wins
    client-wins       client payload always wins
    merge             key-wise merge, client overrides leaf conflicts
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from devicesync.core.types import ConflictStrategy, EntityType, WinningSource
from devicesync.sync.types import Payload, as_utc

logger = logging.getLogger(__name__)

FALLBACK_STRATEGY = ConflictStrategy.LAST_WRITE_WINS

_DEFAULT_STRATEGIES: dict[str, ConflictStrategy] = {
    EntityType.PROGRESS.value: ConflictStrategy.LAST_WRITE_WINS,
    EntityType.PREFERENCES.value: ConflictStrategy.MERGE,
    EntityType.COURSE_STATE.value: ConflictStrategy.LAST_WRITE_WINS,
    EntityType.NOTES.value: ConflictStrategy.MERGE,
    EntityType.GENERIC.value: ConflictStrategy.LAST_WRITE_WINS,
}


@dataclass(frozen=True)
class ConflictInput:
    """Both sides of a possible conflict for one entity."""

    entity_type: str
    entity_id: str
    device_id: str
    server_version: int
    server_updated_at: datetime
    server_payload: Payload
    client_version: int
    client_updated_at: datetime
    client_payload: Payload


@dataclass(frozen=True)
class ConflictResult:
    """Result of a resolution call."""

    resolved: bool
    payload: Payload
    strategy: ConflictStrategy
    conflict_detected: bool
    winning_source: WinningSource
    message: str | None = None


def default_strategy(entity_type: str | EntityType) -> ConflictStrategy:
    """Get the strategy used for an entity type when the caller gives none.

    Args:
        entity_type: Entity type (unknown types are allowed).

    Returns:
        The configured default, or last-write-wins for unknown types.
    """
    key = entity_type.value if isinstance(entity_type, EntityType) else entity_type
    return _DEFAULT_STRATEGIES.get(key, FALLBACK_STRATEGY)


def normalize_strategy(value: ConflictStrategy | str) -> ConflictStrategy:
    """Coerce a strategy name into a ConflictStrategy.

    Unknown names are not an error: failing a sync over a cosmetic parameter
    is worse than a safe default, so they are logged and downgraded.

    Args:
        value: Strategy enum or its string value.

    Returns:
        The matching strategy, or last-write-wins if unknown.
    """
    if isinstance(value, ConflictStrategy):
        return value
    try:
        return ConflictStrategy(value)
    except ValueError:
        logger.warning(
            "Unknown conflict strategy: %r, defaulting to %s",
            value,
            FALLBACK_STRATEGY.value,
        )
        return FALLBACK_STRATEGY


def has_conflict(conflict: ConflictInput) -> bool:
    """Check whether client and server disagree on the base version."""
    return conflict.client_version != conflict.server_version


def _is_mapping(value: Any) -> bool:
    return isinstance(value, dict)


def _merge(server: Payload, client: Payload, depth: int) -> Payload:
    result: Payload = dict(server)
    for key, client_value in client.items():
        if key not in server:
            result[key] = client_value
            continue
        server_value = server[key]
        if depth > 0 and _is_mapping(server_value) and _is_mapping(client_value):
            result[key] = _merge(server_value, client_value, depth - 1)
        else:
            result[key] = client_value
    return result


def merge_payloads(server: Payload, client: Payload) -> Payload:
    """Merge two payloads key by key.

    Keys present on one side only are taken from that side. When both sides
    hold a dict for the same top-level key, those dicts are merged one level
    deeper with the same rule. Every other collision is won by the client.
    Lists are never merged element-wise.

    Args:
        server: Server-side payload.
        client: Client-side payload.

    Returns:
        A new dict; neither input is modified.
    """
    return copy.deepcopy(_merge(server, client, depth=1))


def resolve_conflict(
    conflict: ConflictInput,
    strategy: ConflictStrategy | str,
) -> ConflictResult:
    """Resolve a possible conflict with the given strategy.

    Never raises for an unknown strategy name (see normalize_strategy).

    Args:
        conflict: Server and client state.
        strategy: Strategy to apply if a conflict is detected.

    Returns:
        ConflictResult with the payload to persist.
    """
    chosen = normalize_strategy(strategy)

    if not has_conflict(conflict):
        return ConflictResult(
            resolved=True,
            payload=conflict.client_payload,
            strategy=chosen,
            conflict_detected=False,
            winning_source=WinningSource.CLIENT,
            message="No conflict; accepting client state",
        )

    server_time = as_utc(conflict.server_updated_at)
    client_time = as_utc(conflict.client_updated_at)

    if chosen is ConflictStrategy.LAST_WRITE_WINS:
        use_client = client_time >= server_time
        return ConflictResult(
            resolved=True,
            payload=conflict.client_payload if use_client else conflict.server_payload,
            strategy=chosen,
            conflict_detected=True,
            winning_source=WinningSource.CLIENT if use_client else WinningSource.SERVER,
            message="Client has newer timestamp" if use_client else "Server has newer timestamp",
        )

    if chosen is ConflictStrategy.FIRST_WRITE_WINS:
        use_server = server_time <= client_time
        return ConflictResult(
            resolved=True,
            payload=conflict.server_payload if use_server else conflict.client_payload,
            strategy=chosen,
            conflict_detected=True,
            winning_source=WinningSource.SERVER if use_server else WinningSource.CLIENT,
            message="Server was written first" if use_server else "Client was written first",
        )

    if chosen is ConflictStrategy.SERVER_WINS:
        return ConflictResult(
            resolved=True,
            payload=conflict.server_payload,
            strategy=chosen,
            conflict_detected=True,
            winning_source=WinningSource.SERVER,
            message="Server state retained",
        )

    if chosen is ConflictStrategy.CLIENT_WINS:
        return ConflictResult(
            resolved=True,
            payload=conflict.client_payload,
            strategy=chosen,
            conflict_detected=True,
            winning_source=WinningSource.CLIENT,
            message="Client state accepted",
        )

    return ConflictResult(
        resolved=True,
        payload=merge_payloads(conflict.server_payload, conflict.client_payload),
        strategy=ConflictStrategy.MERGE,
        conflict_detected=True,
        winning_source=WinningSource.MERGED,
        message="Merged server and client changes",
    )
