"""Input validation shared by the coordinator and the offline queue.

All helpers raise ValidationError so that bad input is rejected before
any state is touched.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from devicesync.core.errors import ValidationError
from devicesync.core.types import OperationType


def require_text(name: str, value: Any) -> str:
    """Require a non-empty string field."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Missing required field: {name}")
    return value


def require_version(value: Any) -> int:
    """Require a non-negative integer version (booleans are rejected)."""
    if value is None:
        raise ValidationError("Missing required field: version")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"version must be an integer, got {type(value).__name__}")
    if value < 0:
        raise ValidationError(f"version must not be negative, got {value}")
    return value


def require_payload(value: Any, *, optional: bool = False) -> dict[str, Any] | None:
    """Require a dict payload (or None when optional)."""
    if value is None:
        if optional:
            return None
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"payload must be an object, got {type(value).__name__}")
    return value


def require_timestamp(name: str, value: Any) -> datetime:
    """Require a datetime field (naive values are taken as UTC later)."""
    if not isinstance(value, datetime):
        raise ValidationError(f"{name} must be a datetime, got {type(value).__name__}")
    return value


def coerce_operation(value: Any) -> OperationType:
    """Parse a queued operation name."""
    if isinstance(value, OperationType):
        return value
    try:
        return OperationType(value)
    except ValueError:
        allowed = ", ".join(op.value for op in OperationType)
        raise ValidationError(f"Unknown operation {value!r} (expected one of: {allowed})") from None
