"""Structured telemetry events for sanitize, validate and apply stages."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePath
from typing import Any, Mapping

TELEMETRY_LOGGER = logging.getLogger("diffguard.telemetry")

_SCALARS = (str, int, float, bool, type(None))


def _jsonable(value: Any) -> Any:
    """Reduce ``value`` to something :func:`json.dumps` accepts."""
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, _SCALARS):
        return value
    if isinstance(value, PurePath):
        return value.as_posix()
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    return str(value)


def emit_event(event: str, **fields: Any) -> None:
    """Log one compact JSON record named ``event`` at INFO on the telemetry logger."""
    if not TELEMETRY_LOGGER.isEnabledFor(logging.INFO):
        return
    record = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    record.update({name: _jsonable(value) for name, value in fields.items()})
    TELEMETRY_LOGGER.info(json.dumps(record, separators=(",", ":"), ensure_ascii=True))


__all__ = ["TELEMETRY_LOGGER", "emit_event"]
