"""scalper.core.events

Alert event names and payload serialization.

Alerts are fire-and-forget. The payload is a flat JSON-able dict so any
notifier can forward it without knowing the domain types.
"""

from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum, StrEnum
from typing import Any


class AlertEvent(StrEnum):
    ENTRY_SUCCEEDED = "entry.succeeded"
    ENTRY_FAILED = "entry.failed"
    EXIT_SUCCEEDED = "exit.succeeded"
    EXIT_FAILED = "exit.failed"
    LOOP_FATAL = "loop.fatal"


def _default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    return str(obj)


def canonical_json(obj: Any) -> str:
    """Deterministic JSON: sorted keys, compact separators."""

    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=_default)


def to_payload(obj: Any) -> dict[str, Any]:
    """Round-trip through canonical JSON so payloads hold only plain values."""

    return json.loads(canonical_json(obj))
