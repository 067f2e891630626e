"""scalper.core.time

The only time helper surface in the codebase. Components take a ``clock``
callable so tests can move time without sleeping.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return an aware UTC datetime."""

    return datetime.now(tz=UTC)


def parse_dt(value: str) -> datetime:
    """Parse an ISO-8601 string into an aware UTC datetime.

    Accepts a `Z` suffix, explicit offsets, and naive timestamps (assumed UTC).

    Raises:
        ValueError: if parsing fails.
    """

    v = value.strip()
    if v.endswith("Z"):
        v = v[:-1] + "+00:00"

    dt = datetime.fromisoformat(v)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def elapsed_ms(since: datetime, *, now: datetime | None = None) -> int:
    ref = now or utc_now()
    if since.tzinfo is None:
        since = since.replace(tzinfo=UTC)
    return int((ref - since.astimezone(UTC)) / timedelta(milliseconds=1))
