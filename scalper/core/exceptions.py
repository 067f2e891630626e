"""scalper.core.exceptions

Errors are part of the interface.

Only ``ValidationError`` is meant to escape the lifecycle manager. Everything
else is caught at the boundary and turned into a typed result.
"""

from __future__ import annotations


class ScalperError(Exception):
    """Base exception for scalper."""


class ConfigError(ScalperError):
    """Configuration is missing, invalid, or inconsistent."""


class ValidationError(ScalperError, ValueError):
    """Malformed input from the caller. Never retried."""


class LockConflictError(ScalperError):
    """Another enter/exit already holds the instrument."""

    def __init__(self, instrument: str):
        self.instrument = str(instrument)
        super().__init__(f"execution already in progress for {self.instrument}")


class VenueError(ScalperError):
    """External venue or oracle call failed."""


class RateLimitedError(VenueError):
    """The venue asked us to slow down."""


class InvalidRequestError(VenueError):
    """The venue refused the request as malformed."""


class VenueUnavailableError(VenueError):
    """Transport failure, timeout, or 5xx."""


class OrderRejectedError(VenueError):
    """The venue accepted the request but would not fill it."""


class SnapshotUnavailableError(ScalperError):
    """No market snapshot after all retry attempts."""


class ExecutionFailedError(ScalperError):
    """Swap failed after retries, or the fill came back incomplete."""


class PersistenceError(ScalperError):
    """A trade record could not be written. The close still stands."""


class FatalLoopError(ScalperError):
    """Too many consecutive failures in the outer loop."""
