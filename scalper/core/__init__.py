"""scalper.core

Core primitives. Everything else in the package may depend on this; it
depends on nothing else in the package.
"""

from .config import Config
from .exceptions import ScalperError
from .time import elapsed_ms, parse_dt, utc_now

__all__ = [
    "Config",
    "ScalperError",
    "utc_now",
    "parse_dt",
    "elapsed_ms",
]
