"""scalper: the trade lifecycle core.

Enter quickly, leave on schedule. Positions here are measured in minutes,
and the exit rules are decided before the entry fills.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
