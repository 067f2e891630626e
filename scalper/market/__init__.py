"""scalper.market

What the market looks like right now, and how sure we are about it.
"""

from __future__ import annotations

from scalper.market.snapshot import (
    MarketHistory,
    MarketSnapshotProvider,
    RetryingSnapshotProvider,
    VenueSnapshotProvider,
)

__all__ = [
    "MarketHistory",
    "MarketSnapshotProvider",
    "RetryingSnapshotProvider",
    "VenueSnapshotProvider",
]
