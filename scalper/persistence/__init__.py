"""scalper.persistence

Where finished trades go.
"""

from __future__ import annotations

from scalper.persistence.trades import (
    InMemoryTradeRepository,
    PerformanceStats,
    SqliteTradeRepository,
    TradeRepository,
)

__all__ = ["InMemoryTradeRepository", "PerformanceStats", "SqliteTradeRepository", "TradeRepository"]
