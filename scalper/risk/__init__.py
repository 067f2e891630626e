"""scalper.risk

Pre-trade limits and the rolling daily P&L they depend on.
"""

from __future__ import annotations

from scalper.risk.ledger import DailyStats, Exposure, RiskLedger

__all__ = ["DailyStats", "Exposure", "RiskLedger"]
