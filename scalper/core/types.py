"""scalper.core.types

Lightweight dataclasses for hot-path objects.

Pydantic models own the config boundary; dataclasses keep the trade path lean.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class Side(StrEnum):
    BUY = "buy"
    SELL = "sell"


class Trend(StrEnum):
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


class VolumeTrend(StrEnum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class MarketCondition(StrEnum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


@dataclass(frozen=True, slots=True)
class TradeSignal:
    instrument: str
    symbol: str
    strategy_id: str
    requested_amount: float
    entry_reason: str


@dataclass(frozen=True, slots=True)
class MarketSnapshot:
    instrument: str
    price: float
    liquidity: float
    price_impact_pct: float
    observed_at: datetime
    volume_24h: float = 0.0
    short_term_trend: Trend = Trend.NEUTRAL
    medium_term_trend: Trend = Trend.NEUTRAL
    volume_trend: VolumeTrend = VolumeTrend.STABLE
    condition: MarketCondition = MarketCondition.NEUTRAL
    confidence: float = 0.5
    rsi: float = 50.0
    macd_histogram: float = 0.0
    volatility: float = 0.0
    round_trip_cost: float | None = None


@dataclass(frozen=True, slots=True)
class SwapFill:
    """What the venue reports back. Fields may be missing on a bad fill."""

    fill_price: float | None
    amount_out: float | None
    venue_ref: str | None

    @property
    def complete(self) -> bool:
        return bool(self.fill_price) and bool(self.venue_ref) and self.amount_out is not None and self.amount_out > 0


@dataclass(frozen=True, slots=True)
class TradeRecord:
    instrument: str
    symbol: str
    strategy_id: str
    entry_price: float
    exit_price: float
    amount_in: float
    amount_out: float
    quantity: float
    realized_pnl: float
    realized_pnl_pct: float
    entry_ref: str
    exit_ref: str
    entry_reason: str
    exit_reason: str
    entry_time: datetime
    exit_time: datetime
    market_condition: str = MarketCondition.NEUTRAL.value


@dataclass(frozen=True, slots=True)
class RiskCheck:
    is_valid: bool
    reasons: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)
