"""scalper.brain.exit_policy

When to leave.

Fixed priority, first match wins:
1) time expired (unconditional)
2) trailing stop (only while in profit)
3) profit target
4) loss limit
5) break-even after round-trip costs

The only side effect is raising the position's high-water mark before the
rules run, so the trailing stop sees the price that just arrived.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum

from scalper.brain.position_sm import Position
from scalper.core.config import ExitConfig
from scalper.core.time import utc_now
from scalper.core.types import MarketCondition, MarketSnapshot

_EPS = 1e-12


class ExitReason(StrEnum):
    TIME_EXPIRED = "time_expired"
    TRAILING_STOP = "trailing_stop"
    PROFIT_TARGET = "profit_target"
    LOSS_LIMIT = "loss_limit"
    BREAK_EVEN = "break_even"


@dataclass(frozen=True, slots=True)
class ExitDecision:
    should_close: bool
    reason: ExitReason | None
    current_price: float
    pnl: float
    highest_price: float


class ExitPolicy:
    def __init__(self, config: ExitConfig, *, strong_confidence: float = 0.7) -> None:
        self.config = config
        self.strong_confidence = float(strong_confidence)

    @property
    def max_hold(self) -> timedelta:
        return timedelta(milliseconds=int(self.config.max_hold_time_ms))

    def break_even_price(self, position: Position, snapshot: MarketSnapshot) -> float:
        cost = snapshot.round_trip_cost
        if cost is None:
            cost = float(self.config.default_round_trip_cost)
        return position.entry_price * (1.0 + float(cost) / position.amount_in)

    def evaluate(self, position: Position, snapshot: MarketSnapshot, *, now: datetime | None = None) -> ExitDecision:
        n = now or utc_now()
        current = float(snapshot.price)
        highest = position.observe_price(current)
        pnl = (current - position.entry_price) / position.entry_price

        def _close(reason: ExitReason) -> ExitDecision:
            return ExitDecision(should_close=True, reason=reason, current_price=current, pnl=pnl, highest_price=highest)

        if n - position.entry_time >= self.max_hold:
            return _close(ExitReason.TIME_EXPIRED)

        drawdown = (highest - current) / highest if highest > 0 else 0.0
        if pnl > 0 and drawdown >= float(self.config.trailing_stop_percent) - _EPS:
            return _close(ExitReason.TRAILING_STOP)

        if pnl >= float(self.config.min_profit_percent) - _EPS:
            return _close(ExitReason.PROFIT_TARGET)

        if pnl <= -float(self.config.max_loss_percent) + _EPS:
            return _close(ExitReason.LOSS_LIMIT)

        if current >= self.break_even_price(position, snapshot) - _EPS:
            return _close(ExitReason.BREAK_EVEN)

        return ExitDecision(should_close=False, reason=None, current_price=current, pnl=pnl, highest_price=highest)

    def entry_levels(self, entry_price: float, snapshot: MarketSnapshot) -> tuple[float, float]:
        """Stop-loss and take-profit prices recorded on a new position."""

        cfg = self.config
        stop_pct = float(cfg.stop_loss_base_pct)
        target_pct = float(cfg.take_profit_base_pct)

        if snapshot.condition == MarketCondition.BULLISH and snapshot.confidence > self.strong_confidence:
            stop_pct *= float(cfg.strong_trend_stop_mult)
            target_pct *= float(cfg.strong_trend_target_mult)
        elif snapshot.condition == MarketCondition.BEARISH:
            stop_pct *= float(cfg.bearish_stop_mult)
            target_pct *= float(cfg.bearish_target_mult)

        vol = max(0.0, float(snapshot.volatility))
        stop_pct *= 1.0 + vol
        target_pct *= 1.0 + vol
        return entry_price * (1.0 - stop_pct), entry_price * (1.0 + target_pct)
