"""scalper.execution.sizing

Position sizing and slippage tolerance.

Both start from a base and get nudged by momentum. Every weight comes from
``SizingConfig``. Size is clamped to ``[0, max_position_size]`` and slippage
to ``[1, max_slippage_bps]`` after all multipliers apply.
"""

from __future__ import annotations

from dataclasses import dataclass

from scalper.core.config import SizingConfig
from scalper.core.types import MarketCondition, MarketSnapshot, Trend, VolumeTrend


@dataclass(frozen=True, slots=True)
class SizeDecision:
    amount: float
    multiplier: float
    capped: bool


class PositionSizer:
    def __init__(self, config: SizingConfig | None = None) -> None:
        self.config = config or SizingConfig()

    def multiplier(self, snapshot: MarketSnapshot) -> float:
        cfg = self.config
        m = max(0.0, min(1.0, float(snapshot.confidence)))

        if snapshot.rsi < cfg.oversold_rsi:
            m *= float(cfg.oversold_mult)
        elif snapshot.rsi > cfg.overbought_rsi:
            m *= float(cfg.overbought_mult)

        if snapshot.macd_histogram > 0:
            m *= float(cfg.bullish_momentum_mult)
        else:
            m *= float(cfg.bearish_momentum_mult)
        return float(m)

    def size(self, *, requested_amount: float, snapshot: MarketSnapshot, max_position_size: float) -> SizeDecision:
        mult = self.multiplier(snapshot)
        raw = float(requested_amount) * mult
        cap = float(max_position_size)
        amount = max(0.0, min(raw, cap))
        return SizeDecision(amount=amount, multiplier=mult, capped=raw > cap)

    def slippage_bps(self, *, snapshot: MarketSnapshot, max_slippage_bps: int) -> int:
        cfg = self.config
        ceiling = float(max_slippage_bps)
        s = ceiling

        if snapshot.condition == MarketCondition.BULLISH and snapshot.confidence > cfg.strong_confidence:
            s *= float(cfg.strong_trend_slippage_mult)
        elif snapshot.condition == MarketCondition.BEARISH:
            s *= float(cfg.bearish_slippage_mult)

        if snapshot.volume_trend == VolumeTrend.INCREASING:
            s *= float(cfg.volume_increasing_slippage_mult)
        elif snapshot.volume_trend == VolumeTrend.DECREASING:
            s *= float(cfg.volume_decreasing_slippage_mult)

        return max(1, int(min(s, ceiling)))

    def entry_allowed(self, snapshot: MarketSnapshot) -> bool:
        """Entry filter: skip overbought, bearish-momentum or misaligned markets."""

        cfg = self.config
        if snapshot.condition == MarketCondition.BEARISH and snapshot.confidence > cfg.strong_confidence:
            return False
        if snapshot.rsi > cfg.overbought_rsi:
            return False
        if snapshot.rsi < cfg.oversold_rsi:
            return True
        if snapshot.macd_histogram < 0:
            return False
        if snapshot.short_term_trend != snapshot.medium_term_trend:
            return False
        return snapshot.short_term_trend != Trend.DOWN or snapshot.medium_term_trend != Trend.DOWN
