"""scalper.risk.ledger

Risk ledger: open exposure, available balance, rolling daily P&L.

``validate`` runs every check and reports every violation in a fixed order.

``reserve`` holds balance for an in-flight buy until ``release``; ``validate``
and the sizing cap only see what is left.

The rolling window is lazy. It resets the first time the ledger is touched
after the window has elapsed, not on a timer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from scalper.core.config import RiskConfig
from scalper.core.time import Clock, utc_now
from scalper.core.types import MarketSnapshot, RiskCheck

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DailyStats:
    window_start: datetime | None = None
    realized_pnl: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0


@dataclass(frozen=True, slots=True)
class Exposure:
    amount: float
    opened_at: datetime


class RiskLedger:
    def __init__(self, config: RiskConfig, *, clock: Clock = utc_now) -> None:
        self.config = config
        self._clock = clock
        self.balance = float(config.starting_balance)
        self.daily = DailyStats()
        self._open: dict[str, Exposure] = {}
        self.reserved = 0.0

    @property
    def window(self) -> timedelta:
        return timedelta(hours=float(self.config.rolling_window_hours))

    @property
    def available(self) -> float:
        """Balance not yet committed to an in-flight buy."""

        return self.balance - self.reserved

    @property
    def open_count(self) -> int:
        return len(self._open)

    def open_instruments(self) -> set[str]:
        return set(self._open)

    def is_open(self, instrument: str) -> bool:
        return instrument in self._open

    def exposure(self, instrument: str) -> Exposure | None:
        return self._open.get(instrument)

    def max_position_size(self, instrument: str) -> float:
        # Flat cap today; per-instrument caps would slot in here.
        _ = instrument
        return float(self.config.max_position_size)

    def _roll(self, now: datetime) -> None:
        start = self.daily.window_start
        if start is None:
            self.daily.window_start = now
            return
        if now - start >= self.window:
            logger.info(
                "daily_window_reset",
                extra={"previous_pnl": self.daily.realized_pnl, "trades": self.daily.total_trades},
            )
            self.daily = DailyStats(window_start=now)

    def rolling_pnl(self, *, now: datetime | None = None) -> float:
        self._roll(now or self._clock())
        return float(self.daily.realized_pnl)

    def validate(
        self,
        instrument: str,
        amount: float,
        snapshot: MarketSnapshot,
        *,
        now: datetime | None = None,
    ) -> RiskCheck:
        n = now or self._clock()
        reasons: list[str] = []
        details: dict[str, object] = {}
        amt = float(amount)

        available = self.available
        if available + 1e-12 < amt:
            reasons.append("insufficient_balance")
            details["insufficient_balance"] = f"available {available:.6f} < amount {amt:.6f}"

        cap = self.max_position_size(instrument)
        if amt > cap:
            reasons.append("max_position_size")
            details["max_position_size"] = f"amount {amt:.6f} exceeds max position size {cap:.6f}"

        if self.is_open(instrument):
            reasons.append("already_open")
            details["already_open"] = f"{instrument} already has an open position"

        pnl = self.rolling_pnl(now=n)
        limit = float(self.config.max_daily_loss)
        if pnl < -limit:
            reasons.append("daily_loss_limit")
            details["daily_loss_limit"] = f"rolling pnl {pnl:.6f} below floor {-limit:.6f}"

        ceiling = float(self.config.max_price_impact_pct)
        if snapshot.price_impact_pct > ceiling:
            reasons.append("price_impact")
            details["price_impact"] = f"price impact {snapshot.price_impact_pct:.3f}% exceeds {ceiling:.3f}%"

        floor = float(self.config.min_liquidity)
        if snapshot.liquidity < floor:
            reasons.append("insufficient_liquidity")
            details["insufficient_liquidity"] = f"liquidity {snapshot.liquidity:.3f} below {floor:.3f}"

        return RiskCheck(is_valid=not reasons, reasons=reasons, details=details)

    def reserve(self, amount: float) -> None:
        amt = float(amount)
        if amt <= 0:
            raise ValueError("amount must be > 0")
        self.reserved += amt

    def release(self, amount: float) -> None:
        self.reserved = max(0.0, self.reserved - float(amount))

    def open(self, instrument: str, amount: float, *, now: datetime | None = None) -> None:
        if instrument in self._open:
            raise ValueError(f"{instrument} already open in ledger")
        amt = float(amount)
        if amt <= 0:
            raise ValueError("amount must be > 0")
        self._open[instrument] = Exposure(amount=amt, opened_at=now or self._clock())
        self.balance -= amt

    def close(self, instrument: str, realized_pnl: float, *, now: datetime | None = None) -> float:
        """Release the exposure and fold ``realized_pnl`` into the rolling sum.

        Returns the rolling P&L after the close.
        """

        exp = self._open.pop(instrument, None)
        if exp is None:
            raise ValueError(f"{instrument} not open in ledger")

        pnl = float(realized_pnl)
        self.balance += exp.amount + pnl

        self._roll(now or self._clock())
        self.daily.realized_pnl += pnl
        self.daily.total_trades += 1
        if pnl > 0:
            self.daily.winning_trades += 1
        return float(self.daily.realized_pnl)
