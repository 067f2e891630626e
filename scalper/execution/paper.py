"""scalper.execution.paper

Paper trading gateway.

Fills immediately at the oracle price with configurable slippage + fee. No
state of its own beyond the fill log; the lifecycle manager owns positions.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass

from scalper.core.config import PaperConfig
from scalper.core.exceptions import InvalidRequestError, OrderRejectedError
from scalper.core.types import Side, SwapFill
from scalper.market.snapshot import MarketSnapshotProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PaperFill:
    venue_ref: str
    instrument: str
    side: Side
    mid_price: float
    fill_price: float
    amount_in: float
    amount_out: float
    fee: float


class PaperSwapGateway:
    def __init__(
        self,
        *,
        provider: MarketSnapshotProvider,
        base_asset: str,
        config: PaperConfig | None = None,
        max_fills: int = 1000,
    ) -> None:
        self.provider = provider
        self.base_asset = base_asset
        self.cfg = config or PaperConfig()
        # Most recent fills only; the trade repository is the durable record.
        self.fills: deque[PaperFill] = deque(maxlen=int(max_fills))

    def _fill_price(self, *, mid: float, side: Side) -> float:
        slip = float(self.cfg.slippage_bps) / 10_000.0
        if side == Side.BUY:
            return float(mid) * (1.0 + slip)
        return float(mid) * (1.0 - slip)

    async def swap(self, input_asset: str, output_asset: str, amount: float, slippage_bps: int) -> SwapFill:
        amt = float(amount)
        if amt <= 0:
            raise InvalidRequestError("amount must be > 0")
        if float(self.cfg.slippage_bps) > float(slippage_bps):
            raise OrderRejectedError(f"paper slippage {self.cfg.slippage_bps}bps exceeds tolerance {slippage_bps}bps")

        side = Side.BUY if input_asset == self.base_asset else Side.SELL
        instrument = output_asset if side == Side.BUY else input_asset
        snap = await self.provider.fetch_snapshot(instrument, amt)
        mid = float(snap.price)
        if mid <= 0:
            raise OrderRejectedError(f"no usable price for {instrument}")

        fill_px = self._fill_price(mid=mid, side=side)
        fee_rate = float(self.cfg.fee_rate)
        if side == Side.BUY:
            fee = amt * fee_rate
            out = (amt - fee) / fill_px
        else:
            gross = amt * fill_px
            fee = gross * fee_rate
            out = gross - fee

        fill = PaperFill(
            venue_ref=f"paper-{uuid.uuid4()}",
            instrument=instrument,
            side=side,
            mid_price=mid,
            fill_price=fill_px,
            amount_in=amt,
            amount_out=out,
            fee=fee,
        )
        self.fills.append(fill)
        logger.info(
            "paper_fill",
            extra={"instrument": instrument, "side": side.value, "fill_price": fill_px, "amount_in": amt, "amount_out": out},
        )
        return SwapFill(fill_price=fill_px, amount_out=out, venue_ref=fill.venue_ref)
