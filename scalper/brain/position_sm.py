"""scalper.brain.position_sm

Position state machine.

OPEN → CLOSING → CLOSED, with CLOSING → OPEN when a sell fails and the
position has to be picked up again on the next tick.

This is a deterministic lifecycle model. It does *not* execute trades.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Final


class PositionStatus(StrEnum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


ALLOWED_TRANSITIONS: Final[dict[PositionStatus, set[PositionStatus]]] = {
    PositionStatus.OPEN: {PositionStatus.CLOSING},
    PositionStatus.CLOSING: {PositionStatus.OPEN, PositionStatus.CLOSED},
    PositionStatus.CLOSED: set(),
}


@dataclass(frozen=True, slots=True)
class PositionTransition:
    previous: PositionStatus
    new: PositionStatus
    reason: str


@dataclass(slots=True)
class Position:
    instrument: str
    symbol: str
    strategy_id: str
    entry_price: float
    amount_in: float  # base units committed
    quantity: float  # instrument units received
    entry_time: datetime
    stop_loss: float
    take_profit: float
    entry_ref: str
    entry_reason: str
    market_condition: str = "neutral"
    highest_price: float = 0.0
    status: PositionStatus = PositionStatus.OPEN

    def __post_init__(self) -> None:
        if self.highest_price < self.entry_price:
            self.highest_price = float(self.entry_price)

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def observe_price(self, price: float) -> float:
        """Raise the high-water mark; never lowers it."""

        if price > self.highest_price:
            self.highest_price = float(price)
        return self.highest_price

    def transition(self, new_status: PositionStatus, *, reason: str) -> PositionTransition:
        allowed = ALLOWED_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise ValueError(f"Invalid transition {self.status} -> {new_status}")
        t = PositionTransition(previous=self.status, new=new_status, reason=reason)
        self.status = new_status
        return t
