"""scalper.brain

Decisions without side effects: the position lifecycle model and the exit
rules that drive it.
"""

from __future__ import annotations

from scalper.brain.exit_policy import ExitDecision, ExitPolicy, ExitReason
from scalper.brain.position_sm import Position, PositionStatus, PositionTransition

__all__ = [
    "ExitDecision",
    "ExitPolicy",
    "ExitReason",
    "Position",
    "PositionStatus",
    "PositionTransition",
]
