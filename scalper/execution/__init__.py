"""scalper.execution

Everything that touches the venue: locks, sizing, gateways, the lifecycle
manager and its monitor.
"""

from __future__ import annotations

from scalper.execution.gateway import ExecutionGateway, InMemorySwapGateway, TransactionSigner, VenueSwapGateway
from scalper.execution.lifecycle import EntryResult, ExitResult, FailureKind, TradeLifecycleManager
from scalper.execution.locks import ExecutionLocks
from scalper.execution.monitor import MonitorScheduler
from scalper.execution.paper import PaperSwapGateway
from scalper.execution.sizing import PositionSizer, SizeDecision

__all__ = [
    "EntryResult",
    "ExecutionGateway",
    "ExecutionLocks",
    "ExitResult",
    "FailureKind",
    "InMemorySwapGateway",
    "MonitorScheduler",
    "PaperSwapGateway",
    "PositionSizer",
    "SizeDecision",
    "TradeLifecycleManager",
    "TransactionSigner",
    "VenueSwapGateway",
]
