"""scalper.execution.lifecycle

Trade lifecycle manager.

Responsibilities:
- accept a TradeSignal and run it through lock, capacity, snapshot, risk,
  sizing and the buy leg
- own the active-position set
- close positions on request or when the monitoring tick says so
- hand finished trades to the repository and alerts to the notifier

Only ``ValidationError`` is raised out of ``enter``. Everything else comes
back as an ``EntryResult`` / ``ExitResult`` with a ``FailureKind``.

Ordering rules:
- the instrument lock is the only serialization primitive; nothing here
  waits on it
- in-flight entries are reserved before the first await so the capacity
  cap holds across concurrent ``enter`` calls
- the buy amount is reserved on the ledger for the duration of the swap so
  concurrent entries on other instruments cannot overdraw the balance
- the in-memory close (ledger + active set) happens before the persistence
  write, so a slow or failing store never leaves a sold position open
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from scalper.brain.exit_policy import ExitDecision, ExitPolicy
from scalper.brain.position_sm import Position, PositionStatus
from scalper.core.config import Config
from scalper.core.events import AlertEvent
from scalper.core.exceptions import (
    ExecutionFailedError,
    LockConflictError,
    RateLimitedError,
    SnapshotUnavailableError,
    ValidationError,
    VenueUnavailableError,
)
from scalper.core.retry import RetryPolicy, Sleep, retry_async
from scalper.core.time import Clock, elapsed_ms, utc_now
from scalper.core.types import MarketSnapshot, SwapFill, TradeRecord, TradeSignal
from scalper.execution.gateway import ExecutionGateway
from scalper.execution.locks import ExecutionLocks
from scalper.execution.sizing import PositionSizer
from scalper.market.snapshot import MarketSnapshotProvider
from scalper.notify.alerts import Notifier
from scalper.persistence.trades import TradeRepository
from scalper.risk.ledger import RiskLedger

logger = logging.getLogger(__name__)


class FailureKind(StrEnum):
    LOCK_CONFLICT = "lock_conflict"
    DUPLICATE_POSITION = "duplicate_position"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    SNAPSHOT_UNAVAILABLE = "snapshot_unavailable"
    RISK_REJECTION = "risk_rejection"
    EXECUTION_FAILED = "execution_failed"
    NOT_FOUND = "not_found"


@dataclass(frozen=True, slots=True)
class EntryResult:
    instrument: str
    ok: bool
    kind: FailureKind | None = None
    reasons: list[str] = field(default_factory=list)
    error: str | None = None
    position: Position | None = None
    snapshot: MarketSnapshot | None = None
    amount: float | None = None
    slippage_bps: int | None = None
    fill: SwapFill | None = None


@dataclass(frozen=True, slots=True)
class ExitResult:
    instrument: str
    ok: bool
    kind: FailureKind | None = None
    reason: str | None = None
    error: str | None = None
    record: TradeRecord | None = None
    persisted: bool = False


def _describe(e: BaseException) -> str:
    return f"{type(e).__name__}: {e}"


def validate_signal(signal: TradeSignal) -> None:
    for attr in ("instrument", "symbol", "strategy_id"):
        v = getattr(signal, attr, None)
        if not isinstance(v, str) or not v.strip():
            raise ValidationError(f"signal.{attr} must be a non-empty string")
    amt = signal.requested_amount
    if amt is None or isinstance(amt, bool) or not isinstance(amt, (int, float)):
        raise ValidationError("signal.requested_amount must be a number")
    if not math.isfinite(float(amt)) or float(amt) <= 0:
        raise ValidationError("signal.requested_amount must be finite and > 0")


class TradeLifecycleManager:
    def __init__(
        self,
        *,
        config: Config,
        provider: MarketSnapshotProvider,
        gateway: ExecutionGateway,
        ledger: RiskLedger,
        repository: TradeRepository,
        notifier: Notifier,
        policy: ExitPolicy | None = None,
        sizer: PositionSizer | None = None,
        locks: ExecutionLocks | None = None,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        self.provider = provider
        self.gateway = gateway
        self.ledger = ledger
        self.repository = repository
        self.notifier = notifier
        self.policy = policy or ExitPolicy(config.exits, strong_confidence=config.sizing.strong_confidence)
        self.sizer = sizer or PositionSizer(config.sizing)
        self.locks = locks or ExecutionLocks()
        self._clock = clock
        self._sleep = sleep

        self._active: dict[str, Position] = {}
        self._pending: set[str] = set()
        self._alerts: set[asyncio.Task[None]] = set()

        self._swap_policy = RetryPolicy.from_ms(
            attempts=config.retry.attempts,
            base_delay_ms=config.retry.base_delay_ms,
            retry_on=(RateLimitedError, VenueUnavailableError),
        )

    # ------------------------------------------------------------------
    # Read surface
    # ------------------------------------------------------------------

    @property
    def base_asset(self) -> str:
        return self.config.execution.base_asset

    @property
    def capacity(self) -> int:
        return int(self.config.risk.max_concurrent_trades)

    def has_position(self, instrument: str) -> bool:
        return instrument in self._active

    def position(self, instrument: str) -> Position | None:
        return self._active.get(instrument)

    def active_positions(self) -> list[Position]:
        return list(self._active.values())

    def in_flight(self) -> set[str]:
        return set(self._pending)

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def _alert(self, event: AlertEvent, payload: dict[str, Any]) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(event, payload))
        self._alerts.add(task)
        task.add_done_callback(self._alerts.discard)

    async def _deliver(self, event: AlertEvent, payload: dict[str, Any]) -> None:
        try:
            await self.notifier.notify(event, payload)
        except Exception as e:
            logger.warning("alert_delivery_failed", extra={"alert_event": event.value, "error": _describe(e)})

    async def flush_alerts(self) -> None:
        """Wait for every scheduled alert. Used at shutdown and in tests."""

        while self._alerts:
            await asyncio.gather(*list(self._alerts), return_exceptions=True)

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    def _entry_failed(
        self,
        signal: TradeSignal,
        kind: FailureKind,
        *,
        reasons: list[str] | None = None,
        error: str | None = None,
        snapshot: MarketSnapshot | None = None,
    ) -> EntryResult:
        result = EntryResult(
            instrument=signal.instrument,
            ok=False,
            kind=kind,
            reasons=list(reasons or []),
            error=error,
            snapshot=snapshot,
        )
        logger.info(
            "entry_rejected",
            extra={"instrument": signal.instrument, "kind": kind.value, "reasons": result.reasons, "error": error},
        )
        self._alert(
            AlertEvent.ENTRY_FAILED,
            {
                "instrument": signal.instrument,
                "symbol": signal.symbol,
                "strategy_id": signal.strategy_id,
                "kind": kind.value,
                "reasons": result.reasons,
                "error": error,
            },
        )
        return result

    async def _swap(self, input_asset: str, output_asset: str, amount: float, slippage_bps: int, *, op: str) -> SwapFill:
        fill = await retry_async(
            lambda: self.gateway.swap(input_asset, output_asset, amount, slippage_bps),
            policy=self._swap_policy,
            op=op,
            sleep=self._sleep,
        )
        if fill is None or not fill.complete:
            raise ExecutionFailedError(f"incomplete fill from venue: {fill!r}")
        return fill

    async def _snapshot(self, instrument: str, reference_size: float, *, op: str) -> MarketSnapshot:
        """Fetch a snapshot; any provider failure surfaces as ``SnapshotUnavailableError``."""

        try:
            return await self.provider.fetch_snapshot(instrument, reference_size)
        except SnapshotUnavailableError:
            raise
        except Exception as e:
            logger.error("snapshot_failed", extra={"instrument": instrument, "op": op, "error": _describe(e)})
            raise SnapshotUnavailableError(f"{instrument}: {_describe(e)}") from e

    async def enter(self, signal: TradeSignal) -> EntryResult:
        validate_signal(signal)
        instrument = signal.instrument

        try:
            token = self.locks.acquire(instrument)
        except LockConflictError as e:
            logger.info("entry_lock_conflict", extra={"instrument": instrument})
            return EntryResult(instrument=instrument, ok=False, kind=FailureKind.LOCK_CONFLICT, error=str(e))

        try:
            if instrument in self._active:
                return self._entry_failed(signal, FailureKind.DUPLICATE_POSITION, reasons=["already_open"])

            if len(self._active) + len(self._pending) >= self.capacity:
                return self._entry_failed(
                    signal,
                    FailureKind.CAPACITY_EXCEEDED,
                    reasons=[f"open {len(self._active)} + pending {len(self._pending)} >= {self.capacity}"],
                )

            self._pending.add(instrument)
            try:
                return await self._enter_reserved(signal)
            finally:
                self._pending.discard(instrument)
        finally:
            self.locks.release(instrument, token)

    async def _enter_reserved(self, signal: TradeSignal) -> EntryResult:
        instrument = signal.instrument
        requested = float(signal.requested_amount)

        try:
            snapshot = await self._snapshot(instrument, requested, op="entry")
        except SnapshotUnavailableError as e:
            return self._entry_failed(signal, FailureKind.SNAPSHOT_UNAVAILABLE, error=str(e))

        now = self._clock()
        check = self.ledger.validate(instrument, requested, snapshot, now=now)
        if not check.is_valid:
            return self._entry_failed(signal, FailureKind.RISK_REJECTION, reasons=check.reasons, snapshot=snapshot)

        if self.config.sizing.entry_filter_enabled and not self.sizer.entry_allowed(snapshot):
            return self._entry_failed(signal, FailureKind.RISK_REJECTION, reasons=["unfavorable_conditions"], snapshot=snapshot)

        cap = min(self.ledger.max_position_size(instrument), self.ledger.available)
        size = self.sizer.size(requested_amount=requested, snapshot=snapshot, max_position_size=cap)
        if size.amount <= 0:
            return self._entry_failed(signal, FailureKind.RISK_REJECTION, reasons=["size_zero"], snapshot=snapshot)
        slippage = self.sizer.slippage_bps(snapshot=snapshot, max_slippage_bps=self.config.execution.max_slippage_bps)

        # No await between validate and reserve: concurrent entries see the held balance.
        self.ledger.reserve(size.amount)
        try:
            fill = await self._swap(self.base_asset, instrument, size.amount, slippage, op=f"buy:{instrument}")
        except Exception as e:
            logger.error("entry_execution_failed", extra={"instrument": instrument, "amount": size.amount, "error": _describe(e)})
            return self._entry_failed(signal, FailureKind.EXECUTION_FAILED, error=_describe(e), snapshot=snapshot)
        finally:
            self.ledger.release(size.amount)

        entry_price = float(fill.fill_price or 0.0)
        stop_loss, take_profit = self.policy.entry_levels(entry_price, snapshot)
        opened_at = self._clock()
        position = Position(
            instrument=instrument,
            symbol=signal.symbol,
            strategy_id=signal.strategy_id,
            entry_price=entry_price,
            amount_in=size.amount,
            quantity=float(fill.amount_out or 0.0),
            entry_time=opened_at,
            stop_loss=stop_loss,
            take_profit=take_profit,
            entry_ref=str(fill.venue_ref),
            entry_reason=signal.entry_reason,
            market_condition=snapshot.condition.value,
        )

        # No await between these two: open count and active set move together.
        self._active[instrument] = position
        self.ledger.open(instrument, size.amount, now=opened_at)

        logger.info(
            "position_opened",
            extra={
                "instrument": instrument,
                "strategy_id": signal.strategy_id,
                "entry_price": entry_price,
                "amount_in": size.amount,
                "quantity": position.quantity,
                "slippage_bps": slippage,
                "entry_ref": position.entry_ref,
            },
        )
        self._alert(
            AlertEvent.ENTRY_SUCCEEDED,
            {
                "instrument": instrument,
                "symbol": signal.symbol,
                "strategy_id": signal.strategy_id,
                "entry_price": entry_price,
                "amount_in": size.amount,
                "quantity": position.quantity,
                "stop_loss": stop_loss,
                "take_profit": take_profit,
                "slippage_bps": slippage,
                "entry_ref": position.entry_ref,
                "entry_reason": signal.entry_reason,
            },
        )
        return EntryResult(
            instrument=instrument,
            ok=True,
            position=position,
            snapshot=snapshot,
            amount=size.amount,
            slippage_bps=slippage,
            fill=fill,
        )

    # ------------------------------------------------------------------
    # Exit
    # ------------------------------------------------------------------

    def _exit_failed(self, position: Position, kind: FailureKind, reason: str, error: str) -> ExitResult:
        position.transition(PositionStatus.OPEN, reason=f"exit_failed:{kind.value}")
        logger.error("exit_failed", extra={"instrument": position.instrument, "kind": kind.value, "exit_reason": reason, "error": error})
        self._alert(
            AlertEvent.EXIT_FAILED,
            {"instrument": position.instrument, "symbol": position.symbol, "kind": kind.value, "reason": reason, "error": error},
        )
        return ExitResult(instrument=position.instrument, ok=False, kind=kind, reason=reason, error=error)

    async def exit(self, instrument: str, reason: str) -> ExitResult:
        try:
            token = self.locks.acquire(instrument)
        except LockConflictError as e:
            logger.info("exit_lock_conflict", extra={"instrument": instrument})
            return ExitResult(instrument=instrument, ok=False, kind=FailureKind.LOCK_CONFLICT, reason=reason, error=str(e))

        try:
            position = self._active.get(instrument)
            if position is None or not position.is_open:
                logger.warning("exit_not_found", extra={"instrument": instrument, "exit_reason": reason})
                return ExitResult(instrument=instrument, ok=False, kind=FailureKind.NOT_FOUND, reason=reason)
            return await self._close(position, str(reason))
        finally:
            self.locks.release(instrument, token)

    async def _close(self, position: Position, reason: str) -> ExitResult:
        instrument = position.instrument
        position.transition(PositionStatus.CLOSING, reason=reason)

        try:
            snapshot = await self._snapshot(instrument, position.amount_in, op="exit")
        except SnapshotUnavailableError as e:
            return self._exit_failed(position, FailureKind.SNAPSHOT_UNAVAILABLE, reason, str(e))
        position.observe_price(snapshot.price)

        try:
            fill = await self._swap(
                instrument,
                self.base_asset,
                position.quantity,
                int(self.config.execution.max_slippage_bps),
                op=f"sell:{instrument}",
            )
        except Exception as e:
            return self._exit_failed(position, FailureKind.EXECUTION_FAILED, reason, _describe(e))

        exit_time = self._clock()
        amount_out = float(fill.amount_out or 0.0)
        pnl = amount_out - position.amount_in
        pnl_pct = pnl / position.amount_in * 100.0 if position.amount_in else 0.0
        record = TradeRecord(
            instrument=instrument,
            symbol=position.symbol,
            strategy_id=position.strategy_id,
            entry_price=position.entry_price,
            exit_price=float(fill.fill_price or snapshot.price),
            amount_in=position.amount_in,
            amount_out=amount_out,
            quantity=position.quantity,
            realized_pnl=pnl,
            realized_pnl_pct=pnl_pct,
            entry_ref=position.entry_ref,
            exit_ref=str(fill.venue_ref),
            entry_reason=position.entry_reason,
            exit_reason=reason,
            entry_time=position.entry_time,
            exit_time=exit_time,
            market_condition=position.market_condition,
        )

        position.transition(PositionStatus.CLOSED, reason=reason)
        self._active.pop(instrument, None)
        rolling = self.ledger.close(instrument, pnl, now=exit_time)

        logger.info(
            "position_closed",
            extra={
                "instrument": instrument,
                "exit_reason": reason,
                "realized_pnl": pnl,
                "realized_pnl_pct": pnl_pct,
                "rolling_pnl": rolling,
                "held_ms": elapsed_ms(position.entry_time, now=exit_time),
                "exit_ref": record.exit_ref,
            },
        )

        persisted = True
        try:
            await self.repository.save(record)
        except Exception as e:
            persisted = False
            logger.error("trade_persist_failed", extra={"instrument": instrument, "exit_ref": record.exit_ref, "error": _describe(e)})

        self._alert(
            AlertEvent.EXIT_SUCCEEDED,
            {
                "instrument": instrument,
                "symbol": position.symbol,
                "strategy_id": position.strategy_id,
                "reason": reason,
                "entry_price": record.entry_price,
                "exit_price": record.exit_price,
                "realized_pnl": pnl,
                "realized_pnl_pct": pnl_pct,
                "persisted": persisted,
            },
        )
        return ExitResult(instrument=instrument, ok=True, reason=reason, record=record, persisted=persisted)

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    async def evaluate(self, position: Position, *, now: datetime | None = None) -> ExitDecision | None:
        """Fresh snapshot + exit decision for one position. None when no snapshot."""

        try:
            snapshot = await self._snapshot(position.instrument, position.amount_in, op="monitor")
        except SnapshotUnavailableError as e:
            logger.warning("monitor_snapshot_unavailable", extra={"instrument": position.instrument, "error": str(e)})
            return None
        return self.policy.evaluate(position, snapshot, now=now or self._clock())

    async def tick(self) -> list[ExitResult]:
        """One monitoring pass over every open position.

        Instruments whose lock is held are skipped and picked up next tick.
        """

        results: list[ExitResult] = []
        for instrument in list(self._active):
            if self.locks.is_held(instrument):
                logger.debug("monitor_skip_locked", extra={"instrument": instrument})
                continue
            position = self._active.get(instrument)
            if position is None or not position.is_open:
                continue

            decision = await self.evaluate(position)
            if decision is None or not decision.should_close or decision.reason is None:
                continue

            logger.info(
                "exit_signal",
                extra={
                    "instrument": instrument,
                    "exit_reason": decision.reason.value,
                    "current_price": decision.current_price,
                    "pnl": decision.pnl,
                    "highest_price": decision.highest_price,
                },
            )
            results.append(await self.exit(instrument, decision.reason.value))
        return results
