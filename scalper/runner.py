"""scalper.runner

Outer trading loop and runtime wiring.

The loop pulls signals, skips instruments that already have a trade, spaces
entries by ``loop.min_time_between_trades_s`` and hands the rest to the
lifecycle manager. Per-trade failures come back as results; the loop only
counts the ones that point at a sick environment (snapshot or execution
failures, unreadable signals). Past ``loop.max_consecutive_failures`` it
sends ``loop.fatal`` and raises ``FatalLoopError``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Protocol, runtime_checkable

from scalper.core.client import ClientConfig, VenueClient
from scalper.core.config import Config, LoopConfig
from scalper.core.events import AlertEvent
from scalper.core.exceptions import ConfigError, FatalLoopError, ValidationError
from scalper.core.retry import RetryPolicy, Sleep
from scalper.core.time import Clock, utc_now
from scalper.core.types import TradeSignal
from scalper.execution.gateway import ExecutionGateway, TransactionSigner, VenueSwapGateway
from scalper.execution.lifecycle import EntryResult, FailureKind, TradeLifecycleManager
from scalper.execution.monitor import MonitorScheduler
from scalper.execution.paper import PaperSwapGateway
from scalper.market.snapshot import RetryingSnapshotProvider, VenueSnapshotProvider
from scalper.notify.alerts import FanoutNotifier, LogNotifier, Notifier, WebhookNotifier
from scalper.persistence.trades import SqliteTradeRepository
from scalper.risk.ledger import RiskLedger

logger = logging.getLogger(__name__)

# Failure kinds that say the environment is unhealthy, not that a trade was refused.
_LOOP_FAILURES = frozenset({FailureKind.SNAPSHOT_UNAVAILABLE, FailureKind.EXECUTION_FAILED})


@runtime_checkable
class SignalSource(Protocol):
    async def next_batch(self) -> list[TradeSignal]: ...


def signal_from_dict(data: dict[str, object], *, default_amount: float | None = None) -> TradeSignal:
    """Parse one signal object. ``requested_amount`` falls back to ``default_amount``."""

    if not isinstance(data, dict):
        raise ValidationError("signal must be a JSON object")
    raw = data.get("requested_amount", default_amount)
    try:
        amount = float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise ValidationError(f"bad requested_amount: {e}") from e
    instrument = str(data.get("instrument") or "")
    return TradeSignal(
        instrument=instrument,
        symbol=str(data.get("symbol") or instrument[:8]),
        strategy_id=str(data.get("strategy_id") or "manual"),
        requested_amount=amount,
        entry_reason=str(data.get("entry_reason") or "signal"),
    )


class QueueSignalSource:
    """In-process signal feed. ``next_batch`` drains whatever is queued."""

    def __init__(self, signals: Iterable[TradeSignal] = ()) -> None:
        self._q: asyncio.Queue[TradeSignal] = asyncio.Queue()
        for s in signals:
            self._q.put_nowait(s)

    def put(self, signal: TradeSignal) -> None:
        self._q.put_nowait(signal)

    async def next_batch(self) -> list[TradeSignal]:
        out: list[TradeSignal] = []
        while not self._q.empty():
            out.append(self._q.get_nowait())
        return out


class JsonlSignalSource:
    """Tails a JSONL file: one signal object per line, new lines only."""

    def __init__(self, path: Path, *, default_amount: float | None = None) -> None:
        self.path = Path(path)
        self.default_amount = default_amount
        self._offset = 0

    def _read_new(self) -> list[str]:
        if not self.path.exists():
            return []
        with self.path.open("r", encoding="utf-8") as f:
            f.seek(self._offset)
            chunk = f.read()
        # Only consume complete lines; a half-written line is read next time.
        end = chunk.rfind("\n")
        if end < 0:
            return []
        consumed = chunk[: end + 1]
        self._offset += len(consumed.encode("utf-8"))
        return [ln for ln in consumed.splitlines() if ln.strip()]

    async def next_batch(self) -> list[TradeSignal]:
        lines = await asyncio.to_thread(self._read_new)
        out: list[TradeSignal] = []
        for ln in lines:
            try:
                out.append(signal_from_dict(json.loads(ln), default_amount=self.default_amount))
            except (ValueError, ValidationError) as e:
                logger.warning("signal_parse_failed", extra={"path": str(self.path), "error": str(e)})
        return out


@dataclass(slots=True)
class CycleReport:
    received: int = 0
    entered: int = 0
    skipped: int = 0
    failures: list[str] = field(default_factory=list)


class TradingLoop:
    def __init__(
        self,
        *,
        manager: TradeLifecycleManager,
        source: SignalSource,
        config: LoopConfig,
        notifier: Notifier,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.manager = manager
        self.source = source
        self.config = config
        self.notifier = notifier
        self._clock = clock
        self._sleep = sleep
        self._backoff = RetryPolicy.from_ms(attempts=max(1, config.max_consecutive_failures), base_delay_ms=config.failure_backoff_ms)
        self.consecutive_failures = 0
        self.last_entry_at: datetime | None = None
        self._stopping = False

    def stop(self) -> None:
        self._stopping = True

    def _spacing_blocks(self, now: datetime) -> bool:
        gap = float(self.config.min_time_between_trades_s)
        if gap <= 0 or self.last_entry_at is None:
            return False
        return now - self.last_entry_at < timedelta(seconds=gap)

    async def run_once(self) -> CycleReport:
        report = CycleReport()
        try:
            batch = await self.source.next_batch()
        except Exception as e:
            report.failures.append(f"source: {type(e).__name__}: {e}")
            return report
        report.received = len(batch)

        for signal in batch:
            if self.manager.has_position(signal.instrument):
                report.skipped += 1
                logger.info("signal_skipped_active", extra={"instrument": signal.instrument})
                continue
            if self._spacing_blocks(self._clock()):
                report.skipped += 1
                logger.info("signal_skipped_spacing", extra={"instrument": signal.instrument})
                continue

            try:
                result: EntryResult = await self.manager.enter(signal)
            except ValidationError as e:
                report.failures.append(f"validation: {e}")
                logger.warning("signal_invalid", extra={"instrument": signal.instrument, "error": str(e)})
                continue

            if result.ok:
                report.entered += 1
                self.last_entry_at = self._clock()
            elif result.kind in _LOOP_FAILURES:
                report.failures.append(f"{result.kind}: {result.error}")
        return report

    async def run(self, *, max_cycles: int | None = None) -> None:
        cycles = 0
        while not self._stopping and (max_cycles is None or cycles < max_cycles):
            cycles += 1
            report = await self.run_once()

            if not report.failures:
                self.consecutive_failures = 0
                await self._sleep(float(self.config.poll_interval_s))
                continue

            self.consecutive_failures += 1
            logger.warning(
                "loop_cycle_failed",
                extra={"consecutive_failures": self.consecutive_failures, "failures": report.failures},
            )
            if self.consecutive_failures >= int(self.config.max_consecutive_failures):
                payload = {"consecutive_failures": self.consecutive_failures, "last_failures": report.failures}
                try:
                    await self.notifier.notify(AlertEvent.LOOP_FATAL, payload)
                except Exception as e:
                    logger.error("fatal_alert_failed", extra={"error": f"{type(e).__name__}: {e}"})
                logger.critical("loop_fatal", extra=payload)
                raise FatalLoopError(f"{self.consecutive_failures} consecutive failing cycles")

            await self._sleep(self._backoff.delay_for(self.consecutive_failures))


@dataclass(slots=True)
class Runtime:
    config: Config
    manager: TradeLifecycleManager
    monitor: MonitorScheduler
    notifier: Notifier
    client: VenueClient
    repository: SqliteTradeRepository
    webhook: WebhookNotifier | None = None

    async def aclose(self) -> None:
        await self.monitor.stop()
        await self.manager.flush_alerts()
        await self.client.aclose()
        if self.webhook is not None:
            await self.webhook.aclose()
        self.repository.close()


def build_runtime(config: Config, *, signer: TransactionSigner | None = None, clock: Clock = utc_now) -> Runtime:
    """Wire the production object graph from config. Must run inside an event loop."""

    venue = config.venue
    client = VenueClient(ClientConfig(rate_limit_rps=venue.rate_limit_rps, timeout_s=venue.timeout_s))
    provider = RetryingSnapshotProvider(
        VenueSnapshotProvider(client=client, venue=venue, round_trip_cost=config.exits.default_round_trip_cost, clock=clock),
        policy=RetryPolicy.from_ms(attempts=config.retry.attempts, base_delay_ms=config.retry.base_delay_ms),
    )

    gateway: ExecutionGateway
    if config.execution.mode == "paper":
        gateway = PaperSwapGateway(provider=provider, base_asset=config.execution.base_asset, config=config.paper)
    else:
        if signer is None:
            raise ConfigError("live mode needs a TransactionSigner")
        gateway = VenueSwapGateway(client=client, venue=venue, signer=signer, base_asset=config.execution.base_asset)

    repo = SqliteTradeRepository(config.data_dir / "trades.db")
    webhook: WebhookNotifier | None = None
    log_notifier = LogNotifier(recent_limit=config.notify.recent_limit, clock=clock)
    notifier: Notifier = log_notifier
    if config.notify.webhook_url:
        webhook = WebhookNotifier(config.notify.webhook_url, clock=clock)
        notifier = FanoutNotifier([log_notifier, webhook])

    manager = TradeLifecycleManager(
        config=config,
        provider=provider,
        gateway=gateway,
        ledger=RiskLedger(config.risk, clock=clock),
        repository=repo,
        notifier=notifier,
        clock=clock,
    )
    monitor = MonitorScheduler(manager, interval_s=config.monitor.tick_interval_s)
    return Runtime(config=config, manager=manager, monitor=monitor, notifier=notifier, client=client, repository=repo, webhook=webhook)


async def run_trading(config: Config, source: SignalSource, *, signer: TransactionSigner | None = None, max_cycles: int | None = None) -> None:
    runtime = build_runtime(config, signer=signer)
    loop = TradingLoop(manager=runtime.manager, source=source, config=config.loop, notifier=runtime.notifier)
    runtime.monitor.start()
    logger.info("trading_started", extra={"mode": config.execution.mode, "preset": config.preset})
    try:
        await loop.run(max_cycles=max_cycles)
    finally:
        await runtime.aclose()
        logger.info("trading_stopped", extra={"open_positions": len(runtime.manager.active_positions())})
