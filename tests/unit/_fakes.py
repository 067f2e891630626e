"""Shared fakes for lifecycle tests: provider, clock, sleep, signals."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from scalper.core.config import Config
from scalper.core.exceptions import SnapshotUnavailableError
from scalper.core.types import MarketCondition, MarketSnapshot, SwapFill, TradeSignal
from scalper.execution.gateway import InMemorySwapGateway
from scalper.execution.lifecycle import TradeLifecycleManager
from scalper.notify.alerts import LogNotifier
from scalper.persistence.trades import InMemoryTradeRepository
from scalper.risk.ledger import RiskLedger

BASE = "BASE"
T0 = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)


class ManualClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def make_snapshot(instrument: str = "TOK", price: float = 1.0, **overrides: object) -> MarketSnapshot:
    base = MarketSnapshot(
        instrument=instrument,
        price=price,
        liquidity=10_000.0,
        price_impact_pct=0.1,
        observed_at=T0,
        condition=MarketCondition.NEUTRAL,
        confidence=1.0,
        rsi=50.0,
        macd_histogram=0.0,
        round_trip_cost=0.001,
    )
    return replace(base, **overrides) if overrides else base


class FakeProvider:
    """Snapshot provider with settable prices. Yields once per fetch.

    ``unavailable`` instruments fail the typed way; ``errors`` raise whatever
    exception is stored for the instrument.
    """

    def __init__(self, prices: dict[str, float] | None = None, **snapshot_overrides: object) -> None:
        self.prices: dict[str, float] = dict(prices or {})
        self.overrides = snapshot_overrides
        self.unavailable: set[str] = set()
        self.errors: dict[str, Exception] = {}
        self.calls: list[str] = []

    async def fetch_snapshot(self, instrument: str, reference_size: float) -> MarketSnapshot:
        self.calls.append(instrument)
        await asyncio.sleep(0)
        if instrument in self.errors:
            raise self.errors[instrument]
        if instrument in self.unavailable or instrument not in self.prices:
            raise SnapshotUnavailableError(f"{instrument}: no data")
        return make_snapshot(instrument, self.prices[instrument], **self.overrides)


def signal(instrument: str = "TOK", amount: float = 0.1, strategy_id: str = "momentum") -> TradeSignal:
    return TradeSignal(
        instrument=instrument,
        symbol=instrument.lower(),
        strategy_id=strategy_id,
        requested_amount=amount,
        entry_reason="test",
    )


def make_config(**sections: dict[str, object]) -> Config:
    """Config with test-friendly defaults: no retry delay, roomy limits."""

    base: dict[str, dict[str, object]] = {
        "risk": {"max_concurrent_trades": 3, "max_position_size": 1.0, "max_daily_loss": 0.2, "starting_balance": 10.0, "min_liquidity": 100.0},
        "retry": {"attempts": 3, "base_delay_ms": 10},
        "execution": {"base_asset": BASE, "max_slippage_bps": 500},
    }
    for name, values in sections.items():
        base[name] = {**base.get(name, {}), **values}
    return Config(**base)


def build_manager(
    config: Config | None = None,
    *,
    prices: dict[str, float] | None = None,
    clock: ManualClock | None = None,
    provider: FakeProvider | None = None,
    sleep: RecordingSleep | None = None,
    gateway_cls: type[InMemorySwapGateway] = InMemorySwapGateway,
) -> tuple[TradeLifecycleManager, FakeProvider, InMemorySwapGateway, InMemoryTradeRepository, LogNotifier, ManualClock]:
    cfg = config or make_config()
    clk = clock or ManualClock()
    px = prices or {"TOK": 1.0}
    prov = provider or FakeProvider(px)
    gw = gateway_cls(base_asset=BASE, prices=dict(px))
    repo = InMemoryTradeRepository()
    notifier = LogNotifier(clock=clk)
    mgr = TradeLifecycleManager(
        config=cfg,
        provider=prov,
        gateway=gw,
        ledger=RiskLedger(cfg.risk, clock=clk),
        repository=repo,
        notifier=notifier,
        clock=clk,
        sleep=sleep or RecordingSleep(),
    )
    return mgr, prov, gw, repo, notifier, clk


def set_price(provider: FakeProvider, gateway: InMemorySwapGateway, instrument: str, price: float) -> None:
    provider.prices[instrument] = price
    gateway.prices[instrument] = price


class YieldingGateway(InMemorySwapGateway):
    """Suspends once before every swap so concurrent entries interleave."""

    async def swap(self, input_asset: str, output_asset: str, amount: float, slippage_bps: int) -> SwapFill:
        await asyncio.sleep(0)
        return await super().swap(input_asset, output_asset, amount, slippage_bps)
