"""scalper.market.snapshot

Market snapshots: the only view the lifecycle manager has of the market.

- ``MarketSnapshotProvider`` is the boundary protocol.
- ``VenueSnapshotProvider`` reads price + token metadata over HTTP and keeps a
  rolling 24h history per instrument for the momentum indicators.
- ``RetryingSnapshotProvider`` wraps any provider with bounded retry and turns
  exhaustion into ``SnapshotUnavailableError``.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol, runtime_checkable

from scalper.core.client import VenueClient
from scalper.core.config import VenueConfig
from scalper.core.exceptions import InvalidRequestError, SnapshotUnavailableError, VenueError
from scalper.core.retry import RetryPolicy, Sleep, retry_async
from scalper.core.time import Clock, utc_now
from scalper.core.types import MarketSnapshot
from scalper.market import indicators

logger = logging.getLogger(__name__)


@runtime_checkable
class MarketSnapshotProvider(Protocol):
    async def fetch_snapshot(self, instrument: str, reference_size: float) -> MarketSnapshot: ...


@dataclass(frozen=True, slots=True)
class _Sample:
    ts: datetime
    price: float
    volume: float
    liquidity: float


class MarketHistory:
    """Per-instrument samples, trimmed to a rolling window."""

    def __init__(self, *, window: timedelta = timedelta(hours=24), max_samples: int = 2000) -> None:
        self.window = window
        self._samples: dict[str, deque[_Sample]] = {}
        self._max = int(max_samples)

    def record(self, instrument: str, *, ts: datetime, price: float, volume: float, liquidity: float) -> None:
        q = self._samples.setdefault(instrument, deque(maxlen=self._max))
        q.append(_Sample(ts=ts, price=float(price), volume=float(volume), liquidity=float(liquidity)))
        cutoff = ts - self.window
        while q and q[0].ts < cutoff:
            q.popleft()
        # Instruments with nothing left inside the window are dropped.
        for stale in [k for k, v in self._samples.items() if v[-1].ts < cutoff]:
            del self._samples[stale]

    def prices(self, instrument: str) -> list[float]:
        return [s.price for s in self._samples.get(instrument, ())]

    def volumes(self, instrument: str) -> list[float]:
        return [s.volume for s in self._samples.get(instrument, ())]

    def instruments(self) -> set[str]:
        return set(self._samples)

    def forget(self, instrument: str) -> None:
        self._samples.pop(instrument, None)


def price_impact_pct(reference_size: float, liquidity: float) -> float:
    if liquidity <= 0:
        return 100.0
    return min(100.0, float(reference_size) / float(liquidity) * 100.0)


def build_snapshot(
    instrument: str,
    *,
    price: float,
    liquidity: float,
    volume_24h: float,
    reference_size: float,
    history: MarketHistory,
    observed_at: datetime,
    round_trip_cost: float | None = None,
) -> MarketSnapshot:
    prices = history.prices(instrument)
    volumes = history.volumes(instrument)
    condition, confidence = indicators.market_condition(prices, volumes)
    recent = prices[-20:]
    return MarketSnapshot(
        instrument=instrument,
        price=float(price),
        liquidity=float(liquidity),
        price_impact_pct=price_impact_pct(reference_size, liquidity),
        observed_at=observed_at,
        volume_24h=float(volume_24h),
        short_term_trend=indicators.trend(recent[-5:]),
        medium_term_trend=indicators.trend(recent[-10:]),
        volume_trend=indicators.volume_trend(volumes),
        condition=condition,
        confidence=float(confidence),
        rsi=indicators.rsi(recent),
        macd_histogram=indicators.macd_histogram(recent),
        volatility=indicators.volatility(recent),
        round_trip_cost=round_trip_cost,
    )


def _float_field(data: Any, *keys: str) -> float | None:
    if not isinstance(data, dict):
        return None
    for k in keys:
        v = data.get(k)
        if v is None:
            continue
        try:
            return float(v)
        except (TypeError, ValueError):
            continue
    return None


class VenueSnapshotProvider:
    """Price oracle + token metadata over HTTP."""

    def __init__(
        self,
        *,
        client: VenueClient,
        venue: VenueConfig,
        history: MarketHistory | None = None,
        round_trip_cost: float | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.client = client
        self.venue = venue
        self.history = history or MarketHistory()
        self.round_trip_cost = round_trip_cost
        self._clock = clock

    async def _price(self, instrument: str) -> float:
        data = await self.client.request_json("GET", self.venue.price_url, params={"ids": instrument}, expected=dict)
        entry = data.get("data", {}).get(instrument) if isinstance(data.get("data"), dict) else data
        price = _float_field(entry, "price")
        if price is None:
            raise InvalidRequestError(f"no price for {instrument}")
        return price

    async def _metadata(self, instrument: str) -> dict[str, Any]:
        return await self.client.request_json("GET", f"{self.venue.token_url}/{instrument}", expected=dict)

    async def fetch_snapshot(self, instrument: str, reference_size: float) -> MarketSnapshot:
        price, meta = await asyncio.gather(self._price(instrument), self._metadata(instrument))
        liquidity = _float_field(meta, "liquidity") or 0.0
        volume = _float_field(meta, "volume24h", "daily_volume") or 0.0

        now = self._clock()
        self.history.record(instrument, ts=now, price=price, volume=volume, liquidity=liquidity)
        return build_snapshot(
            instrument,
            price=price,
            liquidity=liquidity,
            volume_24h=volume,
            reference_size=reference_size,
            history=self.history,
            observed_at=now,
            round_trip_cost=self.round_trip_cost,
        )


class RetryingSnapshotProvider:
    def __init__(self, inner: MarketSnapshotProvider, *, policy: RetryPolicy, sleep: Sleep = asyncio.sleep) -> None:
        self.inner = inner
        self.policy = RetryPolicy(attempts=policy.attempts, base_delay_s=policy.base_delay_s, retry_on=(VenueError,))
        self._sleep = sleep

    async def _fetch_once(self, instrument: str, reference_size: float) -> MarketSnapshot:
        snap = await self.inner.fetch_snapshot(instrument, reference_size)
        if not math.isfinite(snap.price) or snap.price <= 0:
            raise InvalidRequestError(f"invalid price {snap.price} for {instrument}")
        return snap

    async def fetch_snapshot(self, instrument: str, reference_size: float) -> MarketSnapshot:
        try:
            return await retry_async(
                lambda: self._fetch_once(instrument, reference_size),
                policy=self.policy,
                op=f"snapshot:{instrument}",
                sleep=self._sleep,
            )
        except VenueError as e:
            logger.error("snapshot_unavailable", extra={"instrument": instrument, "error": f"{type(e).__name__}: {e}"})
            raise SnapshotUnavailableError(f"{instrument}: {e}") from e
