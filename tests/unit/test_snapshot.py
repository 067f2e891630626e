from __future__ import annotations

import logging

import httpx
import pytest

from scalper.core.client import ClientConfig, VenueClient
from scalper.core.config import VenueConfig
from scalper.core.exceptions import InvalidRequestError, RateLimitedError, SnapshotUnavailableError
from scalper.core.retry import RetryPolicy
from scalper.market.snapshot import MarketHistory, RetryingSnapshotProvider, VenueSnapshotProvider, price_impact_pct
from tests.unit._fakes import T0, ManualClock, RecordingSleep, make_snapshot


def _venue_handler(price: object = "1.5", liquidity: object = 5000, status: int = 200):
    def handler(req: httpx.Request) -> httpx.Response:
        if status != 200:
            return httpx.Response(status, text="busy")
        if "/price/" in req.url.path:
            ids = req.url.params.get("ids")
            return httpx.Response(200, json={"data": {ids: {"id": ids, "price": price}}})
        if req.url.path.endswith("/token/TOK"):
            return httpx.Response(200, json={"address": "TOK", "liquidity": liquidity, "daily_volume": 1200.0})
        return httpx.Response(404)

    return handler


def _provider(handler, clock: ManualClock | None = None) -> VenueSnapshotProvider:
    client = VenueClient(ClientConfig(rate_limit_rps=1000.0), transport=httpx.MockTransport(handler))
    return VenueSnapshotProvider(client=client, venue=VenueConfig(), round_trip_cost=0.002, clock=clock or ManualClock())


def test_price_impact_pct() -> None:
    assert price_impact_pct(10.0, 1000.0) == pytest.approx(1.0)
    assert price_impact_pct(10.0, 0.0) == 100.0
    assert price_impact_pct(10_000.0, 10.0) == 100.0


def test_history_trims_to_window() -> None:
    from datetime import timedelta

    h = MarketHistory(window=timedelta(hours=1))
    h.record("TOK", ts=T0, price=1.0, volume=1.0, liquidity=1.0)
    h.record("TOK", ts=T0 + timedelta(minutes=30), price=1.1, volume=1.0, liquidity=1.0)
    h.record("TOK", ts=T0 + timedelta(minutes=90), price=1.2, volume=1.0, liquidity=1.0)

    assert h.prices("TOK") == [1.1, 1.2]
    h.forget("TOK")
    assert h.prices("TOK") == []


def test_history_drops_instruments_that_went_quiet() -> None:
    from datetime import timedelta

    h = MarketHistory(window=timedelta(hours=1))
    h.record("OLD", ts=T0, price=1.0, volume=1.0, liquidity=1.0)
    h.record("TOK", ts=T0 + timedelta(minutes=30), price=1.0, volume=1.0, liquidity=1.0)
    assert h.instruments() == {"OLD", "TOK"}

    h.record("TOK", ts=T0 + timedelta(minutes=61), price=1.1, volume=1.0, liquidity=1.0)
    assert h.instruments() == {"TOK"}
    assert h.prices("OLD") == []


@pytest.mark.anyio
async def test_venue_provider_builds_snapshot() -> None:
    provider = _provider(_venue_handler())
    try:
        snap = await provider.fetch_snapshot("TOK", 10.0)
    finally:
        await provider.client.aclose()

    assert snap.instrument == "TOK"
    assert snap.price == pytest.approx(1.5)
    assert snap.liquidity == pytest.approx(5000.0)
    assert snap.volume_24h == pytest.approx(1200.0)
    assert snap.price_impact_pct == pytest.approx(0.2)
    assert snap.round_trip_cost == pytest.approx(0.002)
    assert snap.observed_at == T0
    assert provider.history.prices("TOK") == [1.5]


@pytest.mark.anyio
async def test_venue_provider_maps_rate_limit() -> None:
    provider = _provider(_venue_handler(status=429))
    try:
        with pytest.raises(RateLimitedError):
            await provider.fetch_snapshot("TOK", 10.0)
    finally:
        await provider.client.aclose()


@pytest.mark.anyio
async def test_venue_provider_rejects_missing_price() -> None:
    provider = _provider(_venue_handler(price=None))
    try:
        with pytest.raises(InvalidRequestError):
            await provider.fetch_snapshot("TOK", 10.0)
    finally:
        await provider.client.aclose()


class _FlakyProvider:
    def __init__(self, failures: int, *, price: float = 1.0, exc: Exception | None = None) -> None:
        self.failures = failures
        self.price = price
        self.exc = exc or RateLimitedError("slow down")
        self.calls = 0

    async def fetch_snapshot(self, instrument: str, reference_size: float):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return make_snapshot(instrument, self.price)


@pytest.mark.anyio
async def test_retrying_provider_recovers_after_two_failures(caplog: pytest.LogCaptureFixture) -> None:
    sleep = RecordingSleep()
    inner = _FlakyProvider(failures=2)
    provider = RetryingSnapshotProvider(inner, policy=RetryPolicy(attempts=3, base_delay_s=0.25), sleep=sleep)

    with caplog.at_level(logging.WARNING):
        snap = await provider.fetch_snapshot("TOK", 1.0)

    assert snap.price == 1.0
    assert inner.calls == 3
    assert sleep.delays == [0.25, 0.5]
    assert sum(1 for r in caplog.records if r.getMessage() == "retry_attempt_failed") == 2


@pytest.mark.anyio
async def test_retrying_provider_exhaustion_is_snapshot_unavailable() -> None:
    sleep = RecordingSleep()
    inner = _FlakyProvider(failures=99)
    provider = RetryingSnapshotProvider(inner, policy=RetryPolicy(attempts=3, base_delay_s=0.1), sleep=sleep)

    with pytest.raises(SnapshotUnavailableError) as exc:
        await provider.fetch_snapshot("TOK", 1.0)

    assert isinstance(exc.value.__cause__, RateLimitedError)
    assert inner.calls == 3


@pytest.mark.anyio
async def test_retrying_provider_rejects_non_positive_price() -> None:
    inner = _FlakyProvider(failures=0, price=0.0)
    provider = RetryingSnapshotProvider(inner, policy=RetryPolicy(attempts=2, base_delay_s=0.0), sleep=RecordingSleep())

    with pytest.raises(SnapshotUnavailableError):
        await provider.fetch_snapshot("TOK", 1.0)
    assert inner.calls == 2
