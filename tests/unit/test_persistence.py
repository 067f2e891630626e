from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from scalper.core.exceptions import PersistenceError
from scalper.core.types import TradeRecord
from scalper.persistence.trades import InMemoryTradeRepository, SqliteTradeRepository
from tests.unit._fakes import T0


def _record(instrument: str = "TOK", strategy_id: str = "momentum", pnl: float = 0.01, minutes: int = 0) -> TradeRecord:
    return TradeRecord(
        instrument=instrument,
        symbol=instrument.lower(),
        strategy_id=strategy_id,
        entry_price=1.0,
        exit_price=1.0 + pnl,
        amount_in=0.1,
        amount_out=0.1 + pnl,
        quantity=0.1,
        realized_pnl=pnl,
        realized_pnl_pct=pnl / 0.1 * 100.0,
        entry_ref="in",
        exit_ref="out",
        entry_reason="signal",
        exit_reason="profit_target",
        entry_time=T0 + timedelta(minutes=minutes),
        exit_time=T0 + timedelta(minutes=minutes + 1),
    )


@pytest.mark.anyio
async def test_sqlite_round_trip_and_recent_order(temp_dir: Path) -> None:
    repo = SqliteTradeRepository(temp_dir / "data" / "trades.db")
    try:
        await repo.save(_record(minutes=0))
        await repo.save(_record("TWO", minutes=5))

        recent = await repo.recent_trades(limit=10)
    finally:
        repo.close()

    assert [r.instrument for r in recent] == ["TWO", "TOK"]
    assert recent[1] == _record(minutes=0)
    assert recent[1].exit_time.tzinfo is not None


@pytest.mark.anyio
async def test_sqlite_stats_and_leaderboards(temp_dir: Path) -> None:
    repo = SqliteTradeRepository(temp_dir / "trades.db")
    try:
        await repo.save(_record("TOK", "momentum", 0.02))
        await repo.save(_record("TOK", "momentum", -0.01, minutes=2))
        await repo.save(_record("TWO", "reversal", 0.05, minutes=4))

        stats = await repo.strategy_stats("momentum")
        tok = await repo.instrument_stats("TOK")
        empty = await repo.strategy_stats("unknown")
        top = await repo.top_strategies(limit=5)
        top_instr = await repo.top_instruments(limit=1)
    finally:
        repo.close()

    assert stats.total_trades == 2
    assert stats.winning_trades == 1
    assert stats.win_rate == pytest.approx(0.5)
    assert stats.total_pnl == pytest.approx(0.01)
    assert stats.best_pnl == pytest.approx(0.02)
    assert stats.worst_pnl == pytest.approx(-0.01)
    assert stats.avg_pnl_pct == pytest.approx(5.0)
    assert tok.total_trades == 2
    assert empty.total_trades == 0
    assert empty.win_rate == 0.0
    assert [s.key for s in top] == ["reversal", "momentum"]
    assert [s.key for s in top_instr] == ["TWO"]


@pytest.mark.anyio
async def test_sqlite_persists_across_reopen(temp_dir: Path) -> None:
    path = temp_dir / "trades.db"
    repo = SqliteTradeRepository(path)
    await repo.save(_record())
    repo.close()

    reopened = SqliteTradeRepository(path)
    try:
        assert len(await reopened.recent_trades()) == 1
    finally:
        reopened.close()


@pytest.mark.anyio
async def test_in_memory_repository_matches_sqlite_aggregates() -> None:
    repo = InMemoryTradeRepository()
    await repo.save(_record("TOK", "momentum", 0.02))
    await repo.save(_record("TWO", "reversal", -0.03, minutes=3))

    assert (await repo.strategy_stats("momentum")).winning_trades == 1
    assert [s.key for s in await repo.top_instruments()] == ["TOK", "TWO"]
    assert (await repo.recent_trades(limit=1))[0].instrument == "TWO"

    repo.fail_writes = True
    with pytest.raises(PersistenceError):
        await repo.save(_record())
