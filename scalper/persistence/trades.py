"""scalper.persistence.trades

Completed-trade store.

One row per round trip, written once at close and never updated. Stats are
aggregated at read time; nothing here feeds back into risk decisions.

sqlite3 calls are blocking, so the async surface runs them in a worker
thread behind a lock.
"""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from scalper.core.exceptions import PersistenceError
from scalper.core.time import parse_dt
from scalper.core.types import TradeRecord

SCHEMA = """
CREATE TABLE IF NOT EXISTS trades (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    instrument TEXT NOT NULL,
    symbol TEXT NOT NULL,
    strategy_id TEXT NOT NULL,
    entry_price REAL NOT NULL,
    exit_price REAL NOT NULL,
    amount_in REAL NOT NULL,
    amount_out REAL NOT NULL,
    quantity REAL NOT NULL,
    realized_pnl REAL NOT NULL,
    realized_pnl_pct REAL NOT NULL,
    entry_ref TEXT NOT NULL,
    exit_ref TEXT NOT NULL,
    entry_reason TEXT,
    exit_reason TEXT,
    market_condition TEXT,
    entry_time TEXT NOT NULL,
    exit_time TEXT NOT NULL,
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_trades_strategy ON trades(strategy_id);
CREATE INDEX IF NOT EXISTS idx_trades_instrument ON trades(instrument);
CREATE INDEX IF NOT EXISTS idx_trades_exit_time ON trades(exit_time);
"""

_COLUMNS = (
    "instrument",
    "symbol",
    "strategy_id",
    "entry_price",
    "exit_price",
    "amount_in",
    "amount_out",
    "quantity",
    "realized_pnl",
    "realized_pnl_pct",
    "entry_ref",
    "exit_ref",
    "entry_reason",
    "exit_reason",
    "market_condition",
    "entry_time",
    "exit_time",
)


@dataclass(frozen=True, slots=True)
class PerformanceStats:
    key: str
    total_trades: int
    winning_trades: int
    total_pnl: float
    avg_pnl_pct: float
    best_pnl: float
    worst_pnl: float

    @property
    def win_rate(self) -> float:
        return self.winning_trades / self.total_trades if self.total_trades else 0.0


@runtime_checkable
class TradeRepository(Protocol):
    async def save(self, record: TradeRecord) -> None: ...

    async def recent_trades(self, limit: int = 50) -> list[TradeRecord]: ...

    async def strategy_stats(self, strategy_id: str) -> PerformanceStats: ...

    async def instrument_stats(self, instrument: str) -> PerformanceStats: ...

    async def top_strategies(self, limit: int = 5) -> list[PerformanceStats]: ...

    async def top_instruments(self, limit: int = 5) -> list[PerformanceStats]: ...


def _dt_to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat()


def _record_row(record: TradeRecord) -> tuple[object, ...]:
    row: list[object] = []
    for col in _COLUMNS:
        v = getattr(record, col)
        row.append(_dt_to_iso(v) if isinstance(v, datetime) else v)
    return tuple(row)


def _row_record(row: sqlite3.Row) -> TradeRecord:
    return TradeRecord(
        instrument=str(row["instrument"]),
        symbol=str(row["symbol"]),
        strategy_id=str(row["strategy_id"]),
        entry_price=float(row["entry_price"]),
        exit_price=float(row["exit_price"]),
        amount_in=float(row["amount_in"]),
        amount_out=float(row["amount_out"]),
        quantity=float(row["quantity"]),
        realized_pnl=float(row["realized_pnl"]),
        realized_pnl_pct=float(row["realized_pnl_pct"]),
        entry_ref=str(row["entry_ref"]),
        exit_ref=str(row["exit_ref"]),
        entry_reason=str(row["entry_reason"] or ""),
        exit_reason=str(row["exit_reason"] or ""),
        entry_time=parse_dt(str(row["entry_time"])),
        exit_time=parse_dt(str(row["exit_time"])),
        market_condition=str(row["market_condition"] or "neutral"),
    )


def _aggregate(key: str, records: list[TradeRecord]) -> PerformanceStats:
    if not records:
        return PerformanceStats(key=key, total_trades=0, winning_trades=0, total_pnl=0.0, avg_pnl_pct=0.0, best_pnl=0.0, worst_pnl=0.0)
    pnls = [r.realized_pnl for r in records]
    return PerformanceStats(
        key=key,
        total_trades=len(records),
        winning_trades=sum(1 for p in pnls if p > 0),
        total_pnl=float(sum(pnls)),
        avg_pnl_pct=float(sum(r.realized_pnl_pct for r in records) / len(records)),
        best_pnl=float(max(pnls)),
        worst_pnl=float(min(pnls)),
    )


_STATS_SELECT = """
SELECT {key} AS key,
       COUNT(*) AS total_trades,
       SUM(CASE WHEN realized_pnl > 0 THEN 1 ELSE 0 END) AS winning_trades,
       COALESCE(SUM(realized_pnl), 0.0) AS total_pnl,
       COALESCE(AVG(realized_pnl_pct), 0.0) AS avg_pnl_pct,
       COALESCE(MAX(realized_pnl), 0.0) AS best_pnl,
       COALESCE(MIN(realized_pnl), 0.0) AS worst_pnl
FROM trades
"""


def _row_stats(key: str, row: sqlite3.Row | None) -> PerformanceStats:
    if row is None or not row["total_trades"]:
        return _aggregate(key, [])
    return PerformanceStats(
        key=key,
        total_trades=int(row["total_trades"]),
        winning_trades=int(row["winning_trades"] or 0),
        total_pnl=float(row["total_pnl"]),
        avg_pnl_pct=float(row["avg_pnl_pct"]),
        best_pnl=float(row["best_pnl"]),
        worst_pnl=float(row["worst_pnl"]),
    )


class SqliteTradeRepository:
    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        with self.conn:
            self.conn.executescript(SCHEMA)
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA synchronous=NORMAL")

    def close(self) -> None:
        self.conn.close()

    def _insert(self, record: TradeRecord) -> None:
        placeholders = ", ".join("?" for _ in _COLUMNS)
        sql = f"INSERT INTO trades ({', '.join(_COLUMNS)}) VALUES ({placeholders})"
        try:
            with self._lock, self.conn:
                self.conn.execute(sql, _record_row(record))
        except sqlite3.Error as e:
            raise PersistenceError(f"trade insert failed: {e}") from e

    def _select_recent(self, limit: int) -> list[TradeRecord]:
        with self._lock:
            rows = self.conn.execute("SELECT * FROM trades ORDER BY exit_time DESC, id DESC LIMIT ?", (int(limit),)).fetchall()
        return [_row_record(r) for r in rows]

    def _stats_for(self, column: str, key: str) -> PerformanceStats:
        sql = _STATS_SELECT.format(key=column) + f" WHERE {column} = ? GROUP BY {column}"
        with self._lock:
            row = self.conn.execute(sql, (key,)).fetchone()
        return _row_stats(key, row)

    def _top_by(self, column: str, limit: int) -> list[PerformanceStats]:
        sql = _STATS_SELECT.format(key=column) + f" GROUP BY {column} ORDER BY total_pnl DESC LIMIT ?"
        with self._lock:
            rows = self.conn.execute(sql, (int(limit),)).fetchall()
        return [_row_stats(str(r["key"]), r) for r in rows]

    async def save(self, record: TradeRecord) -> None:
        await asyncio.to_thread(self._insert, record)

    async def recent_trades(self, limit: int = 50) -> list[TradeRecord]:
        return await asyncio.to_thread(self._select_recent, limit)

    async def strategy_stats(self, strategy_id: str) -> PerformanceStats:
        return await asyncio.to_thread(self._stats_for, "strategy_id", strategy_id)

    async def instrument_stats(self, instrument: str) -> PerformanceStats:
        return await asyncio.to_thread(self._stats_for, "instrument", instrument)

    async def top_strategies(self, limit: int = 5) -> list[PerformanceStats]:
        return await asyncio.to_thread(self._top_by, "strategy_id", limit)

    async def top_instruments(self, limit: int = 5) -> list[PerformanceStats]:
        return await asyncio.to_thread(self._top_by, "instrument", limit)


class InMemoryTradeRepository:
    """Test-double repository. Set ``fail_writes`` to simulate a broken store."""

    def __init__(self) -> None:
        self.records: list[TradeRecord] = []
        self.fail_writes = False

    async def save(self, record: TradeRecord) -> None:
        if self.fail_writes:
            raise PersistenceError("store unavailable")
        self.records.append(record)

    async def recent_trades(self, limit: int = 50) -> list[TradeRecord]:
        ordered = sorted(self.records, key=lambda r: r.exit_time, reverse=True)
        return ordered[: int(limit)]

    async def strategy_stats(self, strategy_id: str) -> PerformanceStats:
        return _aggregate(strategy_id, [r for r in self.records if r.strategy_id == strategy_id])

    async def instrument_stats(self, instrument: str) -> PerformanceStats:
        return _aggregate(instrument, [r for r in self.records if r.instrument == instrument])

    def _top(self, attr: str, limit: int) -> list[PerformanceStats]:
        keys = {getattr(r, attr) for r in self.records}
        stats = [_aggregate(k, [r for r in self.records if getattr(r, attr) == k]) for k in keys]
        stats.sort(key=lambda s: s.total_pnl, reverse=True)
        return stats[: int(limit)]

    async def top_strategies(self, limit: int = 5) -> list[PerformanceStats]:
        return self._top("strategy_id", limit)

    async def top_instruments(self, limit: int = 5) -> list[PerformanceStats]:
        return self._top("instrument", limit)
