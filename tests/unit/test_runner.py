from __future__ import annotations

import json
from pathlib import Path

import pytest

from scalper.core.events import AlertEvent
from scalper.core.exceptions import FatalLoopError, ValidationError
from scalper.runner import JsonlSignalSource, QueueSignalSource, TradingLoop, signal_from_dict
from tests.unit._fakes import RecordingSleep, build_manager, make_config, signal


class _RepeatingSource:
    """Returns the same signal every cycle."""

    def __init__(self, instrument: str = "TOK") -> None:
        self.instrument = instrument

    async def next_batch(self):
        return [signal(self.instrument)]


class _BrokenSource:
    async def next_batch(self):
        raise OSError("feed gone")


def _loop(mgr, source, notifier, clock, **loop_cfg: object) -> tuple[TradingLoop, RecordingSleep]:
    cfg = make_config(loop={"poll_interval_s": 30.0, "max_consecutive_failures": 3, "failure_backoff_ms": 100, **loop_cfg})
    sleep = RecordingSleep()
    return TradingLoop(manager=mgr, source=source, config=cfg.loop, notifier=notifier, clock=clock, sleep=sleep), sleep


@pytest.mark.anyio
async def test_loop_goes_fatal_after_consecutive_snapshot_failures() -> None:
    mgr, prov, _, _, notifier, clock = build_manager()
    prov.unavailable.add("TOK")
    loop, sleep = _loop(mgr, _RepeatingSource(), notifier, clock)

    with pytest.raises(FatalLoopError):
        await loop.run()
    await mgr.flush_alerts()

    assert loop.consecutive_failures == 3
    assert sleep.delays == [0.1, 0.2]
    assert AlertEvent.LOOP_FATAL in notifier.events()


@pytest.mark.anyio
async def test_source_errors_count_as_failures() -> None:
    mgr, _, _, _, notifier, clock = build_manager()
    loop, _ = _loop(mgr, _BrokenSource(), notifier, clock)

    report = await loop.run_once()

    assert report.failures and "OSError" in report.failures[0]


@pytest.mark.anyio
async def test_successful_cycle_resets_failure_count() -> None:
    mgr, _, _, _, notifier, clock = build_manager()
    loop, sleep = _loop(mgr, QueueSignalSource(), notifier, clock)
    loop.consecutive_failures = 2

    await loop.run(max_cycles=2)

    assert loop.consecutive_failures == 0
    assert sleep.delays == [30.0, 30.0]


@pytest.mark.anyio
async def test_risk_rejection_is_not_a_loop_failure() -> None:
    mgr, _, _, _, notifier, clock = build_manager()
    loop, _ = _loop(mgr, QueueSignalSource([signal(amount=5.0)]), notifier, clock)

    report = await loop.run_once()

    assert report.entered == 0
    assert report.failures == []


@pytest.mark.anyio
async def test_invalid_signal_counts_as_failure() -> None:
    mgr, _, _, _, notifier, clock = build_manager()
    loop, _ = _loop(mgr, QueueSignalSource([signal(amount=0.0)]), notifier, clock)

    report = await loop.run_once()

    assert report.failures and report.failures[0].startswith("validation")


@pytest.mark.anyio
async def test_active_instrument_is_skipped() -> None:
    mgr, _, gw, _, notifier, clock = build_manager()
    assert (await mgr.enter(signal("TOK"))).ok
    loop, _ = _loop(mgr, QueueSignalSource([signal("TOK")]), notifier, clock)

    report = await loop.run_once()

    assert report.skipped == 1
    assert len(gw.calls) == 1


@pytest.mark.anyio
async def test_entries_are_spaced() -> None:
    mgr, _, _, _, notifier, clock = build_manager(prices={"TOK": 1.0, "TWO": 2.0})
    source = QueueSignalSource([signal("TOK"), signal("TWO")])
    loop, _ = _loop(mgr, source, notifier, clock, min_time_between_trades_s=60.0)

    first = await loop.run_once()
    assert (first.entered, first.skipped) == (1, 1)

    clock.advance(seconds=61)
    source.put(signal("TWO"))
    second = await loop.run_once()
    assert second.entered == 1
    assert mgr.has_position("TWO")


def test_signal_from_dict() -> None:
    s = signal_from_dict({"instrument": "TOKMINTADDRESS", "requested_amount": "0.5"})
    assert s.requested_amount == 0.5
    assert s.symbol == "TOKMINTA"
    assert s.strategy_id == "manual"

    with pytest.raises(ValidationError):
        signal_from_dict({"instrument": "TOK"})


def test_signal_from_dict_falls_back_to_default_amount() -> None:
    s = signal_from_dict({"instrument": "TOK"}, default_amount=0.01)
    assert s.requested_amount == 0.01
    assert signal_from_dict({"instrument": "TOK", "requested_amount": 0.3}, default_amount=0.01).requested_amount == 0.3


@pytest.mark.anyio
async def test_jsonl_source_reads_complete_lines_only(temp_dir: Path) -> None:
    path = temp_dir / "signals.jsonl"
    first = json.dumps({"instrument": "TOK", "requested_amount": 0.1})
    second = json.dumps({"instrument": "TWO", "requested_amount": 0.2})
    path.write_text(first + "\nnot json\n" + second[:10], encoding="utf-8")
    source = JsonlSignalSource(path)

    batch = await source.next_batch()
    assert [s.instrument for s in batch] == ["TOK"]

    with path.open("a", encoding="utf-8") as f:
        f.write(second[10:] + "\n")
    batch = await source.next_batch()
    assert [s.instrument for s in batch] == ["TWO"]

    assert await source.next_batch() == []


@pytest.mark.anyio
async def test_jsonl_source_missing_file_is_empty(temp_dir: Path) -> None:
    assert await JsonlSignalSource(temp_dir / "nope.jsonl").next_batch() == []


@pytest.mark.anyio
async def test_jsonl_source_applies_default_amount(temp_dir: Path) -> None:
    path = temp_dir / "signals.jsonl"
    path.write_text(json.dumps({"instrument": "TOK"}) + "\n", encoding="utf-8")

    batch = await JsonlSignalSource(path, default_amount=0.02).next_batch()

    assert [s.requested_amount for s in batch] == [0.02]
