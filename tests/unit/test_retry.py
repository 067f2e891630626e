from __future__ import annotations

import logging

import pytest

from scalper.core.exceptions import InvalidRequestError, RateLimitedError
from scalper.core.retry import RetryPolicy, retry_async
from tests.unit._fakes import RecordingSleep


def test_delay_doubles_per_attempt() -> None:
    p = RetryPolicy.from_ms(attempts=4, base_delay_ms=1000)
    assert [p.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


def test_attempts_must_be_positive() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(attempts=0)


@pytest.mark.anyio
async def test_fails_twice_then_succeeds(caplog: pytest.LogCaptureFixture) -> None:
    sleep = RecordingSleep()
    calls = {"n": 0}

    async def _flaky() -> str:
        calls["n"] += 1
        if calls["n"] < 3:
            raise RateLimitedError(f"try {calls['n']}")
        return "ok"

    with caplog.at_level(logging.WARNING, logger="scalper.core.retry"):
        out = await retry_async(_flaky, policy=RetryPolicy(attempts=3, base_delay_s=0.5), op="t", sleep=sleep)

    assert out == "ok"
    assert sleep.delays == [0.5, 1.0]
    assert [r.getMessage() for r in caplog.records] == ["retry_attempt_failed", "retry_attempt_failed"]


@pytest.mark.anyio
async def test_final_error_propagates() -> None:
    sleep = RecordingSleep()
    calls = {"n": 0}

    async def _down() -> None:
        calls["n"] += 1
        raise RateLimitedError(f"try {calls['n']}")

    with pytest.raises(RateLimitedError, match="try 3"):
        await retry_async(_down, policy=RetryPolicy(attempts=3, base_delay_s=0.1), op="t", sleep=sleep)

    assert len(sleep.delays) == 2


@pytest.mark.anyio
async def test_errors_outside_retry_on_are_not_retried() -> None:
    sleep = RecordingSleep()
    calls = {"n": 0}

    async def _bad() -> None:
        calls["n"] += 1
        raise InvalidRequestError("nope")

    policy = RetryPolicy(attempts=5, base_delay_s=0.1, retry_on=(RateLimitedError,))
    with pytest.raises(InvalidRequestError):
        await retry_async(_bad, policy=policy, op="t", sleep=sleep)

    assert calls["n"] == 1
    assert sleep.delays == []
