"""scalper.core.retry

Bounded retry with exponential backoff.

Delay before attempt ``n + 1`` is ``base_delay_s * 2 ** (n - 1)``. The error
from the last attempt is what the caller sees; earlier ones are logged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    attempts: int = 3
    base_delay_s: float = 1.0
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.base_delay_s < 0:
            raise ValueError("base_delay_s must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""

        return float(self.base_delay_s) * (2.0 ** (attempt - 1))

    @classmethod
    def from_ms(cls, *, attempts: int, base_delay_ms: int, retry_on: tuple[type[BaseException], ...] = (Exception,)) -> RetryPolicy:
        return cls(attempts=int(attempts), base_delay_s=float(base_delay_ms) / 1000.0, retry_on=retry_on)


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    op: str,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Await ``fn()`` up to ``policy.attempts`` times.

    Errors outside ``policy.retry_on`` propagate on the first occurrence.
    """

    attempt = 1
    while True:
        try:
            return await fn()
        except policy.retry_on as e:
            if attempt >= policy.attempts:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "retry_attempt_failed",
                extra={"op": op, "attempt": attempt, "attempts": policy.attempts, "delay_s": delay, "error": f"{type(e).__name__}: {e}"},
            )
            await sleep(delay)
            attempt += 1
