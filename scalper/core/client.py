"""scalper.core.client

Shared HTTP client with:
- rate limiting (token bucket)
- simple circuit breaker
- HTTP failures mapped onto the venue error taxonomy

Retries are not done here. Callers wrap requests in ``retry_async`` so the
attempt budget lives in one place.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

import httpx

from scalper.core.exceptions import InvalidRequestError, RateLimitedError, VenueUnavailableError


@dataclass(frozen=True, slots=True)
class ClientConfig:
    rate_limit_rps: float = 2.0
    timeout_s: float = 20.0
    circuit_breaker_threshold: int = 5
    circuit_breaker_cooldown_s: float = 30.0
    max_bytes: int = 512 * 1024


class _TokenBucket:
    def __init__(self, rate_per_sec: float) -> None:
        self.rate = max(rate_per_sec, 0.001)
        self.capacity = 1.0
        self.tokens = 1.0
        self.updated_at = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        while True:
            async with self._lock:
                now = time.monotonic()
                elapsed = now - self.updated_at
                self.updated_at = now
                self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    return
                wait_s = (1.0 - self.tokens) / self.rate
            await asyncio.sleep(wait_s)


class CircuitBreaker:
    def __init__(self, threshold: int, cooldown_s: float) -> None:
        self.threshold = threshold
        self.cooldown_s = cooldown_s
        self.failures = 0
        self.opened_at: float | None = None

    def allow(self, *, now: float | None = None) -> bool:
        if self.opened_at is None:
            return True
        n = time.monotonic() if now is None else float(now)
        if (n - self.opened_at) >= self.cooldown_s:
            self.failures = 0
            self.opened_at = None
            return True
        return False

    def on_success(self) -> None:
        self.failures = 0
        self.opened_at = None

    def on_failure(self, *, now: float | None = None) -> None:
        self.failures += 1
        if self.failures >= self.threshold:
            self.opened_at = time.monotonic() if now is None else float(now)


def raise_for_venue_status(resp: httpx.Response, *, url: str) -> None:
    code = resp.status_code
    if code < 400:
        return
    detail = resp.text[:200]
    if code == 429:
        raise RateLimitedError(f"{url}: 429 {detail}")
    if code >= 500:
        raise VenueUnavailableError(f"{url}: {code} {detail}")
    raise InvalidRequestError(f"{url}: {code} {detail}")


class VenueClient:
    def __init__(self, config: ClientConfig | None = None, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config or ClientConfig()
        self._bucket = _TokenBucket(self.config.rate_limit_rps)
        self._breaker = CircuitBreaker(
            threshold=self.config.circuit_breaker_threshold,
            cooldown_s=self.config.circuit_breaker_cooldown_s,
        )
        self._client = httpx.AsyncClient(timeout=self.config.timeout_s, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if not self._breaker.allow():
            raise VenueUnavailableError(f"circuit breaker open for {url}")

        await self._bucket.acquire()

        try:
            resp = await self._client.request(method, url, **kwargs)
            await resp.aread()
        except httpx.HTTPError as e:
            self._breaker.on_failure()
            raise VenueUnavailableError(f"{url}: {type(e).__name__}: {e}") from e

        if resp.status_code >= 500 or resp.status_code == 429:
            self._breaker.on_failure()
        else:
            self._breaker.on_success()
        raise_for_venue_status(resp, url=url)
        return resp

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        expected: type | tuple[type, ...] | None = None,
        **kwargs: Any,
    ) -> Any:
        """Request and parse JSON with a body-size cap and optional type check."""

        resp = await self.request(method, url, **kwargs)
        size = len(resp.content)
        if size > int(self.config.max_bytes):
            raise InvalidRequestError(f"response_too_large:{size}")
        try:
            data: Any = resp.json()
        except ValueError as e:
            raise InvalidRequestError(f"response_not_json: {url}") from e
        if expected is not None and not isinstance(data, expected):
            raise InvalidRequestError("response_schema_mismatch")
        return data
