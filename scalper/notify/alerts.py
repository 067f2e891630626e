"""scalper.notify.alerts

Outbound alerts.

Best-effort delivery: a notifier may fail, but the failure must never reach
the trade path. Callers schedule ``notify`` without awaiting the outcome.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

import httpx

from scalper.core.events import AlertEvent, to_payload
from scalper.core.time import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Notification:
    event: AlertEvent
    payload: dict[str, Any]
    ts: datetime = field(default_factory=utc_now)


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, event: AlertEvent, payload: dict[str, Any]) -> None: ...


class LogNotifier:
    """Logs every alert and keeps the most recent ones for inspection."""

    def __init__(self, *, recent_limit: int = 100, clock: Clock = utc_now) -> None:
        self.recent: deque[Notification] = deque(maxlen=max(1, int(recent_limit)))
        self._clock = clock

    async def notify(self, event: AlertEvent, payload: dict[str, Any]) -> None:
        n = Notification(event=AlertEvent(event), payload=to_payload(payload), ts=self._clock())
        self.recent.append(n)
        level = logging.WARNING if n.event in {AlertEvent.ENTRY_FAILED, AlertEvent.EXIT_FAILED, AlertEvent.LOOP_FATAL} else logging.INFO
        logger.log(level, "alert", extra={"alert_event": n.event.value, "payload": n.payload})

    def events(self) -> list[AlertEvent]:
        return [n.event for n in self.recent]


class WebhookNotifier:
    """POSTs ``{"event", "ts", "payload"}`` as JSON to a single URL."""

    def __init__(
        self,
        url: str,
        *,
        timeout_s: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.url = url
        self._client = httpx.AsyncClient(timeout=timeout_s, transport=transport)
        self._clock = clock

    async def aclose(self) -> None:
        await self._client.aclose()

    async def notify(self, event: AlertEvent, payload: dict[str, Any]) -> None:
        body = {"event": AlertEvent(event).value, "ts": self._clock().isoformat(), "payload": to_payload(payload)}
        resp = await self._client.post(self.url, json=body)
        if resp.status_code >= 400:
            raise httpx.HTTPStatusError(f"webhook returned {resp.status_code}", request=resp.request, response=resp)


class FanoutNotifier:
    """Delivers to every child. One child failing does not stop the others."""

    def __init__(self, notifiers: list[Notifier]) -> None:
        self.notifiers = list(notifiers)

    async def notify(self, event: AlertEvent, payload: dict[str, Any]) -> None:
        for n in self.notifiers:
            try:
                await n.notify(event, payload)
            except Exception as e:
                logger.warning("notify_failed", extra={"notifier": type(n).__name__, "error": f"{type(e).__name__}: {e}"})
