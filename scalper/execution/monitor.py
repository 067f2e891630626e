"""scalper.execution.monitor

Periodic monitoring of open positions.

A single cancellable task calls ``manager.tick()`` every ``interval_s``.
Tests skip the scheduler and call ``tick()`` directly.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from scalper.core.retry import Sleep

logger = logging.getLogger(__name__)


class Tickable(Protocol):
    async def tick(self) -> list: ...


class MonitorScheduler:
    def __init__(self, target: Tickable, *, interval_s: float, sleep: Sleep = asyncio.sleep) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self.target = target
        self.interval_s = float(interval_s)
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="position-monitor")
        logger.info("monitor_started", extra={"interval_s": self.interval_s})

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("monitor_stopped", extra={"ticks": self.ticks})

    async def _run(self) -> None:
        while True:
            try:
                await self.target.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # A broken tick must not kill the monitor; positions stay watched.
                logger.exception("monitor_tick_failed", extra={"error": f"{type(e).__name__}: {e}"})
            self.ticks += 1
            await self._sleep(self.interval_s)
