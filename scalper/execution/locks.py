"""scalper.execution.locks

Instrument-keyed execution locks.

Advisory, non-blocking and non-reentrant. A second acquire on a held
instrument fails immediately with ``LockConflictError``; callers retry on
their own schedule. ``hold()`` releases on every exit path.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

from scalper.core.exceptions import LockConflictError


class ExecutionLocks:
    def __init__(self) -> None:
        self._mu = threading.Lock()
        self._held: dict[str, str] = {}

    def acquire(self, instrument: str) -> str:
        with self._mu:
            if instrument in self._held:
                raise LockConflictError(instrument)
            token = uuid.uuid4().hex
            self._held[instrument] = token
            return token

    def release(self, instrument: str, token: str) -> None:
        with self._mu:
            if self._held.get(instrument) == token:
                del self._held[instrument]

    def is_held(self, instrument: str) -> bool:
        with self._mu:
            return instrument in self._held

    def held(self) -> set[str]:
        with self._mu:
            return set(self._held)

    @contextmanager
    def hold(self, instrument: str) -> Iterator[str]:
        token = self.acquire(instrument)
        try:
            yield token
        finally:
            self.release(instrument, token)
