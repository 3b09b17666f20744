"""Deduplicating, rate limited work queue of WorkloadSet keys."""

import asyncio
import logging
import time
from typing import Dict, Optional, Set

logger = logging.getLogger(__name__)


class ShutDown(Exception):
    """Raised by `get` once the queue is shut down."""


class WorkQueue:
    """Queue of object keys with the semantics controllers rely on.

    * A key is pending at most once, however often it is added.
    * A key handed to a worker is not handed to another worker until
      `done` is called; adds in the meantime re-queue it afterwards.
    * `add_rate_limited` delays a key exponentially per failure until
      `forget` resets its history.
    """

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._queue: asyncio.Queue = asyncio.Queue()
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._failures: Dict[str, int] = {}
        self._added_at: Dict[str, float] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._dirty)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: str) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        self._added_at.setdefault(key, time.monotonic())
        if key in self._processing:
            return
        self._queue.put_nowait(key)

    def add_after(self, key: str, delay: float) -> None:
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        existing = self._timers.get(key)
        if existing is not None:
            # keep the earliest wake-up
            if existing.when() <= loop.time() + delay:
                return
            existing.cancel()
        self._timers[key] = loop.call_later(delay, self._fire, key)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        self.add(key)

    def when(self, key: str) -> float:
        """Backoff delay for the next rate limited add of `key`."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        return min(self.base_delay * (2 ** failures), self.max_delay)

    def add_rate_limited(self, key: str) -> None:
        self.add_after(key, self.when(key))

    def forget(self, key: str) -> None:
        self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> str:
        """Wait for the next key and mark it as being processed."""
        while True:
            if self._shutting_down:
                raise ShutDown()
            key = await self._queue.get()
            if key is None:
                raise ShutDown()
            if key not in self._dirty or key in self._processing:
                continue
            self._dirty.discard(key)
            self._processing.add(key)
            return key

    def wait_time(self, key: str) -> Optional[float]:
        """Seconds `key` spent pending before its last `get`."""
        added = self._added_at.pop(key, None)
        return time.monotonic() - added if added is not None else None

    def done(self, key: str) -> None:
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.put_nowait(key)

    def shut_down(self, waiters: int = 1) -> None:
        """Stop handing out keys and wake up to `waiters` blocked getters."""
        self._shutting_down = True
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        for _ in range(waiters):
            self._queue.put_nowait(None)
