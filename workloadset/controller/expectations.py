"""Bookkeeping of creates and deletes that the cache has not caught up with."""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Hashable, Iterable, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class Expectation:
    """Objects a WorkloadSet is still waiting to see appear or vanish."""

    creates: Set[Hashable] = field(default_factory=set)
    deletes: Set[Hashable] = field(default_factory=set)
    timestamp: float = 0.0

    @property
    def add(self) -> int:
        return len(self.creates)

    @property
    def delete(self) -> int:
        return len(self.deletes)

    def fulfilled(self) -> bool:
        return not self.creates and not self.deletes


class ExpectationTracker:
    """Per-key expectations, safe to use from watch handlers and workers."""

    def __init__(
        self,
        timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout = timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._store: Dict[str, Expectation] = {}

    def get(self, key: str) -> Optional[Expectation]:
        with self._lock:
            exp = self._store.get(key)
            if exp is None:
                return None
            return Expectation(set(exp.creates), set(exp.deletes), exp.timestamp)

    def expect(
        self, key: str, creates: Iterable[Hashable] = (), deletes: Iterable[Hashable] = ()
    ) -> None:
        """Register the creates and deletes of a new action batch."""
        with self._lock:
            self._store[key] = Expectation(set(creates), set(deletes), self._clock())

    def lower(
        self, key: str, creates: Iterable[Hashable] = (), deletes: Iterable[Hashable] = ()
    ) -> None:
        """Stop waiting for objects whose create/delete failed or was skipped."""
        with self._lock:
            exp = self._store.get(key)
            if exp is None:
                return
            exp.creates.difference_update(creates)
            exp.deletes.difference_update(deletes)

    def creation_observed(self, key: str, ref: Hashable) -> None:
        self.lower(key, creates=[ref])

    def deletion_observed(self, key: str, ref: Hashable) -> None:
        self.lower(key, deletes=[ref])

    def satisfied(self, key: str) -> bool:
        """True when nothing is pending for `key` or the pending batch expired."""
        with self._lock:
            exp = self._store.get(key)
            if exp is None or exp.fulfilled():
                return True
            age = self._clock() - exp.timestamp
            if age > self.timeout:
                logger.warning(
                    f"Expectations for {key} expired after {age:.0f}s "
                    f"(pending creates={sorted(exp.creates, key=str)}, "
                    f"deletes={sorted(exp.deletes, key=str)})"
                )
                return True
            return False

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._store
