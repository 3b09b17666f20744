"""Watch event intake and the worker pool draining the reconcile queue."""

import asyncio
import logging
from typing import List, Mapping, Optional

from workloadset.controller.cache import (
    CLAIM,
    DELETED,
    POD,
    REVISION,
    WORKLOADSET,
    ObjectCache,
    controller_ref,
)
from workloadset.controller.expectations import ExpectationTracker
from workloadset.controller.queue import ShutDown, WorkQueue
from workloadset.controller.reconciler import WorkloadSetReconciler
from workloadset.sensors.base import OperatorSensor
from workloadset.types.models.workloadset_resources import WorkloadSetResources
from workloadset.utils.pods import is_terminating

logger = logging.getLogger(__name__)


def owner_key(obj: Mapping) -> Optional[str]:
    """Key of the WorkloadSet controlling `obj`, if one does."""
    ref = controller_ref(obj)
    if ref is None or ref.get("kind") != WorkloadSetResources.KIND:
        return None
    return WorkloadSetResources.key((obj.get("metadata") or {}).get("namespace"), ref["name"])


class WorkloadSetController:
    """Feeds watch events into the cache and runs reconciles on a worker pool."""

    def __init__(
        self,
        reconciler: WorkloadSetReconciler,
        cache: ObjectCache,
        expectations: ExpectationTracker,
        queue: WorkQueue,
        workers: int = 5,
        sensor: OperatorSensor = None,
    ) -> None:
        self.reconciler = reconciler
        self.cache = cache
        self.expectations = expectations
        self.queue = queue
        self.workers = workers
        self.sensor = sensor or OperatorSensor()
        self._tasks: List[asyncio.Task] = []
        self._triggers = {}

    def handle_event(self, kind: str, event_type: Optional[str], obj: Mapping) -> Optional[str]:
        """Record a watch event and enqueue the WorkloadSet it concerns.

        Returns the enqueued key, if any.
        """
        self.cache.apply(kind, event_type, obj)
        metadata = obj.get("metadata") or {}

        if kind == WORKLOADSET:
            key = WorkloadSetResources.key(metadata.get("namespace"), metadata.get("name"))
            if event_type == DELETED:
                self.expectations.delete(key)
            self.enqueue(key, trigger_source="event")
            return key

        key = owner_key(obj)
        if key is None:
            return None
        if kind in (POD, CLAIM):
            ref = (kind, metadata.get("name"))
            if event_type == DELETED or is_terminating(obj):
                self.expectations.deletion_observed(key, ref)
            else:
                self.expectations.creation_observed(key, ref)
        elif kind != REVISION:
            logger.debug(f"Ignoring event for unknown kind {kind}")
            return None
        self.enqueue(key, trigger_source="event")
        return key

    def enqueue(self, key: str, trigger_source: str = "resync") -> None:
        self._triggers.setdefault(key, trigger_source)
        self.queue.add(key)
        namespace, name = WorkloadSetResources.split_key(key)
        self.sensor.on_reconcile_queued(name, namespace, len(self.queue))

    async def start(self) -> None:
        logger.info(f"Starting {self.workers} WorkloadSet workers")
        for i in range(self.workers):
            self._tasks.append(asyncio.create_task(self._worker(i), name=f"workloadset-worker-{i}"))

    async def _worker(self, index: int) -> None:
        while True:
            try:
                key = await self.queue.get()
            except ShutDown:
                logger.debug(f"Worker {index} stopped")
                return
            try:
                await self._process(key)
            finally:
                self.queue.done(key)

    async def _process(self, key: str) -> None:
        namespace, name = WorkloadSetResources.split_key(key)
        wait_time = self.queue.wait_time(key)
        if wait_time is not None:
            self.sensor.on_reconcile_dequeued(name, namespace, wait_time)
        trigger_source = self._triggers.pop(key, "resync")
        state = self.sensor.on_reconcile_start(name, namespace, trigger_source)
        try:
            result = await self.reconciler.reconcile(key)
        except asyncio.CancelledError:
            raise
        except Exception as ex:
            logger.error(
                f"{key}: reconcile failed ({self.queue.num_requeues(key) + 1} in a row): {ex}",
                exc_info=True,
            )
            self.sensor.on_reconcile_complete(name, namespace, state, False, ex)
            self.queue.add_rate_limited(key)
            return

        self.sensor.on_reconcile_complete(name, namespace, state, not result.requeue)
        if result.requeue:
            self.queue.add_rate_limited(key)
            return
        self.queue.forget(key)
        if result.requeue_after:
            self.queue.add_after(key, result.requeue_after)

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Stop dequeuing, wait for in-flight reconciles and cancel the rest."""
        self.queue.shut_down(waiters=len(self._tasks))
        if not self._tasks:
            return
        done, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} worker(s) still busy after {timeout}s")
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []
        logger.info("WorkloadSet workers stopped")
