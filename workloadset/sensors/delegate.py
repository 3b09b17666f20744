"""Sensor delegation for fan-out pattern.

SensorDelegate routes sensor events to several monitoring backends at once.
Each backend receives the same events and keeps its own state.
"""

from typing import Set, Dict, Optional, Any
import logging

from workloadset.sensors.base import OperatorSensor

logger = logging.getLogger(__name__)


class SensorDelegate(OperatorSensor):
    """Delegate sensor that fans out events to multiple backends.

    Start hooks return a dict mapping each child sensor to the state it
    returned, and complete hooks hand every child its own state back.

    Example:
        delegate = SensorDelegate()
        delegate.add(PrometheusMonitor())

        state = delegate.on_reconcile_start("web", "default", "event")
        delegate.on_reconcile_complete("web", "default", state, True)
    """

    def __init__(self) -> None:
        self._sensors: Set[OperatorSensor] = set()

    def add(self, sensor: OperatorSensor) -> None:
        logger.info(f"Adding sensor: {sensor.__class__.__name__}")
        self._sensors.add(sensor)

    def remove(self, sensor: OperatorSensor) -> None:
        logger.info(f"Removing sensor: {sensor.__class__.__name__}")
        self._sensors.discard(sensor)

    def clear(self) -> None:
        logger.info(f"Clearing {len(self._sensors)} sensors")
        self._sensors.clear()

    def __len__(self) -> int:
        return len(self._sensors)

    def _each(self, hook: str, *args, **kwargs) -> None:
        for sensor in list(self._sensors):
            try:
                getattr(sensor, hook)(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}", exc_info=True
                )

    def _start(self, hook: str, *args) -> Dict[OperatorSensor, Any]:
        states = {}
        for sensor in list(self._sensors):
            try:
                states[sensor] = getattr(sensor, hook)(*args)
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}", exc_info=True
                )
        return states

    def _complete(self, hook: str, state: Optional[Dict], *args, **kwargs) -> None:
        state = state or {}
        for sensor in list(self._sensors):
            try:
                getattr(sensor, hook)(*args, state=state.get(sensor), **kwargs)
            except Exception as e:
                logger.error(
                    f"Error in {sensor.__class__.__name__}.{hook}: {e}", exc_info=True
                )

    # =============================================================================
    # Reconciliation Lifecycle Hooks
    # =============================================================================

    def on_reconcile_start(self, set_name, namespace, trigger_source):
        return self._start("on_reconcile_start", set_name, namespace, trigger_source)

    def on_reconcile_complete(self, set_name, namespace, state, success, error=None):
        self._complete(
            "on_reconcile_complete",
            state,
            set_name=set_name,
            namespace=namespace,
            success=success,
            error=error,
        )

    def on_reconcile_queued(self, set_name, namespace, queue_depth):
        self._each("on_reconcile_queued", set_name, namespace, queue_depth)

    def on_reconcile_dequeued(self, set_name, namespace, wait_time):
        self._each("on_reconcile_dequeued", set_name, namespace, wait_time)

    def on_readiness_wait(self, set_name, namespace, reason):
        self._each("on_readiness_wait", set_name, namespace, reason)

    # =============================================================================
    # Child Object Hooks
    # =============================================================================

    def on_action_start(self, set_name, namespace, action, object_name):
        return self._start("on_action_start", set_name, namespace, action, object_name)

    def on_action_complete(
        self, set_name, namespace, action, object_name, state, success, error=None
    ):
        self._complete(
            "on_action_complete",
            state,
            set_name=set_name,
            namespace=namespace,
            action=action,
            object_name=object_name,
            success=success,
            error=error,
        )

    # =============================================================================
    # Revision and Status Hooks
    # =============================================================================

    def on_revision_created(self, set_name, namespace, revision_name, collision_count):
        self._each("on_revision_created", set_name, namespace, revision_name, collision_count)

    def on_revision_collision(self, set_name, namespace, collision_count):
        self._each("on_revision_collision", set_name, namespace, collision_count)

    def on_status_conflict(self, set_name, namespace, attempt):
        self._each("on_status_conflict", set_name, namespace, attempt)

    def on_status_update(self, set_name, namespace, attempts, success):
        self._each("on_status_update", set_name, namespace, attempts, success)
