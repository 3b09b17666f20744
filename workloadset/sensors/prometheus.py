"""Prometheus monitoring backend for the WorkloadSet operator.

PrometheusMonitor turns sensor events into Prometheus metrics:

1. Reconciliation loop health - duration, queue depth and wait, errors
2. Child object actions - pod/claim operation counts and latency
3. Revisions and status - revisions created, hash collisions, status conflicts

All metrics carry the WorkloadSet name and namespace as labels.
"""

from typing import Dict, Optional, Any
import time
import logging

from prometheus_client import Counter, Histogram, Gauge, REGISTRY

from workloadset.sensors.base import OperatorSensor

logger = logging.getLogger(__name__)


class PrometheusMonitor(OperatorSensor):
    """Prometheus metrics monitor for the WorkloadSet operator.

    Example:
        monitor = PrometheusMonitor()
        state = monitor.on_reconcile_start("web", "default", "event")
        monitor.on_reconcile_complete("web", "default", state, True)
    """

    def __init__(self, registry=REGISTRY):
        super().__init__()

        # =============================================================================
        # Reconciliation Loop Metrics
        # =============================================================================

        self.reconcile_duration = Histogram(
            'wset_reconcile_duration_seconds',
            'Time spent in a reconcile pass',
            labelnames=['set_name', 'namespace', 'trigger_source', 'result'],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=registry,
        )

        self.reconcile_total = Counter(
            'wset_reconcile_total',
            'Total number of reconcile passes',
            labelnames=['set_name', 'namespace', 'trigger_source', 'result'],
            registry=registry,
        )

        self.reconcile_errors = Counter(
            'wset_reconcile_errors_total',
            'Total number of failed reconcile passes',
            labelnames=['set_name', 'namespace', 'error_type'],
            registry=registry,
        )

        self.reconcile_queue_depth = Gauge(
            'wset_reconcile_queue_depth',
            'Number of WorkloadSet keys waiting in the work queue',
            registry=registry,
        )

        self.reconcile_queue_wait_seconds = Histogram(
            'wset_reconcile_queue_wait_seconds',
            'Time a key spent in the work queue',
            labelnames=['set_name', 'namespace'],
            buckets=[0.001, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0],
            registry=registry,
        )

        self.readiness_waits = Counter(
            'wset_readiness_waits_total',
            'Reconcile passes that stopped to wait for pods',
            labelnames=['set_name', 'namespace'],
            registry=registry,
        )

        # =============================================================================
        # Child Object Metrics
        # =============================================================================

        self.action_duration = Histogram(
            'wset_action_duration_seconds',
            'Time spent on pod and claim API calls',
            labelnames=['set_name', 'namespace', 'action', 'result'],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
            registry=registry,
        )

        self.action_total = Counter(
            'wset_actions_total',
            'Total number of pod and claim actions',
            labelnames=['set_name', 'namespace', 'action', 'result'],
            registry=registry,
        )

        # =============================================================================
        # Revision & Status Metrics
        # =============================================================================

        self.revisions_created = Counter(
            'wset_revisions_created_total',
            'Total number of ControllerRevisions created',
            labelnames=['set_name', 'namespace'],
            registry=registry,
        )

        self.revision_collisions = Counter(
            'wset_revision_collisions_total',
            'Total number of revision hash collisions',
            labelnames=['set_name', 'namespace'],
            registry=registry,
        )

        self.status_conflicts = Counter(
            'wset_status_conflicts_total',
            'Status writes rejected because of a stale resourceVersion',
            labelnames=['set_name', 'namespace'],
            registry=registry,
        )

        self.status_updates = Counter(
            'wset_status_updates_total',
            'Total number of status writes',
            labelnames=['set_name', 'namespace', 'result'],
            registry=registry,
        )

        logger.info("PrometheusMonitor initialized with all metrics")

    # =============================================================================
    # Reconciliation Lifecycle Hooks
    # =============================================================================

    def on_reconcile_start(
        self, set_name: str, namespace: str, trigger_source: str
    ) -> Optional[Dict[str, Any]]:
        """Record reconciliation start time."""
        return {
            'start_time': time.time(),
            'trigger_source': trigger_source,
        }

    def on_reconcile_complete(
        self,
        set_name: str,
        namespace: str,
        state: Optional[Dict[str, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Record reconciliation duration and result."""
        if state:
            duration = time.time() - state['start_time']
            trigger_source = state['trigger_source']
            result = 'success' if success else 'failure'

            self.reconcile_duration.labels(
                set_name=set_name,
                namespace=namespace,
                trigger_source=trigger_source,
                result=result,
            ).observe(duration)

            self.reconcile_total.labels(
                set_name=set_name,
                namespace=namespace,
                trigger_source=trigger_source,
                result=result,
            ).inc()

        if error:
            self.reconcile_errors.labels(
                set_name=set_name,
                namespace=namespace,
                error_type=error.__class__.__name__,
            ).inc()

    def on_reconcile_queued(self, set_name: str, namespace: str, queue_depth: int) -> None:
        self.reconcile_queue_depth.set(queue_depth)

    def on_reconcile_dequeued(self, set_name: str, namespace: str, wait_time: float) -> None:
        self.reconcile_queue_wait_seconds.labels(
            set_name=set_name,
            namespace=namespace,
        ).observe(wait_time)

    def on_readiness_wait(self, set_name: str, namespace: str, reason: str) -> None:
        self.readiness_waits.labels(set_name=set_name, namespace=namespace).inc()

    # =============================================================================
    # Child Object Hooks
    # =============================================================================

    def on_action_start(
        self, set_name: str, namespace: str, action: str, object_name: str
    ) -> Optional[Dict[str, Any]]:
        return {'start_time': time.time()}

    def on_action_complete(
        self,
        set_name: str,
        namespace: str,
        action: str,
        object_name: str,
        state: Optional[Dict[str, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        result = 'success' if success else 'failure'
        if state:
            self.action_duration.labels(
                set_name=set_name,
                namespace=namespace,
                action=action,
                result=result,
            ).observe(time.time() - state['start_time'])
        self.action_total.labels(
            set_name=set_name,
            namespace=namespace,
            action=action,
            result=result,
        ).inc()

    # =============================================================================
    # Revision and Status Hooks
    # =============================================================================

    def on_revision_created(
        self, set_name: str, namespace: str, revision_name: str, collision_count: int
    ) -> None:
        self.revisions_created.labels(set_name=set_name, namespace=namespace).inc()

    def on_revision_collision(self, set_name: str, namespace: str, collision_count: int) -> None:
        self.revision_collisions.labels(set_name=set_name, namespace=namespace).inc()

    def on_status_conflict(self, set_name: str, namespace: str, attempt: int) -> None:
        self.status_conflicts.labels(set_name=set_name, namespace=namespace).inc()

    def on_status_update(
        self, set_name: str, namespace: str, attempts: int, success: bool
    ) -> None:
        self.status_updates.labels(
            set_name=set_name,
            namespace=namespace,
            result='success' if success else 'failure',
        ).inc()
