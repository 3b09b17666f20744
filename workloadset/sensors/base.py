"""Base sensor classes for operator monitoring.

This module defines the base OperatorSensor class that provides lifecycle hooks
for monitoring WorkloadSet reconciliation. All hooks are no-ops by default,
allowing subclasses to override only the events they care about.

- Hooks come in pairs where an operation has a duration: on_X_start() and
  on_X_complete()
- Start hooks return an optional state dict for tracking the operation
- Complete hooks receive the state dict from their corresponding start hook
"""

from typing import Dict, Optional, Any


class OperatorSensor:
    """Base sensor class for WorkloadSet operator monitoring.

    Hooks cover four areas:
    1. Reconciliation lifecycle (work queue and reconcile passes)
    2. Child object actions (pod and claim creates/deletes)
    3. Revision history
    4. Status persistence

    Example:
        class LoggingSensor(OperatorSensor):
            def on_reconcile_start(self, set_name, namespace, trigger_source):
                return {'start_time': time.time()}

            def on_reconcile_complete(self, set_name, namespace, state, success, error=None):
                duration = time.time() - state['start_time']
                logger.info(f"Reconciled {set_name} in {duration}s")
    """

    # =============================================================================
    # Reconciliation Lifecycle Hooks
    # =============================================================================

    def on_reconcile_start(
        self,
        set_name: str,
        namespace: str,
        trigger_source: str,
    ) -> Optional[Dict[str, Any]]:
        """Called when a worker starts reconciling a WorkloadSet.

        Args:
            set_name: WorkloadSet name
            namespace: Kubernetes namespace
            trigger_source: Why the key was processed (event, retry, resync)

        Returns:
            Optional state dict passed to on_reconcile_complete
        """
        pass

    def on_reconcile_complete(
        self,
        set_name: str,
        namespace: str,
        state: Optional[Dict[str, Any]],
        success: bool,
        error: Optional[Exception] = None,
    ) -> None:
        """Called when a reconcile pass finishes, successfully or not."""
        pass

    def on_reconcile_queued(self, set_name: str, namespace: str, queue_depth: int) -> None:
        """Called when a WorkloadSet key is added to the work queue."""
        pass

    def on_reconcile_dequeued(self, set_name: str, namespace: str, wait_time: float) -> None:
        """Called when a worker picks up a key, with the time it spent queued."""
        pass

    def on_readiness_wait(self, set_name: str, namespace: str, reason: str) -> None:
        """Called when a pass stops early to wait for pods."""
        pass

    # =============================================================================
    # Child Object Hooks
    # =============================================================================

    def on_action_start(
        self,
        set_name: str,
        namespace: str,
        action: str,
        object_name: str,
    ) -> Optional[Dict[str, Any]]:
        """Called before a pod or claim action is sent to the API.

        Args:
            set_name: Owning WorkloadSet name
            namespace: Kubernetes namespace
            action: Action kind (CreatePod, DeletePod, CreateClaim, ...)
            object_name: Name of the pod or claim

        Returns:
            Optional state dict passed to on_action_complete
        """
        pass

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
        """Called after a pod or claim action finished."""
        pass

    # =============================================================================
    # Revision Hooks
    # =============================================================================

    def on_revision_created(
        self, set_name: str, namespace: str, revision_name: str, collision_count: int
    ) -> None:
        pass

    def on_revision_collision(self, set_name: str, namespace: str, collision_count: int) -> None:
        pass

    # =============================================================================
    # Status Hooks
    # =============================================================================

    def on_status_conflict(self, set_name: str, namespace: str, attempt: int) -> None:
        pass

    def on_status_update(
        self, set_name: str, namespace: str, attempts: int, success: bool
    ) -> None:
        pass
