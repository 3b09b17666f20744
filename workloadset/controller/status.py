"""Aggregation and persistence of WorkloadSet status."""

import copy
import logging
from typing import Dict, List, Mapping, Optional

from workloadset.controller.cache import WORKLOADSET, ObjectCache
from workloadset.sensors.base import OperatorSensor
from workloadset.types.models.workloadset_spec import WorkloadSetSpec
from workloadset.utils.errors import ConflictError, NotFoundError
from workloadset.utils.helpers import upsert_condition, utc_now
from workloadset.utils.pods import (
    get_ordinal,
    is_available,
    is_created,
    is_running_and_ready,
    is_terminating,
    revision_of,
)
from workloadset.utils.retry import retry_on_conflict
from workloadset.utils.selectors import selector_to_str

logger = logging.getLogger(__name__)

CONDITION_AVAILABLE = "Available"
CONDITION_PROGRESSING = "Progressing"
CONDITION_INVALID_SPEC = "InvalidSpec"


def condition(type: str, status: bool, reason: str, message: str = "") -> Dict:
    return {
        "type": type,
        "status": "True" if status else "False",
        "reason": reason,
        "message": message,
    }


def merge_status(existing: Optional[Mapping], fields: Mapping) -> Dict:
    """Apply owned `fields` onto an existing status, keeping everything else."""
    status = copy.deepcopy(dict(existing or {}))
    for key, value in fields.items():
        if key == "conditions":
            continue
        status[key] = value
    conditions = status.get("conditions")
    for cond in fields.get("conditions") or []:
        conditions = upsert_condition(conditions, cond)
    if conditions is not None:
        status["conditions"] = conditions
    return status


def status_changed(existing: Optional[Mapping], fields: Mapping) -> bool:
    existing = existing or {}
    for key, value in fields.items():
        if key == "conditions":
            continue
        if existing.get(key) != value:
            return True
    current = {c.get("type"): c for c in existing.get("conditions") or []}
    for cond in fields.get("conditions") or []:
        old = current.get(cond["type"])
        if old is None or any(old.get(k) != cond.get(k) for k in ("status", "reason", "message")):
            return True
    return False


class StatusReconciler:
    """Computes the status a WorkloadSet should report and persists it."""

    def __init__(
        self,
        store,
        cache: ObjectCache,
        sensor: OperatorSensor = None,
        max_attempts: int = 5,
        retry_wait=None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.sensor = sensor or OperatorSensor()
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait

    def compute(
        self,
        set_obj: Mapping,
        spec: WorkloadSetSpec,
        pods: List[Dict],
        current_revision: str,
        update_revision: str,
        collision_count: int,
        now=None,
    ) -> Dict:
        now = now or utc_now()
        replicas = ready = available = current = updated = 0
        for pod in pods:
            ordinal = get_ordinal(pod)
            if ordinal is None or not spec.in_range(ordinal) or not is_created(pod):
                continue
            replicas += 1
            if is_running_and_ready(pod):
                ready += 1
                if is_available(pod, spec.min_ready_seconds, now):
                    available += 1
            if not is_terminating(pod):
                if revision_of(pod) == current_revision:
                    current += 1
                if revision_of(pod) == update_revision:
                    updated += 1

        if replicas == spec.replicas and updated == replicas and ready == replicas:
            current_revision = update_revision
            current = updated

        converged = current_revision == update_revision and ready == spec.replicas
        conditions = [
            condition(
                CONDITION_AVAILABLE,
                available >= spec.replicas,
                "MinimumReplicasAvailable"
                if available >= spec.replicas
                else "ReplicasUnavailable",
                f"{available}/{spec.replicas} replicas available",
            ),
            condition(
                CONDITION_PROGRESSING,
                not converged,
                "RolloutComplete" if converged else "RolloutInProgress",
                f"{updated}/{spec.replicas} replicas at revision {update_revision}",
            ),
        ]
        # InvalidSpec is only cleared once it has been reported
        existing = (set_obj.get("status") or {}).get("conditions") or []
        if any(c.get("type") == CONDITION_INVALID_SPEC for c in existing):
            conditions.append(condition(CONDITION_INVALID_SPEC, False, "Valid"))
        fields = {
            "observedGeneration": set_obj["metadata"].get("generation"),
            "replicas": replicas,
            "readyReplicas": ready,
            "availableReplicas": available,
            "currentReplicas": current,
            "updatedReplicas": updated,
            "currentRevision": current_revision,
            "updateRevision": update_revision,
            "collisionCount": collision_count,
            "selector": selector_to_str(spec.selector.as_selector()),
            "conditions": conditions,
        }
        return fields

    async def update(self, set_obj: Mapping, fields: Mapping) -> bool:
        """Persist `fields` unless the status already reports them."""
        if not status_changed(set_obj.get("status"), fields):
            return False
        await self.persist(set_obj, fields)
        return True

    async def mark_invalid(self, set_obj: Mapping, message: str) -> bool:
        fields = {
            "observedGeneration": set_obj["metadata"].get("generation"),
            "conditions": [condition(CONDITION_INVALID_SPEC, True, "InvalidSpec", message)],
        }
        return await self.update(set_obj, fields)

    async def _refetch(self, namespace: str, name: str, stale_version: str) -> Dict:
        cached = self.cache.get(WORKLOADSET, namespace, name)
        if cached is not None and cached["metadata"].get("resourceVersion") != stale_version:
            return cached
        fresh = await self.store.fetch_workloadset(namespace, name)
        if fresh is None:
            raise NotFoundError(f"WorkloadSet {namespace}/{name} not found", status=404)
        return fresh

    async def persist(self, set_obj: Mapping, fields: Mapping) -> Dict:
        """Write owned status fields, re-reading the object on conflicts."""
        metadata = set_obj["metadata"]
        namespace, name = metadata.get("namespace"), metadata["name"]
        target = {"obj": set_obj, "attempts": 0}

        async def write():
            if target["attempts"]:
                stale = target["obj"]["metadata"].get("resourceVersion")
                target["obj"] = await self._refetch(namespace, name, stale)
            target["attempts"] += 1
            body = copy.deepcopy(dict(target["obj"]))
            body["status"] = merge_status(body.get("status"), fields)
            try:
                return await self.store.replace_workloadset_status(namespace, name, body)
            except ConflictError:
                logger.debug(
                    f"{namespace}/{name}: status write conflicted "
                    f"(attempt {target['attempts']}/{self.max_attempts})"
                )
                self.sensor.on_status_conflict(name, namespace, target["attempts"])
                raise

        try:
            result = await retry_on_conflict(write, self.max_attempts, wait=self.retry_wait)
        except ConflictError:
            self.sensor.on_status_update(name, namespace, target["attempts"], False)
            raise
        self.sensor.on_status_update(name, namespace, target["attempts"], True)
        return result
