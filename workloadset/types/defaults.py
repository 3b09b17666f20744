"""Admission-time defaulting of WorkloadSet objects."""

from typing import Dict
from workloadset.types.models.retention_policy import (
    PersistentVolumeClaimRetentionPolicy,
)
from workloadset.types.models.update_strategy import WorkloadSetUpdateStrategy
from workloadset.types.models.workloadset_spec import WorkloadSetSpec

DEFAULT_REPLICAS = 1
DEFAULT_PARTITION = 0
DEFAULT_MAX_UNAVAILABLE = 1
DEFAULT_REVISION_HISTORY_LIMIT = 10


def set_defaults(obj: Dict, max_unavailable_enabled: bool = True) -> Dict:
    """Fill unset spec fields of a WorkloadSet in place and return it.

    Applying it to an already defaulted object changes nothing.
    """
    spec = obj.setdefault("spec", {})

    if spec.get("replicas") is None:
        spec["replicas"] = DEFAULT_REPLICAS

    if not spec.get("podManagementPolicy"):
        spec["podManagementPolicy"] = WorkloadSetSpec.ORDERED_READY

    strategy = spec.get("updateStrategy") or {}
    spec["updateStrategy"] = strategy
    if not strategy.get("type"):
        strategy["type"] = WorkloadSetUpdateStrategy.ROLLING_UPDATE
    if strategy["type"] == WorkloadSetUpdateStrategy.ROLLING_UPDATE:
        rolling = strategy.get("rollingUpdate") or {}
        strategy["rollingUpdate"] = rolling
        if rolling.get("partition") is None:
            rolling["partition"] = DEFAULT_PARTITION
        if max_unavailable_enabled and rolling.get("maxUnavailable") is None:
            rolling["maxUnavailable"] = DEFAULT_MAX_UNAVAILABLE

    policy = spec.get("persistentVolumeClaimRetentionPolicy") or {}
    spec["persistentVolumeClaimRetentionPolicy"] = policy
    if not policy.get("whenDeleted"):
        policy["whenDeleted"] = PersistentVolumeClaimRetentionPolicy.RETAIN
    if not policy.get("whenScaled"):
        policy["whenScaled"] = PersistentVolumeClaimRetentionPolicy.RETAIN

    if spec.get("revisionHistoryLimit") is None:
        spec["revisionHistoryLimit"] = DEFAULT_REVISION_HISTORY_LIMIT

    return obj
