"""Predicates over pod (and claim) mappings."""

import re
from datetime import datetime, timedelta
from typing import Mapping, Optional, Tuple

from workloadset.common.models.labels import Labels
from workloadset.utils.helpers import iso_datestr_to_datetime

_ORDINAL_RE = re.compile(r"^(.*)-([0-9]+)$")

PHASE_RUNNING = "Running"
PHASE_FAILED = "Failed"
PHASE_SUCCEEDED = "Succeeded"


def get_parent_name_and_ordinal(name: str) -> Tuple[str, Optional[int]]:
    match = _ORDINAL_RE.match(name or "")
    if not match:
        return "", None
    return match.group(1), int(match.group(2))


def get_ordinal(pod: Mapping) -> Optional[int]:
    """Ordinal from the name suffix, falling back to the index label."""
    metadata = pod.get("metadata") or {}
    _, ordinal = get_parent_name_and_ordinal(metadata.get("name"))
    if ordinal is not None:
        return ordinal
    index = (metadata.get("labels") or {}).get(Labels.POD_INDEX_LABEL)
    if index is not None and index.isdigit():
        return int(index)
    return None


def is_member_of(set_name: str, pod: Mapping) -> bool:
    parent, _ = get_parent_name_and_ordinal((pod.get("metadata") or {}).get("name"))
    return parent == set_name


def revision_of(pod: Mapping) -> Optional[str]:
    return ((pod.get("metadata") or {}).get("labels") or {}).get(Labels.REVISION_LABEL)


def phase_of(pod: Mapping) -> str:
    return (pod.get("status") or {}).get("phase") or ""


def is_created(pod: Mapping) -> bool:
    return phase_of(pod) != ""


def is_failed(pod: Mapping) -> bool:
    return phase_of(pod) == PHASE_FAILED


def is_succeeded(pod: Mapping) -> bool:
    return phase_of(pod) == PHASE_SUCCEEDED


def is_terminating(obj: Mapping) -> bool:
    return bool((obj.get("metadata") or {}).get("deletionTimestamp"))


def _ready_condition(pod: Mapping) -> Optional[Mapping]:
    for cond in (pod.get("status") or {}).get("conditions") or []:
        if cond.get("type") == "Ready":
            return cond
    return None


def is_running_and_ready(pod: Mapping) -> bool:
    cond = _ready_condition(pod)
    return phase_of(pod) == PHASE_RUNNING and bool(cond) and cond.get("status") == "True"


def is_healthy(pod: Mapping) -> bool:
    return is_running_and_ready(pod) and not is_terminating(pod)


def available_in(pod: Mapping, min_ready_seconds: int, now: datetime) -> Optional[float]:
    """Seconds until a ready pod counts as available.

    Returns None when the pod is not running and ready, 0 when it
    is already available.
    """
    if not is_running_and_ready(pod):
        return None
    if not min_ready_seconds:
        return 0.0
    since = _ready_condition(pod).get("lastTransitionTime")
    if not since:
        return float(min_ready_seconds)
    ready_at = iso_datestr_to_datetime(since) + timedelta(seconds=min_ready_seconds)
    return max((ready_at - now).total_seconds(), 0.0)


def is_available(pod: Mapping, min_ready_seconds: int, now: datetime) -> bool:
    return available_in(pod, min_ready_seconds, now) == 0.0
