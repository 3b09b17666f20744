"""Planning of pod and claim actions for one reconcile pass.

The orchestrator is pure: it looks at a snapshot of the pods and claims a
WorkloadSet owns and returns the actions that move it one step closer to
the desired state. Applying them is up to the reconciler.
"""

import copy
import math
from datetime import datetime
from typing import Dict, Hashable, List, Mapping, NamedTuple, Optional, Tuple

import kopf

from workloadset.common.models.labels import Labels
from workloadset.controller.cache import controller_ref
from workloadset.controller.revision import revision_name, template_from_revision
from workloadset.types.models.workloadset_resources import WorkloadSetResources
from workloadset.types.models.workloadset_spec import WorkloadSetSpec
from workloadset.utils.pods import (
    available_in,
    get_ordinal,
    get_parent_name_and_ordinal,
    is_failed,
    is_healthy,
    is_member_of,
    is_running_and_ready,
    is_succeeded,
    is_terminating,
    revision_of,
)

CREATE_CLAIM = "CreateClaim"
ADOPT_CLAIM = "AdoptClaim"
CREATE_POD = "CreatePod"
PATCH_POD = "PatchPod"
DELETE_POD = "DeletePod"
DELETE_CLAIM = "DeleteClaim"

POD = "Pod"
CLAIM = "PersistentVolumeClaim"

_KIND_OF = {
    CREATE_CLAIM: CLAIM,
    ADOPT_CLAIM: CLAIM,
    DELETE_CLAIM: CLAIM,
    CREATE_POD: POD,
    PATCH_POD: POD,
    DELETE_POD: POD,
}


class Action(NamedTuple):
    kind: str
    ordinal: int
    name: str
    body: Optional[Dict] = None
    revision: Optional[str] = None
    uid: Optional[str] = None

    @property
    def ref(self) -> Tuple[str, str]:
        """Expectation reference of the object this action touches."""
        return _KIND_OF[self.kind], self.name

    @property
    def is_create(self) -> bool:
        return self.kind in (CREATE_POD, CREATE_CLAIM)

    @property
    def is_delete(self) -> bool:
        return self.kind in (DELETE_POD, DELETE_CLAIM)


class Plan:
    """Ordered actions of a pass, plus why (and how long) the pass is waiting."""

    def __init__(self) -> None:
        self.actions: List[Action] = []
        self.waiting: Optional[str] = None
        self.requeue_after: Optional[float] = None

    def add(self, action: Action) -> None:
        self.actions.append(action)

    def wait(self, reason: str, after: float = None) -> None:
        if self.waiting is None:
            self.waiting = reason
        if after is not None:
            self.requeue(after)

    def requeue(self, after: float) -> None:
        if self.requeue_after is None or after < self.requeue_after:
            self.requeue_after = after

    @property
    def creates(self) -> List[Hashable]:
        return [a.ref for a in self.actions if a.is_create]

    @property
    def deletes(self) -> List[Hashable]:
        return [a.ref for a in self.actions if a.is_delete]

    def of_kind(self, kind: str) -> List[Action]:
        return [a for a in self.actions if a.kind == kind]

    def __len__(self) -> int:
        return len(self.actions)


def resolve_max_unavailable(spec: WorkloadSetSpec, enabled: bool = True) -> int:
    """maxUnavailable as a pod count, rounded down, never below 1."""
    if not enabled or not spec.update_strategy.is_rolling_update:
        return 1
    rolling = spec.update_strategy.rolling_update
    value = rolling.max_unavailable if rolling is not None else None
    if value is None:
        return 1
    if isinstance(value, str):
        if value.endswith("%"):
            value = math.floor(int(value[:-1]) * spec.replicas / 100)
        else:
            value = int(value)
    return max(int(value), 1)


def claim_template_name(template: Mapping) -> str:
    return template["metadata"]["name"]


def new_claim(set_obj: Mapping, spec: WorkloadSetSpec, template: Mapping, ordinal: int) -> Dict:
    """Claim for `ordinal` built from a volume claim template."""
    set_name = set_obj["metadata"]["name"]
    pod_name = WorkloadSetResources.pod_name(set_name, ordinal)
    claim = copy.deepcopy(dict(template))
    claim.pop("status", None)
    metadata = claim.setdefault("metadata", {})
    for key in ("resourceVersion", "uid", "creationTimestamp", "ownerReferences"):
        metadata.pop(key, None)
    metadata["name"] = WorkloadSetResources.claim_name(
        claim_template_name(template), set_name, ordinal
    )
    metadata["namespace"] = set_obj["metadata"].get("namespace")
    metadata["labels"] = (
        Labels(spec.selector.match_labels)
        .update(metadata.get("labels"))
        .include_identity(pod_name, ordinal)
        .as_dict()
    )
    claim["apiVersion"] = "v1"
    claim["kind"] = "PersistentVolumeClaim"
    kopf.append_owner_reference(claim, owner=set_obj)
    return claim


def new_pod(
    set_obj: Mapping, spec: WorkloadSetSpec, revision: Mapping, ordinal: int
) -> Dict:
    """Pod for `ordinal` built from the template recorded in `revision`."""
    set_name = set_obj["metadata"]["name"]
    name = WorkloadSetResources.pod_name(set_name, ordinal)
    template = template_from_revision(revision)
    metadata = template.get("metadata") or {}
    metadata["name"] = name
    metadata["namespace"] = set_obj["metadata"].get("namespace")
    metadata["labels"] = (
        Labels(metadata.get("labels"))
        .include_identity(name, ordinal)
        .include_revision(revision_name(revision))
        .as_dict()
    )
    pod_spec = template.get("spec") or {}
    pod_spec["hostname"] = name
    if spec.service_name:
        pod_spec["subdomain"] = spec.service_name

    claim_volumes = {
        claim_template_name(t): {
            "name": claim_template_name(t),
            "persistentVolumeClaim": {
                "claimName": WorkloadSetResources.claim_name(
                    claim_template_name(t), set_name, ordinal
                )
            },
        }
        for t in spec.volume_claim_templates or []
    }
    if claim_volumes:
        volumes = [v for v in pod_spec.get("volumes") or [] if v.get("name") not in claim_volumes]
        pod_spec["volumes"] = list(claim_volumes.values()) + volumes

    pod = {"apiVersion": "v1", "kind": "Pod", "metadata": metadata, "spec": pod_spec}
    kopf.append_owner_reference(pod, owner=set_obj)
    return pod


def identity_labels(set_name: str, ordinal: int) -> Dict[str, str]:
    return (
        Labels()
        .include_identity(WorkloadSetResources.pod_name(set_name, ordinal), ordinal)
        .as_dict()
    )


def identity_matches(set_name: str, pod: Mapping, ordinal: int) -> bool:
    labels = (pod.get("metadata") or {}).get("labels") or {}
    return all(labels.get(k) == v for k, v in identity_labels(set_name, ordinal).items())


def claim_ordinal(claim: Mapping) -> Optional[int]:
    metadata = claim.get("metadata") or {}
    index = (metadata.get("labels") or {}).get(Labels.POD_INDEX_LABEL)
    if index is not None and index.isdigit():
        return int(index)
    return get_parent_name_and_ordinal(metadata.get("name"))[1]


def is_claim_of(set_name: str, spec: WorkloadSetSpec, claim: Mapping) -> bool:
    """Whether `claim` is named and labelled like a claim of the set's ordinals.

    Ownership is not considered, so claims released by an earlier set of
    the same name match too.
    """
    metadata = claim.get("metadata") or {}
    name = metadata.get("name") or ""
    labels = metadata.get("labels") or {}
    pod_name = labels.get(Labels.POD_NAME_LABEL)
    if not pod_name:
        return False
    parent, ordinal = get_parent_name_and_ordinal(pod_name)
    if parent != set_name or ordinal is None:
        return False
    return any(
        name == WorkloadSetResources.claim_name(claim_template_name(t), set_name, ordinal)
        for t in spec.volume_claim_templates or []
    )


def adoption_patch(set_obj: Mapping, claim: Mapping) -> Dict:
    """Patch adding the set as controller of an orphaned claim."""
    metadata = claim.get("metadata") or {}
    patch = {
        "metadata": {
            "ownerReferences": copy.deepcopy(metadata.get("ownerReferences") or []),
            "resourceVersion": metadata.get("resourceVersion"),
        }
    }
    kopf.append_owner_reference(patch, owner=set_obj)
    return patch


class PodLifecycleOrchestrator:
    """Computes the create, delete and repair actions of a reconcile pass."""

    def __init__(self, max_unavailable_enabled: bool = True) -> None:
        self.max_unavailable_enabled = max_unavailable_enabled

    def revision_for(
        self, spec: WorkloadSetSpec, ordinal: int, current: Mapping, update: Mapping
    ) -> Mapping:
        """Revision a new pod at `ordinal` is created from."""
        strategy = spec.update_strategy
        if strategy.is_rolling_update and ordinal - spec.start_ordinal < strategy.partition:
            return current
        return update

    def _ensure_claims(
        self,
        plan: Plan,
        set_obj: Mapping,
        spec: WorkloadSetSpec,
        ordinal: int,
        claims: Dict[str, Dict],
    ) -> bool:
        """Plan missing claims of `ordinal`. Returns True if one is terminating."""
        set_name = set_obj["metadata"]["name"]
        blocked = False
        for template in spec.volume_claim_templates or []:
            name = WorkloadSetResources.claim_name(claim_template_name(template), set_name, ordinal)
            claim = claims.get(name)
            if claim is None:
                body = new_claim(set_obj, spec, template, ordinal)
                plan.add(Action(CREATE_CLAIM, ordinal, name, body=body))
                claims[name] = body
            elif is_terminating(claim):
                blocked = True
            elif controller_ref(claim) is None:
                plan.add(Action(ADOPT_CLAIM, ordinal, name, body=adoption_patch(set_obj, claim)))
        return blocked

    def _plan_claim_cleanup(
        self,
        plan: Plan,
        set_obj: Mapping,
        spec: WorkloadSetSpec,
        pod_ordinals: set,
        claims: Dict[str, Dict],
    ) -> None:
        if not spec.persistent_volume_claim_retention_policy.delete_on_scale_down:
            return
        set_name, uid = set_obj["metadata"]["name"], set_obj["metadata"].get("uid")
        template_names = [claim_template_name(t) for t in spec.volume_claim_templates or []]
        for name, claim in sorted(claims.items()):
            ordinal = claim_ordinal(claim)
            if ordinal is None or spec.in_range(ordinal) or ordinal in pod_ordinals:
                continue
            if is_terminating(claim) or (controller_ref(claim) or {}).get("uid") != uid:
                continue
            expected = {WorkloadSetResources.claim_name(t, set_name, ordinal) for t in template_names}
            if name in expected:
                plan.add(Action(DELETE_CLAIM, ordinal, name, uid=claim["metadata"].get("uid")))

    def plan(
        self,
        set_obj: Mapping,
        spec: WorkloadSetSpec,
        pods: List[Dict],
        claims: List[Dict],
        current: Mapping,
        update: Mapping,
        now: datetime,
    ) -> Plan:
        plan = Plan()
        set_name = set_obj["metadata"]["name"]
        monotonic = spec.is_monotonic
        update_name = revision_name(update)

        replicas: Dict[int, Dict] = {}
        condemned: List[Dict] = []
        for pod in pods:
            ordinal = get_ordinal(pod)
            if ordinal is None or not is_member_of(set_name, pod):
                continue
            if spec.in_range(ordinal):
                replicas.setdefault(ordinal, pod)
            else:
                condemned.append(pod)
        condemned.sort(key=get_ordinal, reverse=True)
        claims_by_name = {c["metadata"]["name"]: c for c in claims}

        pod_ordinals = set(replicas) | {get_ordinal(p) for p in condemned}
        self._plan_claim_cleanup(plan, set_obj, spec, pod_ordinals, claims_by_name)

        deleted_this_pass = set()
        for ordinal in range(spec.start_ordinal, spec.end_ordinal):
            pod = replicas.get(ordinal)
            name = WorkloadSetResources.pod_name(set_name, ordinal)

            if pod is None:
                if self._ensure_claims(plan, set_obj, spec, ordinal, claims_by_name):
                    plan.wait(f"claim of {name} is terminating")
                    if monotonic:
                        return plan
                    continue
                revision = self.revision_for(spec, ordinal, current, update)
                plan.add(
                    Action(
                        CREATE_POD,
                        ordinal,
                        name,
                        body=new_pod(set_obj, spec, revision, ordinal),
                        revision=revision_name(revision),
                    )
                )
                if monotonic:
                    plan.wait(f"{name} is being created")
                    return plan
                continue

            if is_failed(pod) or is_succeeded(pod):
                if not is_terminating(pod):
                    plan.add(Action(DELETE_POD, ordinal, name, uid=pod["metadata"].get("uid")))
                    deleted_this_pass.add(ordinal)
                if monotonic:
                    plan.wait(f"{name} has terminated and is being recreated")
                    return plan
                continue

            self._ensure_claims(plan, set_obj, spec, ordinal, claims_by_name)
            if not identity_matches(set_name, pod, ordinal) and not is_terminating(pod):
                body = {
                    "metadata": {
                        "labels": identity_labels(set_name, ordinal),
                        "resourceVersion": pod["metadata"].get("resourceVersion"),
                    }
                }
                plan.add(Action(PATCH_POD, ordinal, name, body=body))

            if is_terminating(pod):
                if monotonic:
                    plan.wait(f"{name} is terminating")
                    return plan
                continue
            if not is_running_and_ready(pod):
                if monotonic:
                    plan.wait(f"{name} is not Running and Ready")
                    return plan
                continue
            remaining = available_in(pod, spec.min_ready_seconds, now)
            if remaining:
                if monotonic:
                    plan.wait(f"{name} is not available yet", after=remaining)
                    return plan
                plan.requeue(remaining)

        first_unhealthy = next(
            (p for p in condemned if not is_healthy(p) and not is_terminating(p)), None
        )
        for pod in condemned:
            name = pod["metadata"]["name"]
            if is_terminating(pod):
                if monotonic:
                    plan.wait(f"{name} is terminating")
                    return plan
                continue
            if monotonic and not is_healthy(pod) and pod is not first_unhealthy:
                plan.wait(f"{name} is unhealthy, waiting for lower ordinals")
                return plan
            plan.add(Action(DELETE_POD, get_ordinal(pod), name, uid=pod["metadata"].get("uid")))
            if monotonic:
                plan.wait(f"{name} is being deleted")
                return plan

        if not spec.update_strategy.is_rolling_update:
            return plan
        self._plan_rolling_update(plan, spec, replicas, deleted_this_pass, update_name, now)
        return plan

    def _plan_rolling_update(
        self,
        plan: Plan,
        spec: WorkloadSetSpec,
        replicas: Dict[int, Dict],
        deleted_this_pass: set,
        update_name: str,
        now: datetime,
    ) -> None:
        max_unavailable = resolve_max_unavailable(spec, self.max_unavailable_enabled)
        unavailable = 0
        for ordinal in range(spec.start_ordinal, spec.end_ordinal):
            pod = replicas.get(ordinal)
            if (
                pod is None
                or ordinal in deleted_this_pass
                or is_terminating(pod)
                or available_in(pod, spec.min_ready_seconds, now) != 0.0
            ):
                unavailable += 1

        update_min = spec.start_ordinal + spec.update_strategy.partition
        stale = [
            ordinal
            for ordinal in range(spec.end_ordinal - 1, update_min - 1, -1)
            if ordinal in replicas
            and ordinal not in deleted_this_pass
            and not is_terminating(replicas[ordinal])
            and revision_of(replicas[ordinal]) != update_name
        ]
        if not stale:
            return
        if unavailable >= max_unavailable:
            plan.wait(
                f"{unavailable} pod(s) unavailable, maxUnavailable is {max_unavailable}"
            )
            return
        for ordinal in stale[: max_unavailable - unavailable]:
            pod = replicas[ordinal]
            plan.add(
                Action(
                    DELETE_POD,
                    ordinal,
                    pod["metadata"]["name"],
                    uid=pod["metadata"].get("uid"),
                    revision=revision_of(pod),
                )
            )
