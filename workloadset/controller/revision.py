"""Pod template history of a WorkloadSet, kept as ControllerRevisions."""

import copy
import hashlib
import logging
from typing import Dict, List, Mapping, NamedTuple, Optional

import kopf
import mmh3

from workloadset.common.models.labels import Labels
from workloadset.sensors.base import OperatorSensor
from workloadset.types.models.workloadset_resources import WorkloadSetResources
from workloadset.utils.errors import AlreadyExistsError, RevisionCollisionError
from workloadset.utils.helpers import canonicalize_dict, deep_compare_dict
from workloadset.utils.pods import get_ordinal, is_terminating, revision_of

logger = logging.getLogger(__name__)

#: Hex digits of the template hash used in revision names
REVISION_HASH_LENGTH = 10

_SERVER_METADATA = (
    "creationTimestamp",
    "resourceVersion",
    "uid",
    "generation",
    "managedFields",
    "selfLink",
)

_POD_SPEC_DEFAULTS = {
    "restartPolicy": "Always",
    "dnsPolicy": "ClusterFirst",
    "schedulerName": "default-scheduler",
    "terminationGracePeriodSeconds": 30,
    "securityContext": {},
}

_CONTAINER_DEFAULTS = {
    "terminationMessagePath": "/dev/termination-log",
    "terminationMessagePolicy": "File",
}


def semantic_template(template: Optional[Mapping]) -> Dict:
    """Copy of a pod template without server populated metadata."""
    result = copy.deepcopy(dict(template or {}))
    metadata = result.get("metadata")
    if isinstance(metadata, dict):
        for key in _SERVER_METADATA:
            metadata.pop(key, None)
        if not metadata:
            result.pop("metadata")
    return result


def revision_data(template: Optional[Mapping]) -> Dict:
    return {"spec": {"template": semantic_template(template)}}


def template_from_revision(revision: Mapping) -> Dict:
    return copy.deepcopy(((revision.get("data") or {}).get("spec") or {}).get("template") or {})


def hash_template(template: Optional[Mapping], collision_count: int = 0) -> str:
    """Fixed width digest of a pod template.

    The collision count is part of the hashed input, so bumping it yields a
    different digest for the same template.
    """
    data = f"{canonicalize_dict(revision_data(template))}/{collision_count or 0}"
    murmur_str = str(mmh3.hash128(data))
    return hashlib.sha256(murmur_str.encode("utf-8")).hexdigest()[:REVISION_HASH_LENGTH]


def _default_pull_policy(image: str) -> str:
    if "@" in image:
        return "IfNotPresent"
    last = image.rsplit("/", 1)[-1]
    if ":" not in last or last.endswith(":latest"):
        return "Always"
    return "IfNotPresent"


def _prune(value):
    if isinstance(value, dict):
        pruned = {k: _prune(v) for k, v in value.items()}
        return {k: v for k, v in pruned.items() if v not in (None, {}, [])}
    if isinstance(value, list):
        return [_prune(v) for v in value]
    return value


def normalize_template(template: Optional[Mapping]) -> Dict:
    """Template with the values the API server would fill in made explicit."""
    result = semantic_template(template)
    spec = result.setdefault("spec", {})
    for key, value in _POD_SPEC_DEFAULTS.items():
        spec.setdefault(key, copy.deepcopy(value))
    for key in ("initContainers", "containers"):
        for container in spec.get(key) or []:
            for ckey, cvalue in _CONTAINER_DEFAULTS.items():
                container.setdefault(ckey, cvalue)
            container.setdefault("imagePullPolicy", _default_pull_policy(container.get("image") or ""))
            for port in container.get("ports") or []:
                port.setdefault("protocol", "TCP")
    return _prune(result)


def templates_equivalent(template1: Optional[Mapping], template2: Optional[Mapping]) -> bool:
    return deep_compare_dict(normalize_template(template1), normalize_template(template2))


def revision_number(revision: Mapping) -> int:
    return int(revision.get("revision") or 0)


def revision_name(revision: Optional[Mapping]) -> Optional[str]:
    if revision is None:
        return None
    return (revision.get("metadata") or {}).get("name")


def sort_history(history: List[Dict]) -> List[Dict]:
    return sorted(history, key=lambda r: (revision_number(r), revision_name(r) or ""))


def new_revision(
    set_obj: Mapping, template: Mapping, number: int, collision_count: int
) -> Dict:
    """Build the ControllerRevision recording `template` for a WorkloadSet."""
    metadata = set_obj["metadata"]
    hash = hash_template(template, collision_count)
    template_labels = ((template or {}).get("metadata") or {}).get("labels")
    revision = {
        "apiVersion": "apps/v1",
        "kind": "ControllerRevision",
        "metadata": {
            "name": WorkloadSetResources.revision_name(metadata["name"], hash),
            "namespace": metadata.get("namespace"),
            "labels": Labels(template_labels).include_revision(hash).as_dict(),
        },
        "data": revision_data(template),
        "revision": number,
    }
    kopf.append_owner_reference(revision, owner=set_obj)
    return revision


class Revisions(NamedTuple):
    current: Dict
    update: Dict
    collision_count: int
    history: List[Dict]


class RevisionManager:
    """Resolves the current and update revision of a WorkloadSet."""

    def __init__(
        self,
        store,
        sensor: OperatorSensor = None,
        max_collision_attempts: int = 5,
        semantic_comparison: bool = True,
    ) -> None:
        self.store = store
        self.sensor = sensor or OperatorSensor()
        self.max_collision_attempts = max_collision_attempts
        self.semantic_comparison = semantic_comparison

    def find_equal(self, history: List[Dict], template: Mapping, hash: str) -> List[Dict]:
        """Revisions in `history` that record `template`, oldest first."""
        data = revision_data(template)
        equal = []
        for revision in history:
            labels = (revision.get("metadata") or {}).get("labels") or {}
            if labels.get(Labels.REVISION_LABEL) == hash and deep_compare_dict(
                revision.get("data"), data
            ):
                equal.append(revision)
            elif self.semantic_comparison and templates_equivalent(
                template_from_revision(revision), template
            ):
                equal.append(revision)
        return equal

    def current_revision(
        self, set_obj: Mapping, pods: List[Dict], history: List[Dict]
    ) -> Optional[Dict]:
        """Revision recorded in status, else the one the lowest live ordinal runs."""
        by_name = {revision_name(r): r for r in history}
        recorded = (set_obj.get("status") or {}).get("currentRevision")
        if recorded in by_name:
            return by_name[recorded]
        live = sorted(
            (p for p in pods if not is_terminating(p) and revision_of(p) in by_name),
            key=lambda p: get_ordinal(p) or 0,
        )
        if live:
            return by_name[revision_of(live[0])]
        return None

    async def resolve(
        self, set_obj: Mapping, template: Mapping, pods: List[Dict], history: List[Dict]
    ) -> Revisions:
        metadata = set_obj["metadata"]
        namespace, name = metadata.get("namespace"), metadata["name"]
        history = sort_history(history)
        collision_count = int((set_obj.get("status") or {}).get("collisionCount") or 0)
        next_number = revision_number(history[-1]) + 1 if history else 1

        equal = self.find_equal(history, template, hash_template(template, collision_count))
        if equal and revision_name(equal[-1]) == revision_name(history[-1]):
            update = history[-1]
        elif equal:
            # rollback to an older template: make it the newest revision again
            update = await self.store.patch_revision_number(
                namespace, revision_name(equal[-1]), next_number
            )
            history = sort_history(
                [r for r in history if revision_name(r) != revision_name(update)] + [update]
            )
            logger.info(f"{namespace}/{name}: rolled back to revision {revision_name(update)}")
        else:
            update, collision_count = await self._create(
                set_obj, template, next_number, collision_count
            )
            history = sort_history(
                [r for r in history if revision_name(r) != revision_name(update)] + [update]
            )

        current = self.current_revision(set_obj, pods, history) or update
        return Revisions(current, update, collision_count, history)

    async def _create(self, set_obj: Mapping, template: Mapping, number: int, collision_count: int):
        metadata = set_obj["metadata"]
        namespace, name = metadata.get("namespace"), metadata["name"]
        for _ in range(self.max_collision_attempts):
            revision = new_revision(set_obj, template, number, collision_count)
            try:
                created = await self.store.create_revision(namespace, revision)
                logger.info(
                    f"{namespace}/{name}: created revision {revision_name(created)} "
                    f"(#{number})"
                )
                self.sensor.on_revision_created(
                    name, namespace, revision_name(created), collision_count
                )
                return created, collision_count
            except AlreadyExistsError:
                existing = await self.store.fetch_revision(namespace, revision_name(revision))
                if existing is not None and deep_compare_dict(
                    existing.get("data"), revision["data"]
                ):
                    return existing, collision_count
                collision_count += 1
                logger.warning(
                    f"{namespace}/{name}: revision {revision_name(revision)} collides "
                    f"with a different template, collision count is now {collision_count}"
                )
                self.sensor.on_revision_collision(name, namespace, collision_count)
        raise RevisionCollisionError(
            f"{namespace}/{name}: no free revision name after "
            f"{self.max_collision_attempts} attempts"
        )

    async def truncate_history(
        self,
        set_obj: Mapping,
        limit: int,
        pods: List[Dict],
        history: List[Dict],
        current: Mapping,
        update: Mapping,
    ) -> List[str]:
        """Delete the oldest revisions nothing runs anymore beyond `limit`."""
        namespace = set_obj["metadata"].get("namespace")
        live = {revision_name(current), revision_name(update)}
        live.update(revision_of(p) for p in pods)
        non_live = [r for r in sort_history(history) if revision_name(r) not in live]
        excess = len(non_live) - limit
        deleted = []
        for revision in non_live[: max(excess, 0)]:
            await self.store.delete_revision(namespace, revision_name(revision))
            deleted.append(revision_name(revision))
        if deleted:
            logger.info(f"{namespace}/{set_obj['metadata']['name']}: pruned revisions {deleted}")
        return deleted
