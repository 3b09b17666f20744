"""Shared fixtures: an in-memory cluster standing in for the Kubernetes API."""

import copy
import itertools
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import pytest

from workloadset.controller.cache import (
    ADDED,
    CLAIM,
    DELETED,
    MODIFIED,
    POD,
    REVISION,
    WORKLOADSET,
    ObjectCache,
)
from workloadset.controller.expectations import ExpectationTracker
from workloadset.controller.manager import WorkloadSetController
from workloadset.controller.queue import WorkQueue
from workloadset.controller.reconciler import WorkloadSetReconciler
from workloadset.controller.revision import new_revision
from workloadset.types.models.workloadset_resources import WorkloadSetResources
from workloadset.types.schemas.workloadset_spec import WorkloadSetSpecSchema
from workloadset.types.settings import Settings
from workloadset.utils.errors import AlreadyExistsError, ConflictError, NotFoundError
from workloadset.common.models.labels import Labels

NAMESPACE = "default"
NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_template(image: str = "nginx:1.25", labels: Dict = None) -> Dict:
    return {
        "metadata": {"labels": labels or {"app": "web"}},
        "spec": {"containers": [{"name": "nginx", "image": image}]},
    }


def make_set(
    name: str = "web",
    namespace: str = NAMESPACE,
    replicas: int = 3,
    image: str = "nginx:1.25",
    uid: str = None,
    **spec,
) -> Dict:
    """WorkloadSet object as the API server would hand it out."""
    body = {
        "apiVersion": WorkloadSetResources.api_version(),
        "kind": WorkloadSetResources.KIND,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": uid or f"uid-{name}",
            "generation": 1,
            "resourceVersion": "1",
        },
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": {"app": "web"}},
            "template": make_template(image),
        },
    }
    body["spec"].update(spec)
    return body


def load_spec(set_obj: Dict):
    return WorkloadSetSpecSchema().load(set_obj["spec"])


def make_revision(set_obj: Dict, number: int = 1, image: str = None, collision_count: int = 0):
    template = make_template(image) if image else set_obj["spec"]["template"]
    revision = new_revision(set_obj, template, number, collision_count)
    revision["metadata"]["uid"] = f"uid-{revision['metadata']['name']}"
    return revision


def ready_condition(since: datetime = NOW - timedelta(minutes=5)) -> Dict:
    return {
        "type": "Ready",
        "status": "True",
        "lastTransitionTime": since.isoformat(),
    }


def make_pod(
    set_obj: Dict,
    ordinal: int,
    revision: str,
    ready: bool = True,
    phase: str = None,
    terminating: bool = False,
    ready_since: datetime = None,
) -> Dict:
    set_name = set_obj["metadata"]["name"]
    name = WorkloadSetResources.pod_name(set_name, ordinal)
    labels = (
        Labels({"app": "web"})
        .include_identity(name, ordinal)
        .include_revision(revision)
        .as_dict()
    )
    pod = {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": name,
            "namespace": set_obj["metadata"]["namespace"],
            "uid": f"uid-{name}",
            "resourceVersion": "1",
            "labels": labels,
            "ownerReferences": [
                {
                    "apiVersion": set_obj["apiVersion"],
                    "kind": set_obj["kind"],
                    "name": set_name,
                    "uid": set_obj["metadata"]["uid"],
                    "controller": True,
                }
            ],
        },
        "spec": {},
        "status": {"phase": phase or ("Running" if ready else "Pending")},
    }
    if ready:
        pod["status"]["conditions"] = [ready_condition(ready_since or NOW - timedelta(minutes=5))]
    if terminating:
        pod["metadata"]["deletionTimestamp"] = NOW.isoformat()
    return pod


class FakeCluster:
    """In-memory object store with the signatures of WorkloadSetStore.

    Every write is reported to `observer(kind, event_type, obj)`, the way
    watch events reach the controller. Failures can be injected per method
    with `fail(method, exc, times)`.
    """

    def __init__(self, observer: Callable = None) -> None:
        self.observer = observer
        self.objects: Dict[str, Dict[str, Dict]] = defaultdict(dict)
        self.calls: List[tuple] = []
        self._failures: Dict[str, List[Exception]] = defaultdict(list)
        self._versions = itertools.count(100)
        self._uids = itertools.count(1)

    # -- test helpers ---------------------------------------------------------

    def fail(self, method: str, exc: Exception, times: int = 1) -> None:
        self._failures[method].extend([exc] * times)

    def _check(self, method: str, *args) -> None:
        self.calls.append((method,) + args)
        if self._failures[method]:
            raise self._failures[method].pop(0)

    def _bump(self, obj: Dict) -> None:
        obj["metadata"]["resourceVersion"] = str(next(self._versions))

    def _emit(self, kind: str, event_type: str, obj: Dict) -> None:
        if self.observer is not None:
            self.observer(kind, event_type, copy.deepcopy(obj))

    def _key(self, namespace: str, name: str) -> str:
        return f"{namespace}/{name}"

    def get(self, kind: str, namespace: str, name: str) -> Optional[Dict]:
        obj = self.objects[kind].get(self._key(namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def list(self, kind: str) -> List[Dict]:
        return [copy.deepcopy(o) for _, o in sorted(self.objects[kind].items())]

    def names(self, kind: str) -> List[str]:
        return sorted(o["metadata"]["name"] for o in self.objects[kind].values())

    def put(self, kind: str, obj: Dict, emit: bool = True) -> Dict:
        obj = copy.deepcopy(obj)
        metadata = obj["metadata"]
        metadata.setdefault("uid", f"uid-{next(self._uids)}")
        self._bump(obj)
        key = self._key(metadata.get("namespace"), metadata["name"])
        event_type = MODIFIED if key in self.objects[kind] else ADDED
        self.objects[kind][key] = obj
        if emit:
            self._emit(kind, event_type, obj)
        return copy.deepcopy(obj)

    def remove(self, kind: str, namespace: str, name: str) -> None:
        obj = self.objects[kind].pop(self._key(namespace, name), None)
        if obj is not None:
            self._emit(kind, DELETED, obj)

    def update_spec(self, namespace: str, name: str, **spec) -> Dict:
        obj = self.objects[WORKLOADSET][self._key(namespace, name)]
        obj["spec"].update(copy.deepcopy(spec))
        obj["metadata"]["generation"] = obj["metadata"].get("generation", 1) + 1
        return self.put(WORKLOADSET, obj)

    def set_template_image(self, namespace: str, name: str, image: str) -> Dict:
        return self.update_spec(namespace, name, template=make_template(image))

    def mark_ready(self, namespace: str, name: str, since: datetime = None) -> Dict:
        pod = self.objects[POD][self._key(namespace, name)]
        pod["status"] = {"phase": "Running", "conditions": [ready_condition(since or NOW)]}
        return self.put(POD, pod)

    def mark_all_ready(self, namespace: str = NAMESPACE, since: datetime = None) -> None:
        for pod in self.list(POD):
            if pod["status"].get("phase") != "Running":
                self.mark_ready(namespace, pod["metadata"]["name"], since)

    def mark_failed(self, namespace: str, name: str) -> Dict:
        pod = self.objects[POD][self._key(namespace, name)]
        pod["status"] = {"phase": "Failed"}
        return self.put(POD, pod)

    # -- WorkloadSetStore interface ------------------------------------------

    async def fetch_workloadset(self, namespace: str, name: str) -> Optional[Dict]:
        self._check("fetch_workloadset", namespace, name)
        return self.get(WORKLOADSET, namespace, name)

    async def replace_workloadset_status(self, namespace: str, name: str, body: Dict) -> Dict:
        self._check("replace_workloadset_status", namespace, name)
        stored = self.objects[WORKLOADSET].get(self._key(namespace, name))
        if stored is None:
            raise NotFoundError(f"{namespace}/{name} not found", status=404)
        if body["metadata"].get("resourceVersion") != stored["metadata"]["resourceVersion"]:
            raise ConflictError(f"{namespace}/{name} was modified", status=409)
        stored["status"] = copy.deepcopy(body.get("status"))
        return self.put(WORKLOADSET, stored)

    async def fetch_pod(self, namespace: str, name: str) -> Optional[Dict]:
        self._check("fetch_pod", namespace, name)
        return self.get(POD, namespace, name)

    async def create_pod(self, namespace: str, body: Dict) -> Dict:
        self._check("create_pod", namespace, body["metadata"]["name"])
        if self.get(POD, namespace, body["metadata"]["name"]) is not None:
            raise AlreadyExistsError("pod already exists", status=409)
        pod = copy.deepcopy(body)
        pod["status"] = {"phase": "Pending"}
        return self.put(POD, pod)

    async def patch_pod(self, namespace: str, name: str, body: Dict) -> Dict:
        self._check("patch_pod", namespace, name)
        stored = self.objects[POD].get(self._key(namespace, name))
        if stored is None:
            raise NotFoundError(f"pod {name} not found", status=404)
        version = body.get("metadata", {}).get("resourceVersion")
        if version is not None and version != stored["metadata"]["resourceVersion"]:
            raise ConflictError(f"pod {name} was modified", status=409)
        stored["metadata"].setdefault("labels", {}).update(body["metadata"].get("labels") or {})
        return self.put(POD, stored)

    async def delete_pod(self, namespace: str, name: str, uid: str = None) -> bool:
        self._check("delete_pod", namespace, name)
        return self._delete(POD, namespace, name, uid)

    def _delete(self, kind: str, namespace: str, name: str, uid: str = None) -> bool:
        stored = self.objects[kind].get(self._key(namespace, name))
        if stored is None:
            return False
        if uid is not None and stored["metadata"].get("uid") != uid:
            return False
        self.remove(kind, namespace, name)
        return True

    async def create_claim(self, namespace: str, body: Dict) -> Dict:
        self._check("create_claim", namespace, body["metadata"]["name"])
        if self.get(CLAIM, namespace, body["metadata"]["name"]) is not None:
            raise AlreadyExistsError("claim already exists", status=409)
        return self.put(CLAIM, body)

    async def delete_claim(self, namespace: str, name: str, uid: str = None) -> bool:
        self._check("delete_claim", namespace, name)
        return self._delete(CLAIM, namespace, name, uid)

    async def adopt_claim(self, namespace: str, name: str, patch: Dict) -> Optional[Dict]:
        self._check("adopt_claim", namespace, name)
        stored = self.objects[CLAIM].get(self._key(namespace, name))
        if stored is None:
            return None
        version = patch["metadata"].get("resourceVersion")
        if version is not None and version != stored["metadata"]["resourceVersion"]:
            raise ConflictError(f"claim {name} was modified", status=409)
        stored["metadata"]["ownerReferences"] = patch["metadata"]["ownerReferences"]
        return self.put(CLAIM, stored)

    async def release_claim(self, namespace: str, name: str, owner_uid: str) -> Optional[Dict]:
        self._check("release_claim", namespace, name)
        stored = self.objects[CLAIM].get(self._key(namespace, name))
        if stored is None:
            return None
        stored["metadata"]["ownerReferences"] = [
            ref
            for ref in stored["metadata"].get("ownerReferences") or []
            if ref.get("uid") != owner_uid
        ]
        return self.put(CLAIM, stored)

    async def fetch_revision(self, namespace: str, name: str) -> Optional[Dict]:
        self._check("fetch_revision", namespace, name)
        return self.get(REVISION, namespace, name)

    async def create_revision(self, namespace: str, body: Dict) -> Dict:
        self._check("create_revision", namespace, body["metadata"]["name"])
        if self.get(REVISION, namespace, body["metadata"]["name"]) is not None:
            raise AlreadyExistsError("revision already exists", status=409)
        return self.put(REVISION, body)

    async def patch_revision_number(self, namespace: str, name: str, revision: int) -> Dict:
        self._check("patch_revision_number", namespace, name, revision)
        stored = self.objects[REVISION].get(self._key(namespace, name))
        if stored is None:
            raise NotFoundError(f"revision {name} not found", status=404)
        stored["revision"] = revision
        return self.put(REVISION, stored)

    async def delete_revision(self, namespace: str, name: str) -> bool:
        self._check("delete_revision", namespace, name)
        return self._delete(REVISION, namespace, name)


@pytest.fixture
def cache():
    return ObjectCache()


@pytest.fixture
def expectations():
    return ExpectationTracker(timeout=300.0)


@pytest.fixture
def queue():
    return WorkQueue(base_delay=0.001, max_delay=0.01)


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def conf():
    return Settings(workers=2, status_update_max_attempts=5)


@pytest.fixture
def reconciler(cluster, cache, expectations, conf):
    return WorkloadSetReconciler(
        cluster, cache, expectations, conf=conf, clock=lambda: NOW
    )


@pytest.fixture
def controller(reconciler, cluster, cache, expectations, queue, conf):
    """Controller whose cache is fed by the fake cluster's writes."""
    controller = WorkloadSetController(
        reconciler, cache, expectations, queue, workers=conf.workers
    )
    cluster.observer = controller.handle_event
    return controller
