"""Indexed in-memory snapshot of the objects the controller watches."""

import copy
import threading
from collections import defaultdict
from typing import Dict, List, Mapping, Optional

from workloadset.utils.selectors import selector_matches

WORKLOADSET = "WorkloadSet"
POD = "Pod"
CLAIM = "PersistentVolumeClaim"
REVISION = "ControllerRevision"

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"


def controller_ref(obj: Mapping) -> Optional[Dict]:
    """Return the owner reference flagged as controller, if any."""
    for ref in (obj.get("metadata") or {}).get("ownerReferences") or []:
        if ref.get("controller"):
            return ref
    return None


class ObjectCache:
    """Objects by kind, then by namespace/name.

    Reads hand out deep copies so callers may mutate what they get.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._objects: Dict[str, Dict[str, Dict]] = defaultdict(dict)

    @staticmethod
    def _key(obj: Mapping) -> str:
        metadata = obj.get("metadata") or {}
        return f"{metadata.get('namespace')}/{metadata.get('name')}"

    def apply(self, kind: str, event_type: Optional[str], obj: Mapping) -> None:
        """Record a watch event."""
        if event_type == DELETED:
            self.remove(kind, obj)
        else:
            self.upsert(kind, obj)

    def upsert(self, kind: str, obj: Mapping) -> None:
        with self._lock:
            self._objects[kind][self._key(obj)] = copy.deepcopy(dict(obj))

    def remove(self, kind: str, obj: Mapping) -> None:
        with self._lock:
            self._objects[kind].pop(self._key(obj), None)

    def get(self, kind: str, namespace: str, name: str) -> Optional[Dict]:
        with self._lock:
            obj = self._objects[kind].get(f"{namespace}/{name}")
            return copy.deepcopy(obj) if obj is not None else None

    def list(
        self,
        kind: str,
        namespace: Optional[str] = None,
        selector: Optional[Mapping] = None,
        owner_uid: Optional[str] = None,
    ) -> List[Dict]:
        """List objects of a kind, filtered by namespace, selector and controller owner."""
        with self._lock:
            candidates = list(self._objects[kind].values())
        result = []
        for obj in candidates:
            metadata = obj.get("metadata") or {}
            if namespace is not None and metadata.get("namespace") != namespace:
                continue
            if selector is not None and not selector_matches(selector, metadata.get("labels")):
                continue
            if owner_uid is not None:
                ref = controller_ref(obj)
                if ref is None or ref.get("uid") != owner_uid:
                    continue
            result.append(copy.deepcopy(obj))
        return result

    def __len__(self) -> int:
        with self._lock:
            return sum(len(objs) for objs in self._objects.values())
