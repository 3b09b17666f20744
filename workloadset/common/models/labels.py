from typing import Dict


class ResourceLabels:
    WORKLOADSET_DOMAIN: str = "workloadset.x-k8s.io/"

    #: Name of the ControllerRevision that produced a pod
    REVISION_LABEL = "controller-revision-hash"

    #: Stable pod identity, also stamped on the pod's claims
    POD_NAME_LABEL = WORKLOADSET_DOMAIN + "pod-name"

    #: Ordinal of the pod, also stamped on the pod's claims
    POD_INDEX_LABEL = "apps.x-k8s.io/pod-index"


class Labels(ResourceLabels):
    _labels: Dict[str, str]

    def __init__(self, labels: Dict[str, str] = None) -> None:
        self._labels = dict(labels) if labels else dict()

    def update(self, labels: Dict[str, str]) -> "Labels":
        self._labels.update((labels or {}).copy())
        return self

    def as_dict(self) -> Dict[str, str]:
        """Return labels as dictionary."""
        return self._labels.copy()

    def include(self, label: str, value: str) -> "Labels":
        self.update({label: value})
        return self

    def include_revision(self, revision: str) -> "Labels":
        return self.include(self.REVISION_LABEL, revision)

    def include_pod_name(self, pod_name: str) -> "Labels":
        return self.include(self.POD_NAME_LABEL, pod_name)

    def include_pod_index(self, ordinal: int) -> "Labels":
        return self.include(self.POD_INDEX_LABEL, str(ordinal))

    def include_identity(self, pod_name: str, ordinal: int) -> "Labels":
        return self.include_pod_name(pod_name).include_pod_index(ordinal)
