from typing import Optional, Tuple


class WorkloadSetResources:
    """Encapsulates the naming scheme of the objects the operator manages
    for a WorkloadSet."""

    GROUP = "apps.x-k8s.io"
    VERSION = "v1"
    PLURAL = "workloadsets"
    KIND = "WorkloadSet"

    @classmethod
    def api_version(self) -> str:
        return f"{self.GROUP}/{self.VERSION}"

    @classmethod
    def pod_name(self, set_name: str, ordinal: int) -> str:
        """Returns the name of the pod holding the given ordinal."""
        return f"{set_name}-{ordinal}"

    @classmethod
    def claim_name(self, template_name: str, set_name: str, ordinal: int) -> str:
        """Returns the name of the claim created from a claim template for an ordinal."""
        return f"{template_name}-{self.pod_name(set_name, ordinal)}"

    @classmethod
    def revision_name(self, set_name: str, hash: str) -> str:
        """Returns the name of the ControllerRevision recording a template hash."""
        return f"{set_name}-{hash}"

    @classmethod
    def key(self, namespace: str, name: str) -> str:
        """Returns the work queue key of a WorkloadSet."""
        return f"{namespace}/{name}"

    @classmethod
    def split_key(self, key: str) -> Tuple[Optional[str], str]:
        namespace, _, name = key.rpartition("/")
        return namespace or None, name
