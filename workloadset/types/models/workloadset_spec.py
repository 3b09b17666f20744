from typing import Dict, List, Optional
from workloadset.types.base import BaseModel
from workloadset.types.models.label_selector import LabelSelector
from workloadset.types.models.update_strategy import WorkloadSetUpdateStrategy
from workloadset.types.models.retention_policy import (
    PersistentVolumeClaimRetentionPolicy,
)


class WorkloadSetOrdinals(BaseModel):
    start: int


class WorkloadSetSpec(BaseModel):
    """WorkloadSet CRD spec"""

    ORDERED_READY = "OrderedReady"
    PARALLEL = "Parallel"

    replicas: int
    selector: LabelSelector
    template: Dict
    volume_claim_templates: List[Dict]
    service_name: Optional[str]
    pod_management_policy: str
    update_strategy: WorkloadSetUpdateStrategy
    persistent_volume_claim_retention_policy: PersistentVolumeClaimRetentionPolicy
    ordinals: WorkloadSetOrdinals
    revision_history_limit: int
    min_ready_seconds: int

    @property
    def start_ordinal(self) -> int:
        return self.ordinals.start if self.ordinals else 0

    @property
    def end_ordinal(self) -> int:
        """Exclusive upper bound of the desired ordinal range."""
        return self.start_ordinal + self.replicas

    def in_range(self, ordinal: int) -> bool:
        return self.start_ordinal <= ordinal < self.end_ordinal

    @property
    def is_monotonic(self) -> bool:
        return self.pod_management_policy != self.PARALLEL

    @property
    def template_labels(self) -> Dict[str, str]:
        return dict(((self.template or {}).get("metadata") or {}).get("labels") or {})
