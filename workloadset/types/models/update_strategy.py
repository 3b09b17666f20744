from typing import Optional, Union
from workloadset.types.base import BaseModel


class RollingUpdateStrategy(BaseModel):
    partition: int
    max_unavailable: Optional[Union[int, str]]


class WorkloadSetUpdateStrategy(BaseModel):
    """How pods are replaced when the template changes."""

    ROLLING_UPDATE = "RollingUpdate"
    ON_DELETE = "OnDelete"

    type: str
    rolling_update: Optional[RollingUpdateStrategy]

    @property
    def is_rolling_update(self) -> bool:
        return self.type == self.ROLLING_UPDATE

    @property
    def partition(self) -> int:
        if not self.is_rolling_update or self.rolling_update is None:
            return 0
        return self.rolling_update.partition or 0
