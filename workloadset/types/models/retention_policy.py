from workloadset.types.base import BaseModel


class PersistentVolumeClaimRetentionPolicy(BaseModel):
    """What happens to per-ordinal claims on scale-down and set deletion."""

    RETAIN = "Retain"
    DELETE = "Delete"

    when_deleted: str
    when_scaled: str

    @property
    def delete_on_scale_down(self) -> bool:
        return self.when_scaled == self.DELETE

    @property
    def delete_on_set_deletion(self) -> bool:
        return self.when_deleted == self.DELETE
