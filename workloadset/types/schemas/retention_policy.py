from marshmallow import fields, validate
from workloadset.types.base import BaseSchema
from workloadset.types.models.retention_policy import (
    PersistentVolumeClaimRetentionPolicy,
)

_POLICIES = [
    PersistentVolumeClaimRetentionPolicy.RETAIN,
    PersistentVolumeClaimRetentionPolicy.DELETE,
]


class PersistentVolumeClaimRetentionPolicySchema(BaseSchema):
    __model__ = PersistentVolumeClaimRetentionPolicy

    when_deleted = fields.Str(
        data_key="whenDeleted",
        validate=validate.OneOf(_POLICIES),
        load_default=PersistentVolumeClaimRetentionPolicy.RETAIN,
    )
    when_scaled = fields.Str(
        data_key="whenScaled",
        validate=validate.OneOf(_POLICIES),
        load_default=PersistentVolumeClaimRetentionPolicy.RETAIN,
    )
