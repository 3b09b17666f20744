import re
from marshmallow import fields, validate, ValidationError
from workloadset.types.base import BaseSchema
from workloadset.types.models.update_strategy import (
    RollingUpdateStrategy,
    WorkloadSetUpdateStrategy,
)

_PERCENT_RE = re.compile(r"^[0-9]+%$")


def validate_int_or_percent(value):
    if isinstance(value, bool):
        raise ValidationError("Must be an integer or a percentage.")
    if isinstance(value, str) and (_PERCENT_RE.match(value) or value.isdigit()):
        value = int(value.rstrip("%"))
    if not isinstance(value, int):
        raise ValidationError("Must be an integer or a percentage.")
    if value < 1:
        raise ValidationError("Must be at least 1 or 1%.")


class RollingUpdateStrategySchema(BaseSchema):
    __model__ = RollingUpdateStrategy

    partition = fields.Int(
        data_key="partition", validate=validate.Range(min=0), load_default=0
    )
    max_unavailable = fields.Raw(
        data_key="maxUnavailable",
        allow_none=True,
        validate=validate_int_or_percent,
        load_default=None,
    )


class WorkloadSetUpdateStrategySchema(BaseSchema):
    __model__ = WorkloadSetUpdateStrategy

    type = fields.Str(
        data_key="type",
        validate=validate.OneOf(
            [WorkloadSetUpdateStrategy.ROLLING_UPDATE, WorkloadSetUpdateStrategy.ON_DELETE]
        ),
        load_default=WorkloadSetUpdateStrategy.ROLLING_UPDATE,
    )
    rolling_update = fields.Nested(
        RollingUpdateStrategySchema(),
        data_key="rollingUpdate",
        allow_none=True,
        load_default=lambda: RollingUpdateStrategySchema().load({}),
    )
