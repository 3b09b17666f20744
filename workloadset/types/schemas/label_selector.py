from marshmallow import fields
from workloadset.types.base import BaseSchema
from workloadset.types.models.label_selector import LabelSelector


class LabelSelectorSchema(BaseSchema):
    __model__ = LabelSelector

    match_labels = fields.Dict(
        keys=fields.Str(),
        values=fields.Str(),
        data_key="matchLabels",
        allow_none=True,
        load_default=None,
    )
    match_expressions = fields.List(
        fields.Dict(),
        data_key="matchExpressions",
        allow_none=True,
        load_default=None,
    )
