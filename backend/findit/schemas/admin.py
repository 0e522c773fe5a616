from marshmallow import fields, validate

from . import BaseSchema, QuerySchema
from ..models.enums import ITEM_TYPES


class UserQuerySchema(QuerySchema):
    q = fields.Str(load_default=None)
    page = fields.Int(load_default=1, validate=validate.Range(min=1))
    limit = fields.Int(load_default=20, validate=validate.Range(min=1, max=200))


class LogsQuerySchema(QuerySchema):
    start_date = fields.Date(data_key="startDate", load_default=None)
    end_date = fields.Date(data_key="endDate", load_default=None)
    type = fields.Str(load_default=None, validate=validate.OneOf(ITEM_TYPES))
    limit = fields.Int(load_default=100, validate=validate.Range(min=1, max=500))


class CatalogEntrySchema(BaseSchema):
    name = fields.Str(required=True, validate=validate.Length(min=1, max=200))
