from marshmallow import fields, validate, validates_schema, ValidationError

from . import BaseSchema, QuerySchema
from ..models.enums import ITEM_TYPES, ITEM_STATUSES

MAX_SECURITY_QUESTIONS = 3


class SecurityQuestionSchema(BaseSchema):
    question = fields.Str(required=True, validate=validate.Length(min=1, max=300))
    answer = fields.Str(required=True, load_only=True, validate=validate.Length(min=1, max=300))


class ItemCreateSchema(BaseSchema):
    type = fields.Str(required=True, validate=validate.OneOf(ITEM_TYPES))
    title = fields.Str(required=True, validate=validate.Length(min=1, max=200))
    description = fields.Str(required=True, validate=validate.Length(min=1))
    category_id = fields.Int(data_key="categoryId", load_default=None, allow_none=True)
    location_id = fields.Int(data_key="locationId", load_default=None, allow_none=True)
    date_found = fields.Date(data_key="dateFound", load_default=None, allow_none=True)
    date_last_seen = fields.Date(data_key="dateLastSeen", load_default=None, allow_none=True)
    additional_contact_info = fields.Str(data_key="additionalContactInfo", load_default="")
    security_questions = fields.List(
        fields.Nested(SecurityQuestionSchema),
        data_key="securityQuestions",
        load_default=list,
        validate=validate.Length(max=MAX_SECURITY_QUESTIONS),
    )

    @validates_schema
    def _date_matches_type(self, data, **kwargs):
        # Exactly the date field matching the item type must be present
        if data.get("type") == "found":
            if not data.get("date_found"):
                raise ValidationError("Date found is required for found items", "dateFound")
            if data.get("date_last_seen"):
                raise ValidationError("Only lost items carry a last-seen date", "dateLastSeen")
        elif data.get("type") == "lost":
            if not data.get("date_last_seen"):
                raise ValidationError("Date last seen is required for lost items", "dateLastSeen")
            if data.get("date_found"):
                raise ValidationError("Only found items carry a found date", "dateFound")


class ItemUpdateSchema(BaseSchema):
    """Descriptive fields an owner may change. status/type/owner are not accepted."""

    title = fields.Str(validate=validate.Length(min=1, max=200))
    description = fields.Str(validate=validate.Length(min=1))
    category_id = fields.Int(data_key="categoryId", allow_none=True)
    location_id = fields.Int(data_key="locationId", allow_none=True)
    date_found = fields.Date(data_key="dateFound", allow_none=True)
    date_last_seen = fields.Date(data_key="dateLastSeen", allow_none=True)
    additional_contact_info = fields.Str(data_key="additionalContactInfo")


class ItemQuerySchema(QuerySchema):
    q = fields.Str(load_default=None)
    type = fields.Str(load_default=None, validate=validate.OneOf(ITEM_TYPES))
    category_id = fields.Int(data_key="categoryId", load_default=None)
    location_id = fields.Int(data_key="locationId", load_default=None)
    status = fields.Str(load_default=None, validate=validate.OneOf(ITEM_STATUSES))
    owner_id = fields.Int(data_key="ownerId", load_default=None)
    page = fields.Int(load_default=1, validate=validate.Range(min=1))
    limit = fields.Int(load_default=20, validate=validate.Range(min=1, max=100))


def _iso(value):
    return value.isoformat() if value else None


def item_to_dict(it, viewer=None) -> dict:
    """Read model for an item.

    Security questions are public so claimants can answer them; answer hashes
    are only shown to the owner and admins.
    """
    private = viewer is not None and (viewer.is_admin or viewer.user_id == it.owner_id)
    questions = []
    for q in it.security_questions or []:
        entry = {"question": q.get("question")}
        if private:
            entry["answerHash"] = q.get("answerHash")
        questions.append(entry)
    return {
        "id": it.id,
        "type": it.type,
        "status": it.status,
        "title": it.title,
        "description": it.description,
        "categoryId": it.category_id,
        "categoryName": it.category_name,
        "locationId": it.location_id,
        "locationName": it.location_name,
        "dateFound": _iso(it.date_found),
        "dateLastSeen": _iso(it.date_last_seen),
        "additionalContactInfo": it.additional_contact_info,
        "securityQuestions": questions,
        "images": list(it.images or []),
        "thumbnails": list(it.thumbnails or []),
        "userId": it.owner_id,
        "userName": it.owner_name,
        "createdAt": _iso(it.created_at),
        "updatedAt": _iso(it.updated_at),
    }
