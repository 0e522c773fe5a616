from marshmallow import fields, validate

from . import BaseSchema, QuerySchema
from ..models.enums import CLAIM_STATUSES, CLAIM_DECISIONS
from .item import MAX_SECURITY_QUESTIONS


class ClaimCreateSchema(BaseSchema):
    found_item_id = fields.Int(required=True, data_key="foundItemId")
    security_answers = fields.List(
        fields.Str(allow_none=True),
        data_key="securityAnswers",
        load_default=list,
        validate=validate.Length(max=MAX_SECURITY_QUESTIONS),
    )
    message = fields.Str(load_default="", validate=validate.Length(max=2000))


class ClaimDecisionSchema(BaseSchema):
    status = fields.Str(required=True, validate=validate.OneOf(CLAIM_DECISIONS, error="Status must be Approved or Denied"))
    admin_comment = fields.Str(data_key="adminComment", load_default=None, allow_none=True)


class ClaimQuerySchema(QuerySchema):
    status = fields.Str(load_default=None, validate=validate.OneOf(CLAIM_STATUSES))
    page = fields.Int(load_default=1, validate=validate.Range(min=1))
    limit = fields.Int(load_default=20, validate=validate.Range(min=1, max=100))


def claim_to_dict(c, viewer=None, item=None) -> dict:
    payload = {
        "id": c.id,
        "foundItemId": c.found_item_id,
        "claimantId": c.claimant_id,
        "claimantName": c.claimant_name,
        "finderId": c.finder_id,
        "finderName": c.finder_name,
        "message": c.message,
        "status": c.status,
        "adminComment": c.admin_comment,
        "adjudicatedAt": c.adjudicated_at.isoformat() if c.adjudicated_at else None,
        "createdAt": c.created_at.isoformat() if c.created_at else None,
        "updatedAt": c.updated_at.isoformat() if c.updated_at else None,
    }
    # Answer hashes are for the adjudicating admin only
    if viewer is not None and viewer.is_admin:
        payload["securityAnswers"] = list(c.answer_hashes or [])
        payload["adjudicatedBy"] = c.adjudicated_by
    if item is not None:
        payload["item"] = {
            "id": item.id,
            "title": item.title,
            "type": item.type,
            "status": item.status,
            "images": list(item.images or []),
        }
    return payload
