import json

from flask import Blueprint, request, jsonify, current_app

from ...errors import NotFound, ValidationError
from ...extensions import db
from ...models.item import Item
from ...schemas import load
from ...schemas.item import ItemCreateSchema, ItemUpdateSchema, ItemQuerySchema, item_to_dict
from ...storage import ImageUpload
from ..context import current_auth, get_engine, require_auth

bp = Blueprint("items", __name__, url_prefix="/items")


def _search_filter(q: str):
    """Every whitespace-separated term must appear in one of the text fields."""
    conds = []
    for term in q.lower().split():
        like = f"%{term}%"
        conds.append(
            db.or_(
                Item.title.ilike(like),
                Item.description.ilike(like),
                Item.category_name.ilike(like),
                Item.location_name.ilike(like),
            )
        )
    return db.and_(*conds)


def _form_payload() -> dict:
    """Flatten a multipart form into the JSON shape ItemCreateSchema expects."""
    form = request.form
    data = {k: v for k, v in form.items() if k != "securityQuestions" and v.strip() != ""}
    raw = form.get("securityQuestions")
    if raw:
        try:
            data["securityQuestions"] = json.loads(raw)
        except ValueError as exc:
            raise ValidationError({"securityQuestions": ["Security questions must be a JSON array"]}) from exc
    return data


def _uploads() -> list[ImageUpload]:
    max_bytes = current_app.config["MAX_IMAGE_BYTES"]
    files = [f for f in request.files.getlist("images") if f and f.filename]
    return [ImageUpload(f.filename, f.read(), max_bytes) for f in files]


@bp.get("")
def list_items():
    """List live items, newest first.

    Query params: q (all terms must match), type, categoryId, locationId,
    status, ownerId, page (default 1), limit (default 20, max 100).
    """
    args = load(ItemQuerySchema(), request.args.to_dict())

    q = Item.query.filter(Item.is_deleted.is_(False))
    if args["type"]:
        q = q.filter(Item.type == args["type"])
    if args["category_id"] is not None:
        q = q.filter(Item.category_id == args["category_id"])
    if args["location_id"] is not None:
        q = q.filter(Item.location_id == args["location_id"])
    if args["status"]:
        q = q.filter(Item.status == args["status"])
    if args["owner_id"] is not None:
        q = q.filter(Item.owner_id == args["owner_id"])
    if args["q"]:
        q = q.filter(_search_filter(args["q"]))

    limit = args["limit"]
    offset = (args["page"] - 1) * limit
    items = q.order_by(Item.created_at.desc(), Item.id.desc()).offset(offset).limit(limit).all()
    viewer = current_auth()
    return jsonify(
        {
            "items": [item_to_dict(it, viewer) for it in items],
            "page": args["page"],
            "limit": limit,
        }
    )


@bp.get("/<int:item_id>")
def get_item(item_id: int):
    item = db.session.get(Item, item_id)
    if item is None or item.is_deleted:
        raise NotFound("Item not found")
    return jsonify(item_to_dict(item, current_auth()))


@bp.post("")
def create_item():
    """Report a lost or found item.

    Accepts application/json, or multipart/form-data with up to three files in
    the ``images`` field (securityQuestions then travels as a JSON string).
    """
    ctx = require_auth()
    content_type = request.content_type or ""
    if content_type.startswith("multipart/form-data"):
        data = load(ItemCreateSchema(), _form_payload())
        uploads = _uploads()
    else:
        data = load(ItemCreateSchema(), request.get_json(silent=True))
        uploads = []

    item = get_engine().create_item(ctx.user_id, data, uploads)
    return jsonify({"message": "Item created successfully", "item": item_to_dict(item, ctx)}), 201


@bp.put("/<int:item_id>")
def update_item(item_id: int):
    ctx = require_auth()
    changes = load(ItemUpdateSchema(), request.get_json(silent=True))
    item = get_engine().update_item(ctx, item_id, changes)
    return jsonify({"message": "Item updated successfully", "item": item_to_dict(item, ctx)})


@bp.delete("/<int:item_id>")
def delete_item(item_id: int):
    ctx = require_auth()
    get_engine().delete_item(ctx, item_id)
    return jsonify({"message": "Item deleted successfully"})
