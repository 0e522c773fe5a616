"""Categories and locations that item reports refer to."""
from flask import Blueprint, jsonify, request
from sqlalchemy.exc import IntegrityError

from ...errors import Conflict
from ...extensions import db
from ...models.catalog import Category, Location
from ...schemas import load
from ...schemas.admin import CatalogEntrySchema
from ..context import require_admin

categories_bp = Blueprint("categories", __name__, url_prefix="/categories")
locations_bp = Blueprint("locations", __name__, url_prefix="/locations")


def _entry_to_dict(row) -> dict:
    return {"id": row.id, "name": row.name}


def _create_entry(model, label: str):
    require_admin()
    data = load(CatalogEntrySchema(), request.get_json(silent=True))
    row = model(name=data["name"])
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise Conflict(f"{label} already exists") from exc
    return jsonify(_entry_to_dict(row)), 201


@categories_bp.get("")
def list_categories():
    rows = Category.query.order_by(Category.name).all()
    return jsonify({"categories": [_entry_to_dict(r) for r in rows]})


@categories_bp.post("")
def create_category():
    return _create_entry(Category, "Category")


@locations_bp.get("")
def list_locations():
    rows = Location.query.order_by(Location.name).all()
    return jsonify({"locations": [_entry_to_dict(r) for r in rows]})


@locations_bp.post("")
def create_location():
    return _create_entry(Location, "Location")
