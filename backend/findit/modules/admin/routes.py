from __future__ import annotations

from datetime import datetime, time, timezone

from flask import Blueprint, jsonify, request
from sqlalchemy import func

from ...extensions import db
from ...models.claim import Claim
from ...models.item import Item
from ...models.user import User
from ...schemas import load
from ...schemas.admin import LogsQuerySchema, UserQuerySchema
from ...schemas.auth import user_to_dict
from ..context import get_engine, require_admin

bp = Blueprint("admin", __name__, url_prefix="/admin")


@bp.before_request
def _require_admin():
    require_admin()


def _day_start(d):
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def _day_end(d):
    return datetime.combine(d, time.max, tzinfo=timezone.utc)


@bp.get("/users")
def admin_list_users():
    """Active users, newest first.

    Query params:
    - q: search across identifier, display name, email
    - page, limit (default 20, max 200)
    """
    args = load(UserQuerySchema(), request.args.to_dict())
    base = User.query.filter(User.is_deleted.is_(False))
    if args["q"]:
        like = f"%{args['q'].lower()}%"
        base = base.filter(
            db.or_(
                func.lower(User.identifier).like(like),
                func.lower(User.display_name).like(like),
                func.lower(func.coalesce(User.email, "")).like(like),
            )
        )
    total = base.count()
    limit = args["limit"]
    rows = (
        base.order_by(User.created_at.desc(), User.id.desc())
        .offset((args["page"] - 1) * limit)
        .limit(limit)
        .all()
    )
    return jsonify(
        {
            "users": [user_to_dict(u, include_private=True) for u in rows],
            "total": total,
            "page": args["page"],
            "limit": limit,
        }
    )


@bp.put("/users/<int:user_id>/deactivate")
def admin_deactivate_user(user_id: int):
    ctx = require_admin()
    get_engine().deactivate_user(ctx, user_id)
    return jsonify({"message": "User deactivated successfully"})


@bp.get("/logs")
def admin_logs():
    """Activity report over items and claims.

    Query params: startDate, endDate (YYYY-MM-DD, inclusive), type (items
    only), limit (default 100, max 500).
    Returns: { stats, items, claims }
    """
    args = load(LogsQuerySchema(), request.args.to_dict())
    limit = args["limit"]

    items_q = Item.query.filter(Item.is_deleted.is_(False))
    claims_q = Claim.query.filter(Claim.is_deleted.is_(False))
    if args["start_date"]:
        items_q = items_q.filter(Item.created_at >= _day_start(args["start_date"]))
        claims_q = claims_q.filter(Claim.created_at >= _day_start(args["start_date"]))
    if args["end_date"]:
        items_q = items_q.filter(Item.created_at <= _day_end(args["end_date"]))
        claims_q = claims_q.filter(Claim.created_at <= _day_end(args["end_date"]))
    if args["type"]:
        items_q = items_q.filter(Item.type == args["type"])

    items = items_q.order_by(Item.created_at.desc(), Item.id.desc()).limit(limit).all()
    claims = claims_q.order_by(Claim.created_at.desc(), Claim.id.desc()).limit(limit).all()

    stats = {
        "totalItems": len(items),
        "lostItems": sum(1 for it in items if it.type == "lost"),
        "foundItems": sum(1 for it in items if it.type == "found"),
        "returnedItems": sum(1 for it in items if it.status == "Returned"),
        "totalClaims": len(claims),
        "approvedClaims": sum(1 for c in claims if c.status == "Approved"),
        "deniedClaims": sum(1 for c in claims if c.status == "Denied"),
        "pendingClaims": sum(1 for c in claims if c.status == "Pending"),
    }

    return jsonify(
        {
            "stats": stats,
            "items": [
                {
                    "id": it.id,
                    "title": it.title,
                    "type": it.type,
                    "status": it.status,
                    "categoryName": it.category_name,
                    "locationName": it.location_name,
                    "userId": it.owner_id,
                    "userName": it.owner_name,
                    "createdAt": it.created_at.isoformat() if it.created_at else None,
                }
                for it in items
            ],
            "claims": [
                {
                    "id": c.id,
                    "claimantId": c.claimant_id,
                    "claimantName": c.claimant_name,
                    "foundItemId": c.found_item_id,
                    "status": c.status,
                    "createdAt": c.created_at.isoformat() if c.created_at else None,
                }
                for c in claims
            ],
        }
    )


@bp.get("/stats/overview")
def admin_stats_overview():
    """Overall counts used by Admin Dashboard summary cards.

    Returns: { lost, found, open, claimed, returned, pendingClaims, activeUsers }
    """
    live = Item.is_deleted.is_(False)
    lost = int(db.session.query(func.count(Item.id)).filter(live, Item.type == "lost").scalar() or 0)
    found = int(db.session.query(func.count(Item.id)).filter(live, Item.type == "found").scalar() or 0)
    open_ = int(db.session.query(func.count(Item.id)).filter(live, Item.status == "Open").scalar() or 0)
    claimed = int(db.session.query(func.count(Item.id)).filter(live, Item.status == "Claimed").scalar() or 0)
    returned = int(db.session.query(func.count(Item.id)).filter(live, Item.status == "Returned").scalar() or 0)
    pending_claims = int(
        db.session.query(func.count(Claim.id))
        .filter(Claim.is_deleted.is_(False), Claim.status == "Pending")
        .scalar() or 0
    )
    active_users = int(db.session.query(func.count(User.id)).filter(User.is_deleted.is_(False)).scalar() or 0)

    return jsonify({
        "lost": lost,
        "found": found,
        "open": open_,
        "claimed": claimed,
        "returned": returned,
        "pendingClaims": pending_claims,
        "activeUsers": active_users,
    })
