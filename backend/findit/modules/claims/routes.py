from flask import Blueprint, jsonify, request

from ...errors import NotFound
from ...extensions import db
from ...models.claim import Claim
from ...models.item import Item
from ...schemas import load
from ...schemas.claim import ClaimCreateSchema, ClaimDecisionSchema, ClaimQuerySchema, claim_to_dict
from ..context import get_engine, require_admin, require_auth

bp = Blueprint("claims", __name__, url_prefix="/claims")


def _with_items(claims: list[Claim], viewer) -> list[dict]:
    item_ids = list({int(c.found_item_id) for c in claims})
    items_by_id: dict[int, Item] = {}
    if item_ids:
        for it in Item.query.filter(Item.id.in_(item_ids)).all():
            items_by_id[int(it.id)] = it
    return [claim_to_dict(c, viewer, items_by_id.get(int(c.found_item_id))) for c in claims]


@bp.post("")
def create_claim():
    ctx = require_auth()
    data = load(ClaimCreateSchema(), request.get_json(silent=True))
    claim = get_engine().submit_claim(
        ctx.user_id,
        data["found_item_id"],
        data["security_answers"],
        data["message"],
    )
    return jsonify({"message": "Claim submitted successfully", "claim": claim_to_dict(claim, ctx)}), 201


@bp.get("")
def list_claims():
    """All live claims, newest first (admin only).

    Query params: status (Pending|Approved|Denied), page, limit.
    """
    ctx = require_admin()
    args = load(ClaimQuerySchema(), request.args.to_dict())

    q = Claim.query.filter(Claim.is_deleted.is_(False))
    if args["status"]:
        q = q.filter(Claim.status == args["status"])
    limit = args["limit"]
    claims = (
        q.order_by(Claim.created_at.desc(), Claim.id.desc())
        .offset((args["page"] - 1) * limit)
        .limit(limit)
        .all()
    )
    return jsonify({"claims": _with_items(claims, ctx), "page": args["page"], "limit": limit})


@bp.get("/mine")
def my_claims():
    ctx = require_auth()
    claims = (
        Claim.query
        .filter(Claim.claimant_id == ctx.user_id, Claim.is_deleted.is_(False))
        .order_by(Claim.created_at.desc(), Claim.id.desc())
        .all()
    )
    return jsonify({"claims": _with_items(claims, ctx)})


@bp.get("/<int:claim_id>")
def get_claim(claim_id: int):
    """A single claim, visible to its claimant, the finder and admins."""
    ctx = require_auth()
    claim = db.session.get(Claim, claim_id)
    if claim is None or claim.is_deleted:
        raise NotFound("Claim not found")
    if not ctx.is_admin and ctx.user_id not in (claim.claimant_id, claim.finder_id):
        # hide existence
        raise NotFound("Claim not found")
    return jsonify({"claim": _with_items([claim], ctx)[0]})


@bp.put("/<int:claim_id>")
def adjudicate_claim(claim_id: int):
    """Approve or deny a pending claim (admin only).

    Body JSON: { status: 'Approved' | 'Denied', adminComment?: str }
    """
    ctx = require_admin()
    data = load(ClaimDecisionSchema(), request.get_json(silent=True))
    claim = get_engine().adjudicate_claim(ctx, claim_id, data["status"], data["admin_comment"])
    return jsonify(
        {
            "message": f"Claim {data['status'].lower()} successfully",
            "claim": claim_to_dict(claim, ctx),
        }
    )
