import logging

from flask import request, jsonify, current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ...errors import Conflict, Forbidden, Unauthenticated, NotFound
from ...extensions import db
from ...models.user import User
from ...schemas import load
from ...schemas.auth import RegisterSchema, AdminRegisterSchema, LoginSchema, user_to_dict
from ...security import issue_token, hash_password, verify_password
from ..context import current_auth, require_auth
from . import bp

logger = logging.getLogger(__name__)


def _token_for(user: User) -> str:
    return issue_token(int(user.id), user.role or "user", secret=current_app.config["SECRET_KEY"])


def _create_user(data: dict, role: str) -> User:
    if User.query.filter_by(identifier=data["identifier"]).first():
        raise Conflict("User with this identifier already exists")
    user = User(
        identifier=data["identifier"],
        display_name=data["display_name"],
        email=(data.get("email") or "").lower() or None,
        school=data.get("school") or None,
        role=role,
        password_hash=hash_password(data["password"]),
        is_deleted=False,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise Conflict("User with this identifier already exists") from exc
    logger.info("Registered %s %s", role, user.id)
    return user


@bp.post("/register")
def register():
    data = load(RegisterSchema(), request.get_json(silent=True))
    user = _create_user(data, "user")
    return (
        jsonify(
            {
                "message": "User registered successfully",
                "token": _token_for(user),
                "user": user_to_dict(user, include_private=True),
            }
        ),
        201,
    )


@bp.post("/register/admin")
def register_admin():
    """Create a new admin user.

    Allowed for an authenticated admin, or with the one-time invite code from
    ADMIN_INVITE_CODE (header X-Admin-Invite or body field ``invite``).
    """
    data = load(AdminRegisterSchema(), request.get_json(silent=True))

    ctx = current_auth()
    provided = (request.headers.get("X-Admin-Invite") or data.get("invite") or "").strip()
    expected = current_app.config.get("ADMIN_INVITE_CODE") or ""
    invite_ok = bool(provided and expected and provided == expected)
    if not (ctx is not None and ctx.is_admin) and not invite_ok:
        raise Forbidden("Admin registration not permitted")

    user = _create_user(data, "admin")
    return (
        jsonify(
            {
                "message": "Admin registered successfully",
                "token": _token_for(user),
                "user": user_to_dict(user, include_private=True),
            }
        ),
        201,
    )


@bp.post("/login")
def login():
    data = load(LoginSchema(), request.get_json(silent=True))

    user = User.query.filter_by(identifier=data["identifier"]).first()
    if not user or not verify_password(user.password_hash, data["password"]):
        raise Unauthenticated("Invalid credentials")
    if user.is_deleted:
        raise Forbidden("Account has been deactivated")

    user.last_login_at = func.now()
    db.session.commit()

    return jsonify(
        {
            "message": "Login successful",
            "token": _token_for(user),
            "user": user_to_dict(user, include_private=True),
        }
    )


@bp.get("/me")
def me():
    ctx = require_auth()
    user = db.session.get(User, ctx.user_id)
    if user is None:
        raise NotFound("User not found")
    return jsonify(user_to_dict(user, include_private=True))
