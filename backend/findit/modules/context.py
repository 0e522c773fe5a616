"""Request-scoped helpers shared by the API blueprints."""
from __future__ import annotations

from flask import current_app, g

from ..errors import Unauthenticated
from ..lifecycle import LifecycleEngine
from ..security import AuthContext, require_role


def get_engine() -> LifecycleEngine:
    return current_app.extensions["findit.lifecycle"]


def current_auth() -> AuthContext | None:
    return getattr(g, "auth", None)


def require_auth() -> AuthContext:
    ctx = current_auth()
    if ctx is None:
        # Surface why the bearer token was rejected, if one was sent
        raise getattr(g, "auth_error", None) or Unauthenticated("No token, authorization denied")
    return ctx


def require_admin() -> AuthContext:
    return require_role(require_auth(), "admin")
