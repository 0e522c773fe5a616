from flask import Blueprint, Flask, g, request, current_app

from ...errors import Unauthenticated
from ...modules.items.routes import bp as items_bp
from ...modules.claims.routes import bp as claims_bp
from ...modules.auth import bp as auth_bp
from ...modules.admin.routes import bp as admin_bp
from ...modules.catalog.routes import categories_bp, locations_bp


def register_api(app: Flask) -> None:
    api_v1 = Blueprint("api_v1", __name__, url_prefix="/api/v1")

    # Resolve the bearer token (if any) into g.auth. Routes decide whether
    # authentication is required; a rejected token is kept in g.auth_error so
    # protected routes can report why.
    @api_v1.before_request  # type: ignore
    def _load_current_user():
        from ...modules.context import get_engine
        from ...security import authenticate
        g.auth = None
        g.auth_error = None
        header = request.headers.get("Authorization") or ""
        if not header.lower().startswith("bearer "):
            return None
        try:
            g.auth = authenticate(
                header[7:].strip(),
                get_engine().store,
                secret=current_app.config["SECRET_KEY"],
                max_age=current_app.config["AUTH_TOKEN_MAX_AGE"],
            )
        except Unauthenticated as exc:
            g.auth_error = exc
        return None

    # Mount feature blueprints
    api_v1.register_blueprint(auth_bp)
    api_v1.register_blueprint(items_bp)
    api_v1.register_blueprint(claims_bp)
    api_v1.register_blueprint(admin_bp)
    api_v1.register_blueprint(categories_bp)
    api_v1.register_blueprint(locations_bp)

    app.register_blueprint(api_v1)
