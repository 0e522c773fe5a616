import logging
import os
from flask import Flask, jsonify, send_from_directory, abort
from .config import get_config
from .errors import FindItError
from .extensions import db, migrate, cors
from .lifecycle import LifecycleEngine
from .storage import BlobStorage, make_blob_storage
from .store import Store
from sqlalchemy import text
from dotenv import load_dotenv
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

logger = logging.getLogger(__name__)


def create_app(config_name: str | None = None, overrides: dict | None = None, blobs: BlobStorage | None = None) -> Flask:
    app = Flask(__name__)

    # Load config
    # Ensure .env is loaded before reading env vars
    load_dotenv()
    app.config.from_object(get_config(config_name))
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    logging.getLogger("findit").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Honor proxy headers from Nginx for correct url_for(_external=True) scheme/host
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=1)  # type: ignore[assignment]

    # Init extensions
    cors.init_app(app)
    db.init_app(app)
    migrate.init_app(app, db)

    # The lifecycle engine gets its store and blob storage handed in. The store
    # borrows Flask-SQLAlchemy's engine, which Flask-SQLAlchemy disposes, so
    # engine.close() leaves the connection pool alone here.
    with app.app_context():
        store = Store(db.engine, owns_engine=False)
    engine = LifecycleEngine(
        store,
        blobs or make_blob_storage(app.config),
        retry_limit=app.config["CLAIM_RETRY_LIMIT"],
        max_images=app.config["MAX_IMAGES"],
    )
    app.extensions["findit.lifecycle"] = engine

    # Register blueprints (v1 API)
    from .apis.v1 import register_api
    register_api(app)

    @app.errorhandler(FindItError)
    def handle_findit_error(exc: FindItError):
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({"error": exc.description or exc.name}), exc.code

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/db-check")
    def db_check():
        try:
            db.session.execute(text("SELECT 1"))
        except Exception:
            logger.exception("Database check failed")
            return {"db": "error"}, 500
        return {"db": "ok"}

    @app.get("/uploads/<path:filename>")
    def uploads(filename: str):
        """Serve photos written by the local blob storage."""
        base = app.config["UPLOAD_FOLDER"]
        if not os.path.isfile(os.path.join(base, filename)):
            abort(404)
        return send_from_directory(base, filename)

    return app
