import io
from datetime import date

import pytest
from PIL import Image

from findit import create_app
from findit.extensions import db
from findit.lifecycle import LifecycleEngine
from findit.models import User
from findit.security import AuthContext, hash_password
from findit.storage import MemoryBlobStorage
from findit.store import Store

ADMIN_INVITE = "let-me-in"
PASSWORD = "secret1"


@pytest.fixture
def store(tmp_path):
    s = Store.from_url(f"sqlite:///{tmp_path / 'findit.db'}")
    s.create_all()
    yield s
    s.close()


@pytest.fixture
def blobs():
    return MemoryBlobStorage()


@pytest.fixture
def engine(store, blobs):
    eng = LifecycleEngine(store, blobs, retry_limit=3)
    yield eng
    eng.close()


@pytest.fixture
def make_user(store):
    def _make(identifier: str, role: str = "user") -> User:
        with store.transaction() as s:
            user = User(
                identifier=identifier,
                display_name=identifier.capitalize(),
                email=f"{identifier}@campus.example.edu",
                school="Engineering",
                role=role,
                password_hash=hash_password(PASSWORD),
                is_deleted=False,
            )
            s.add(user)
            s.flush()
            s.refresh(user)
            return user

    return _make


@pytest.fixture
def as_ctx():
    def _ctx(user: User) -> AuthContext:
        return AuthContext(user_id=int(user.id), role=str(user.role))

    return _ctx


@pytest.fixture
def fetch(store):
    """Re-read a row in a fresh session."""

    def _fetch(model, pk):
        with store.session() as s:
            return s.get(model, pk)

    return _fetch


def _found_item_data(**overrides) -> dict:
    data = {
        "type": "found",
        "title": "Blue water bottle",
        "description": "Steel bottle with a sticker, left in the library",
        "date_found": date(2024, 3, 14),
        "security_questions": [
            {"question": "What sticker is on it?", "answer": "A red fox"},
            {"question": "What colour is the lid?", "answer": "Black"},
        ],
    }
    data.update(overrides)
    return data


@pytest.fixture
def found_item(engine, make_user):
    """A user named finder reports a found item; returns (finder, item)."""
    finder = make_user("finder")
    item = engine.create_item(finder.id, _found_item_data())
    return finder, item


def _png_bytes(size=(64, 48), color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def item_data():
    return _found_item_data


@pytest.fixture
def png():
    return _png_bytes


# ---- HTTP fixtures ----


@pytest.fixture
def app(tmp_path):
    app = create_app(
        "testing",
        overrides={
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'api.db'}",
            "UPLOAD_FOLDER": str(tmp_path / "uploads"),
            "ADMIN_INVITE_CODE": ADMIN_INVITE,
        },
        blobs=MemoryBlobStorage(),
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def register(client):
    """Register a user through the API and return (user json, auth headers)."""

    def _register(identifier: str, admin: bool = False):
        body = {
            "identifier": identifier,
            "displayName": identifier.capitalize(),
            "email": f"{identifier}@campus.example.edu",
            "school": "Engineering",
            "password": PASSWORD,
        }
        if admin:
            resp = client.post("/api/v1/auth/register/admin", json=body, headers={"X-Admin-Invite": ADMIN_INVITE})
        else:
            resp = client.post("/api/v1/auth/register", json=body)
        assert resp.status_code == 201, resp.get_json()
        payload = resp.get_json()
        return payload["user"], {"Authorization": f"Bearer {payload['token']}"}

    return _register
