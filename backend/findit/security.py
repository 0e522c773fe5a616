from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from werkzeug.security import generate_password_hash, check_password_hash

from .errors import Forbidden, Unauthenticated
from .models.user import User
from .store import Store

DEFAULT_TOKEN_MAX_AGE = 60 * 60 * 24  # 1 day


@dataclass(frozen=True)
class AuthContext:
    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _serializer(secret: str | None = None) -> URLSafeTimedSerializer:
    secret = secret or os.getenv("SECRET_KEY", "change-me")
    # Salt provides namespace isolation for tokens
    return URLSafeTimedSerializer(secret_key=secret, salt="auth-token")


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str | None, password: str) -> bool:
    return bool(password_hash) and check_password_hash(password_hash, password)


def hash_answer(answer: str) -> str:
    """One-way digest of a security answer; the plaintext is never stored."""
    return hashlib.sha256(str(answer).strip().encode("utf-8")).hexdigest()


def issue_token(user_id: int, role: str, secret: str | None = None) -> str:
    """Issue a signed token for a user.

    Payload is minimal: {"id": int, "role": str}. The signature embeds the
    issue time, which ``verify_token`` checks against a max age.
    """
    return _serializer(secret).dumps({"id": int(user_id), "role": str(role or "user")})


def verify_token(token: str, secret: str | None = None, max_age: int | None = None) -> Tuple[Optional[int], Optional[str]]:
    """Verify a token and return (user_id, role) if valid, else (None, None)."""
    if max_age is None:
        max_age = DEFAULT_TOKEN_MAX_AGE
    try:
        data = _serializer(secret).loads(token, max_age=max_age)
        uid = int(data.get("id")) if isinstance(data, dict) and data.get("id") is not None else None
        role = str(data.get("role")) if isinstance(data, dict) and data.get("role") is not None else None
        return (uid, role)
    except (BadSignature, SignatureExpired, ValueError, TypeError):
        return (None, None)


def authenticate(token: str | None, store: Store, secret: str | None = None, max_age: int | None = None) -> AuthContext:
    """Resolve a bearer token to an auth context.

    Signature and expiry are checked first, then the user record is re-read so
    a deactivated account loses access immediately rather than at expiry.
    """
    if not token:
        raise Unauthenticated("No token, authorization denied")
    uid, _ = verify_token(token, secret=secret, max_age=max_age)
    if uid is None:
        raise Unauthenticated("Token is not valid")
    with store.session() as s:
        user = s.get(User, uid)
        if user is None:
            raise Unauthenticated("Token is not valid")
        if user.is_deleted:
            raise Unauthenticated("Account has been deactivated")
        # Role comes from the record, so demotions also apply immediately
        return AuthContext(user_id=int(user.id), role=str(user.role))


def require_role(ctx: AuthContext | None, role: str) -> AuthContext:
    if ctx is None:
        raise Unauthenticated()
    if ctx.role != role:
        raise Forbidden(f"Access denied: {role.capitalize()} privileges required")
    return ctx
