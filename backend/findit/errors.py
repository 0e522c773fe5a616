"""Error kinds raised by the lifecycle engine and auth layer.

Each error carries the HTTP status the API maps it to, so the web layer can
render any of them with a single handler.
"""
from __future__ import annotations

from typing import Any


class FindItError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message}


class NotFound(FindItError):
    status_code = 404
    default_message = "Not found"


class InvalidState(FindItError):
    status_code = 400
    default_message = "Operation not allowed in the current state"


class Forbidden(FindItError):
    status_code = 403
    default_message = "Access denied"


class Conflict(FindItError):
    status_code = 409
    default_message = "Conflicting modification"


class Unauthenticated(FindItError):
    status_code = 401
    default_message = "Authentication required"


class ValidationError(FindItError):
    status_code = 400
    default_message = "Invalid input"

    def __init__(self, messages: dict[str, Any] | str | None = None, message: str | None = None):
        if isinstance(messages, str):
            message, messages = messages, None
        super().__init__(message)
        self.messages: dict[str, Any] = messages or {}

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.messages:
            payload["errors"] = self.messages
        return payload


class StoreError(FindItError):
    status_code = 500
    default_message = "Server error"
