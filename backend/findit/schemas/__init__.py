from __future__ import annotations

from typing import Any, Mapping

from marshmallow import EXCLUDE, Schema, pre_load
from marshmallow import ValidationError as MarshmallowValidationError

from ..errors import ValidationError


class BaseSchema(Schema):
    """Request schema base: strips surrounding whitespace from string inputs."""

    @pre_load
    def _strip_strings(self, data, **kwargs):
        if not isinstance(data, Mapping):
            return data
        return {k: (v.strip() if isinstance(v, str) else v) for k, v in data.items()}


class QuerySchema(BaseSchema):
    """Query-string parameters. Unrecognised ones (cache busters etc.) are ignored."""

    class Meta:
        unknown = EXCLUDE


def load(schema: Schema, data: Any) -> dict:
    """Validate ``data`` against ``schema`` and return the loaded dict.

    marshmallow errors are re-raised as our ``ValidationError`` so the HTTP
    layer renders them like any other engine error.
    """
    try:
        return schema.load(data or {})
    except MarshmallowValidationError as exc:
        messages = exc.messages if isinstance(exc.messages, dict) else {"_schema": exc.messages}
        raise ValidationError(messages, "Invalid input") from exc
