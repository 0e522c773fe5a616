from marshmallow import fields, validate

from . import BaseSchema


class RegisterSchema(BaseSchema):
    identifier = fields.Str(required=True, validate=validate.Length(min=1, max=64))
    display_name = fields.Str(required=True, data_key="displayName", validate=validate.Length(min=1, max=120))
    email = fields.Email(required=True)
    school = fields.Str(required=True, validate=validate.Length(min=1, max=200))
    password = fields.Str(required=True, load_only=True, validate=validate.Length(min=6))


class AdminRegisterSchema(RegisterSchema):
    school = fields.Str(load_default="", validate=validate.Length(max=200))
    invite = fields.Str(load_default=None, allow_none=True)


class LoginSchema(BaseSchema):
    identifier = fields.Str(required=True, validate=validate.Length(min=1))
    password = fields.Str(required=True, load_only=True, validate=validate.Length(min=1))


def user_to_dict(u, include_private: bool = False) -> dict:
    payload = {
        "id": u.id,
        "identifier": u.identifier,
        "displayName": u.display_name,
        "school": u.school,
        "role": u.role,
        "trackRecord": u.track_record,
    }
    if include_private:
        payload.update(
            {
                "email": u.email,
                "isDeleted": bool(u.is_deleted),
                "lastLoginAt": u.last_login_at.isoformat() if u.last_login_at else None,
                "createdAt": u.created_at.isoformat() if u.created_at else None,
            }
        )
    return payload
