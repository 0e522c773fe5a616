from sqlalchemy import func
from ..extensions import db
from .enums import role_enum


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    # Campus computer/student id used to log in
    identifier = db.Column(db.String(64), unique=True, nullable=False)
    display_name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255))
    school = db.Column(db.String(200))
    role = db.Column(role_enum, nullable=False, default="user", server_default="user")
    password_hash = db.Column(db.Text, nullable=False)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False, server_default=db.false())
    # Track record, only mutated by claim adjudication
    items_found = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    items_lost = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    items_returned = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    last_login_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    reported_items = db.relationship(
        "Item",
        back_populates="owner",
        foreign_keys="Item.owner_id",
        lazy=True,
    )
    claims = db.relationship(
        "Claim",
        back_populates="claimant",
        foreign_keys="Claim.claimant_id",
        lazy=True,
    )
    audit_logs = db.relationship(
        "AuditLog",
        back_populates="actor",
        foreign_keys="AuditLog.actor_user_id",
        lazy=True,
    )

    @property
    def track_record(self) -> dict:
        return {
            "itemsFound": int(self.items_found or 0),
            "itemsLost": int(self.items_lost or 0),
            "itemsReturned": int(self.items_returned or 0),
        }
