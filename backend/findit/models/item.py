from sqlalchemy import func, Index
from ..extensions import db
from .enums import item_type_enum, item_status_enum


class Item(db.Model):
    __tablename__ = "items"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    # Denormalized for listings
    owner_name = db.Column(db.String(120))
    type = db.Column(item_type_enum, nullable=False)
    status = db.Column(item_status_enum, nullable=False, default="Open", server_default="Open")
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id", ondelete="SET NULL"))
    category_name = db.Column(db.String(120))
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id", ondelete="SET NULL"))
    location_name = db.Column(db.String(200))
    date_found = db.Column(db.Date)
    date_last_seen = db.Column(db.Date)
    additional_contact_info = db.Column(db.Text, nullable=False, default="", server_default="")
    # Ordered list of {"question": str, "answerHash": str}
    security_questions = db.Column(db.JSON, nullable=False, default=list)
    images = db.Column(db.JSON, nullable=False, default=list)
    thumbnails = db.Column(db.JSON, nullable=False, default=list)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False, server_default=db.false())
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    owner = db.relationship("User", back_populates="reported_items", foreign_keys=[owner_id])
    claims = db.relationship("Claim", back_populates="item", lazy=True)

    # Every status change is a compare-and-set on version
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_items_type_status", "type", "status"),
        Index("idx_items_owner", "owner_id"),
        Index("idx_items_created_at", "created_at"),
    )
