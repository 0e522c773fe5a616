from sqlalchemy import func, Index, text
from ..extensions import db
from .enums import claim_status_enum


class Claim(db.Model):
    __tablename__ = "claims"

    id = db.Column(db.Integer, primary_key=True)
    found_item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False)
    claimant_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    claimant_name = db.Column(db.String(120))
    # Item owner captured at creation
    finder_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    finder_name = db.Column(db.String(120))
    answer_hashes = db.Column(db.JSON, nullable=False, default=list)
    message = db.Column(db.Text, nullable=False, default="", server_default="")
    status = db.Column(claim_status_enum, nullable=False, default="Pending", server_default="Pending")
    admin_comment = db.Column(db.Text, nullable=False, default="", server_default="")
    adjudicated_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    adjudicated_at = db.Column(db.DateTime(timezone=True))
    is_deleted = db.Column(db.Boolean, nullable=False, default=False, server_default=db.false())
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    item = db.relationship("Item", back_populates="claims")
    claimant = db.relationship("User", back_populates="claims", foreign_keys=[claimant_id])
    finder = db.relationship("User", foreign_keys=[finder_id])

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_claims_item", "found_item_id"),
        Index("idx_claims_claimant", "claimant_id"),
        Index("idx_claims_status", "status"),
        # At most one pending claim per item
        Index(
            "uq_claims_pending_item",
            "found_item_id",
            unique=True,
            sqlite_where=text("status = 'Pending'"),
            postgresql_where=text("status = 'Pending'"),
        ),
    )
