from __future__ import annotations

from ..extensions import db
from salesdist.time_utils import to_utc_z, to_iso_date


# Visit status constants
VISIT_STATUS_PENDING = "pending"
VISIT_STATUS_APPROVED = "approved"
VISIT_STATUS_REJECTED = "rejected"


class Visit(db.Model):
    """
    Field visit by a salesperson. Independent of sales transactions.

    pending -> approved | rejected (both terminal). The rejection reason has
    its own column; notes stay free text.
    """
    __tablename__ = "visits"
    __table_args__ = (
        db.Index("ix_visits_branch_date", "branch_id", "visit_date"),
        db.Index("ix_visits_sales_date", "sales_id", "visit_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    visit_number = db.Column(db.String(32), nullable=False, unique=True)
    visit_date = db.Column(db.Date, nullable=False, index=True)

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    sales_id = db.Column(db.Integer, nullable=False, index=True)
    area_id = db.Column(db.Integer, nullable=True)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_address = db.Column(db.Text, nullable=True)

    visit_type = db.Column(db.String(16), nullable=False, default="routine")
    status = db.Column(db.String(16), nullable=False, default=VISIT_STATUS_PENDING, index=True)

    purpose = db.Column(db.Text, nullable=True)
    result = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    latitude = db.Column(db.Numeric(10, 7), nullable=True)
    longitude = db.Column(db.Numeric(10, 7), nullable=True)
    photo = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.Integer, nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_by = db.Column(db.Integer, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    branch = db.relationship("Branch")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Visit id={self.id} number={self.visit_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "visit_number": self.visit_number,
            "visit_date": to_iso_date(self.visit_date),
            "branch_id": self.branch_id,
            "sales_id": self.sales_id,
            "area_id": self.area_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "visit_type": self.visit_type,
            "status": self.status,
            "purpose": self.purpose,
            "result": self.result,
            "notes": self.notes,
            "latitude": str(self.latitude) if self.latitude is not None else None,
            "longitude": str(self.longitude) if self.longitude is not None else None,
            "photo": self.photo,
            "created_by": self.created_by,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "approved_by": self.approved_by,
            "rejected_at": to_utc_z(self.rejected_at) if self.rejected_at else None,
            "rejected_by": self.rejected_by,
            "rejection_reason": self.rejection_reason,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
        }
