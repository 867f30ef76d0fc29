from __future__ import annotations

from ..extensions import db
from salesdist.time_utils import to_utc_z


# Movement types
MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"
MOVEMENT_SALE = "sale"
MOVEMENT_TRANSFER = "transfer"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_RETURN = "return"

MOVEMENT_TYPES = (
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_SALE,
    MOVEMENT_TRANSFER,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RETURN,
)


class Stock(db.Model):
    """
    Quantity counter for one (product, branch) pair.

    INVARIANTS:
    - quantity >= 0 and minimum_stock >= 0 (CHECK constraints back this up)
    - created lazily on first movement, never deleted
    - only services/stock_service.py writes these rows

    version_id gives optimistic locking on backends without FOR UPDATE:
    a concurrent writer's flush raises StaleDataError and the unit retries.
    """
    __tablename__ = "stocks"
    __table_args__ = (
        db.UniqueConstraint("product_id", "branch_id", name="uq_stocks_product_branch"),
        db.CheckConstraint("quantity >= 0", name="ck_stocks_quantity_non_negative"),
        db.CheckConstraint("minimum_stock >= 0", name="ck_stocks_minimum_non_negative"),
        db.Index("ix_stocks_branch_quantity", "branch_id", "quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    minimum_stock = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    branch = db.relationship("Branch")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low(self) -> bool:
        return self.quantity <= self.minimum_stock

    def __repr__(self) -> str:
        return f"<Stock product_id={self.product_id} branch_id={self.branch_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "quantity": self.quantity,
            "minimum_stock": self.minimum_stock,
            "is_low": self.is_low,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only audit row, one per ledger mutation.

    Direction is encoded by which branch field is set:
    - to_branch_id only: stock entered the branch
    - from_branch_id only: stock left the branch
    - both: transfer between branches
    quantity is always positive.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reference_number = db.Column(db.String(32), nullable=False, unique=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    from_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    to_branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reference_number": self.reference_number,
            "product_id": self.product_id,
            "from_branch_id": self.from_branch_id,
            "to_branch_id": self.to_branch_id,
            "type": self.type,
            "quantity": self.quantity,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
