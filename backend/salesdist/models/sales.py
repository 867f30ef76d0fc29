from __future__ import annotations

from ..extensions import db
from salesdist.time_utils import to_utc_z, to_iso_date


# Transaction status constants
TRANSACTION_STATUS_PENDING = "pending"
TRANSACTION_STATUS_APPROVED = "approved"
TRANSACTION_STATUS_CANCELLED = "cancelled"

TRANSACTION_STATUSES = (
    TRANSACTION_STATUS_PENDING,
    TRANSACTION_STATUS_APPROVED,
    TRANSACTION_STATUS_CANCELLED,
)

# Commission status constants
COMMISSION_STATUS_PENDING = "pending"
COMMISSION_STATUS_APPROVED = "approved"
COMMISSION_STATUS_PAID = "paid"


def _money(value) -> str | None:
    return str(value) if value is not None else None


def _coord(value) -> str | None:
    return str(value) if value is not None else None


class SalesTransaction(db.Model):
    """
    One sale (aggregate root). Items are owned by the transaction.

    LIFECYCLE:
    - pending: created by sales_transaction_service.create (stock already reduced)
    - approved: terminal, irreversible
    - cancelled: terminal, stock restored through the stock ledger

    deleted_at is an explicit soft-delete marker; read helpers take an
    include_deleted flag instead of filtering implicitly.
    """
    __tablename__ = "sales_transactions"
    __table_args__ = (
        db.Index("ix_sales_transactions_sales_date", "sales_id", "transaction_date"),
        db.Index("ix_sales_transactions_branch_status_date", "branch_id", "status", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_number = db.Column(db.String(32), nullable=False, unique=True)
    transaction_date = db.Column(db.Date, nullable=False, index=True)

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    sales_id = db.Column(db.Integer, nullable=False, index=True)
    area_id = db.Column(db.Integer, nullable=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_address = db.Column(db.Text, nullable=True)

    subtotal = db.Column(db.Numeric(15, 2), nullable=False)
    discount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(15, 2), nullable=False)

    payment_method = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=TRANSACTION_STATUS_PENDING, index=True)
    notes = db.Column(db.Text, nullable=True)

    latitude = db.Column(db.Numeric(10, 7), nullable=True)
    longitude = db.Column(db.Numeric(10, 7), nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.Integer, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.Integer, nullable=True)

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
    items = db.relationship(
        "SalesTransactionItem",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="SalesTransactionItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<SalesTransaction id={self.id} number={self.transaction_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "transaction_date": to_iso_date(self.transaction_date),
            "branch_id": self.branch_id,
            "sales_id": self.sales_id,
            "area_id": self.area_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "subtotal": _money(self.subtotal),
            "discount": _money(self.discount),
            "tax": _money(self.tax),
            "total": _money(self.total),
            "payment_method": self.payment_method,
            "status": self.status,
            "notes": self.notes,
            "latitude": _coord(self.latitude),
            "longitude": _coord(self.longitude),
            "created_by": self.created_by,
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "approved_by": self.approved_by,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by": self.cancelled_by,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SalesTransactionItem(db.Model):
    """Line item; immutable once written. subtotal = quantity * price - discount."""
    __tablename__ = "sales_transaction_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sales_transaction_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sales_transaction_id = db.Column(
        db.Integer, db.ForeignKey("sales_transactions.id"), nullable=False, index=True
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(15, 2), nullable=False)
    discount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    subtotal = db.Column(db.Numeric(15, 2), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship("SalesTransaction", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sales_transaction_id": self.sales_transaction_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "price": _money(self.price),
            "discount": _money(self.discount),
            "subtotal": _money(self.subtotal),
            "created_at": to_utc_z(self.created_at),
        }


class Commission(db.Model):
    """
    Percentage payout derived from an approved sale (read model).

    One commission per transaction; the stock/transaction engine never
    writes these rows.
    """
    __tablename__ = "commissions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sales_transaction_id = db.Column(
        db.Integer, db.ForeignKey("sales_transactions.id"), nullable=False, unique=True
    )
    sales_id = db.Column(db.Integer, nullable=False, index=True)

    transaction_amount = db.Column(db.Numeric(15, 2), nullable=False)
    commission_percentage = db.Column(db.Numeric(5, 2), nullable=False)
    commission_amount = db.Column(db.Numeric(15, 2), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=COMMISSION_STATUS_PENDING, index=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship("SalesTransaction")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sales_transaction_id": self.sales_transaction_id,
            "sales_id": self.sales_id,
            "transaction_amount": _money(self.transaction_amount),
            "commission_percentage": _money(self.commission_percentage),
            "commission_amount": _money(self.commission_amount),
            "status": self.status,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
