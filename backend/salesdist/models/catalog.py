from __future__ import annotations

from ..extensions import db
from salesdist.time_utils import to_utc_z


class Branch(db.Model):
    """
    Physical distribution location. Stock, transactions and visits are
    scoped per branch.

    Branch master data is maintained outside the core; the engine only
    needs it as a referential target (existence checks, names in errors).
    """
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Branch id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """Sellable product. `price` is the list price; sales carry their own unit price."""
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "price": str(self.price) if self.price is not None else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
