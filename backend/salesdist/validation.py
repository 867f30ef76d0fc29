from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from salesdist.errors import ValidationError


# Money is fixed-point with 2 fraction digits; Numeric(15, 2) columns.
MONEY_QUANTUM = Decimal("0.01")
# Tax and commission amounts are rounded half-up to whole currency units.
WHOLE_UNIT = Decimal("1")
MAX_MONEY = Decimal("9999999999999.99")

PAYMENT_METHODS = ("cash", "transfer", "credit")
VISIT_TYPES = ("routine", "prospecting", "follow_up", "complaint", "other")


def coerce_int(value: Any, name: str) -> int:
    """
    Strict integer coercion.

    Rejects bools, floats, decimals in strings and scientific notation so a
    quantity of "1e3" or 2.5 never silently becomes something else.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def coerce_positive_quantity(value: Any, name: str = "quantity") -> int:
    qty = coerce_int(value, name)
    if qty <= 0:
        raise ValidationError(f"{name} must be greater than zero", details={name: qty})
    return qty


def coerce_non_negative_quantity(value: Any, name: str = "quantity") -> int:
    qty = coerce_int(value, name)
    if qty < 0:
        raise ValidationError(f"{name} must be zero or greater", details={name: qty})
    return qty


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def round_half_up(value: Decimal, quantum: Decimal = WHOLE_UNIT) -> Decimal:
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def coerce_money(value: Any, name: str, *, allow_none: bool = False) -> Decimal | None:
    """
    Convert JSON/str/int/float input into a 2-place Decimal.

    Floats go through str() first so 0.1 stays 0.1 instead of picking up
    binary representation error.
    """
    if value is None or value == "":
        if allow_none:
            return None
        raise ValidationError(f"{name} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        try:
            amount = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"{name} must be a number")
    else:
        raise ValidationError(f"{name} must be a number")

    if not amount.is_finite():
        raise ValidationError(f"{name} must be a finite number")
    if amount < 0:
        raise ValidationError(f"{name} must be >= 0")
    if amount > MAX_MONEY:
        raise ValidationError(f"{name} exceeds the maximum amount")
    return quantize_money(amount)


def coerce_rate(value: Any, name: str = "tax_rate") -> Decimal | None:
    """Fractional rate such as 0.11 for 11%."""
    if value is None or value == "":
        return None
    try:
        rate = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{name} must be a number")
    if not rate.is_finite() or rate < 0 or rate > 1:
        raise ValidationError(f"{name} must be between 0 and 1")
    return rate


def coerce_coordinate(value: Any, name: str, limit: int) -> Decimal | None:
    """Latitude/longitude are opaque decimals; only the range is checked."""
    if value is None or value == "":
        return None
    try:
        coord = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{name} must be a number")
    if not coord.is_finite() or coord < -limit or coord > limit:
        raise ValidationError(f"{name} must be between -{limit} and {limit}")
    return coord


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _to_optional_int(value: Any, name: str) -> int | None:
    if value is None or value == "":
        return None
    return coerce_int(value, name)


@dataclass
class TransactionItemRequest:
    product_id: int
    quantity: int
    price: Decimal
    discount: Decimal = Decimal("0.00")

    @classmethod
    def from_dict(cls, data: dict) -> "TransactionItemRequest":
        if not isinstance(data, dict):
            raise ValidationError("Each item must be an object")
        if "product_id" not in data:
            raise ValidationError("Missing required field: product_id")
        return cls(
            product_id=coerce_int(data.get("product_id"), "product_id"),
            quantity=coerce_positive_quantity(data.get("quantity"), "quantity"),
            price=coerce_money(data.get("price"), "price"),
            discount=coerce_money(data.get("discount"), "discount", allow_none=True) or Decimal("0.00"),
        )

    def checked(self) -> "TransactionItemRequest":
        """Apply the from_dict rules to an item built in code."""
        return TransactionItemRequest(
            product_id=coerce_int(self.product_id, "product_id"),
            quantity=coerce_positive_quantity(self.quantity, "quantity"),
            price=coerce_money(self.price, "price"),
            discount=coerce_money(self.discount, "discount", allow_none=True) or Decimal("0.00"),
        )


@dataclass
class TransactionRequest:
    """Input for creating a sales transaction (shape pre-validated by the caller)."""

    branch_id: int
    sales_id: int
    items: list[TransactionItemRequest]
    payment_method: str = "cash"
    transaction_number: str | None = None
    area_id: int | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    customer_address: str | None = None
    discount: Decimal = Decimal("0.00")
    tax: Decimal | None = None
    tax_rate: Decimal | None = None
    notes: str | None = None
    latitude: Decimal | None = None
    longitude: Decimal | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "TransactionRequest":
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")
        missing = [f for f in ("branch_id", "sales_id", "items") if data.get(f) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        raw_items = data.get("items")
        if not isinstance(raw_items, list):
            raise ValidationError("items must be a list")
        return cls(
            branch_id=coerce_int(data["branch_id"], "branch_id"),
            sales_id=coerce_int(data["sales_id"], "sales_id"),
            items=[TransactionItemRequest.from_dict(item) for item in raw_items],
            payment_method=_to_text(data.get("payment_method")) or "cash",
            transaction_number=_to_text(data.get("transaction_number")),
            area_id=_to_optional_int(data.get("area_id"), "area_id"),
            customer_name=_to_text(data.get("customer_name")),
            customer_phone=_to_text(data.get("customer_phone")),
            customer_address=_to_text(data.get("customer_address")),
            discount=coerce_money(data.get("discount"), "discount", allow_none=True) or Decimal("0.00"),
            tax=coerce_money(data.get("tax"), "tax", allow_none=True),
            tax_rate=coerce_rate(data.get("tax_rate")),
            notes=_to_text(data.get("notes")),
            latitude=coerce_coordinate(data.get("latitude"), "latitude", 90),
            longitude=coerce_coordinate(data.get("longitude"), "longitude", 180),
        )

    def checked(self) -> "TransactionRequest":
        """
        Re-validate a request that may not have come through from_dict.

        Ids, quantities and amounts get the same coercion as parsed input, so
        a bad value fails here instead of at a database constraint.
        """
        return replace(
            self,
            branch_id=coerce_int(self.branch_id, "branch_id"),
            sales_id=coerce_int(self.sales_id, "sales_id"),
            items=[item.checked() for item in self.items],
            discount=coerce_money(self.discount, "discount", allow_none=True) or Decimal("0.00"),
            tax=coerce_money(self.tax, "tax", allow_none=True),
            tax_rate=coerce_rate(self.tax_rate),
        )


@dataclass
class VisitRequest:
    """Input for recording a field visit."""

    branch_id: int
    sales_id: int
    customer_name: str
    visit_type: str = "routine"
    area_id: int | None = None
    customer_phone: str | None = None
    customer_address: str | None = None
    purpose: str | None = None
    result: str | None = None
    notes: str | None = None
    latitude: Decimal | None = None
    longitude: Decimal | None = None
    photo: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "VisitRequest":
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")
        missing = [f for f in ("branch_id", "sales_id", "customer_name") if data.get(f) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        return cls(
            branch_id=coerce_int(data["branch_id"], "branch_id"),
            sales_id=coerce_int(data["sales_id"], "sales_id"),
            customer_name=_to_text(data["customer_name"]),
            visit_type=_to_text(data.get("visit_type")) or "routine",
            area_id=_to_optional_int(data.get("area_id"), "area_id"),
            customer_phone=_to_text(data.get("customer_phone")),
            customer_address=_to_text(data.get("customer_address")),
            purpose=_to_text(data.get("purpose")),
            result=_to_text(data.get("result")),
            notes=_to_text(data.get("notes")),
            latitude=coerce_coordinate(data.get("latitude"), "latitude", 90),
            longitude=coerce_coordinate(data.get("longitude"), "longitude", 180),
            photo=_to_text(data.get("photo")),
        )


@dataclass
class OpnameLine:
    product_id: int
    physical_quantity: int

    @classmethod
    def from_any(cls, value) -> "OpnameLine":
        if isinstance(value, OpnameLine):
            return value
        if not isinstance(value, dict):
            raise ValidationError("Each opname line must be an object")
        return cls(
            product_id=coerce_int(value.get("product_id"), "product_id"),
            physical_quantity=coerce_non_negative_quantity(
                value.get("physical_quantity"), "physical_quantity"
            ),
        )
