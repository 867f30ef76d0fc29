# Overview: Stock ledger; per-(product, branch) quantities and their movement history.

"""
Stock Ledger Invariants (authoritative)

Stock model:
- One Stock row per (product, branch), created lazily with quantity=0 and
  minimum_stock=0, never deleted.
- Stock.quantity is never negative. A reduction that would under-flow fails
  with InsufficientStockError and writes nothing.
- Only this module writes Stock and StockMovement rows. Other services call
  the public functions, or the *_locked helpers when they already own an open
  unit of work.

Audit:
- Every mutation appends exactly one StockMovement in the same DB
  transaction (transfer: one row carrying both branches).
- Movements are append-only. For any branch,
      SUM(qty where to_branch_id = branch) - SUM(qty where from_branch_id = branch)
  reconciles to Stock.quantity when every change went through the ledger.

Concurrency:
- Public operations run as one atomic unit (concurrency.atomic): the stock
  row is locked (FOR UPDATE / BEGIN IMMEDIATE on SQLite) before it is read,
  so "read quantity, decide, write" is never interleaved with another writer.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_

from ..errors import (
    DuplicateError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Branch, Product, Stock, StockMovement
from ..models.stock import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_TRANSFER,
    MOVEMENT_TYPES,
)
from ..validation import (
    OpnameLine,
    coerce_int,
    coerce_non_negative_quantity,
    coerce_positive_quantity,
)
from .concurrency import atomic, lock_for_update
from .identifier_service import PREFIX_MOVEMENT, movement_reference_number, next_reference_number


def require_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product", product_id)
    return product


def require_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if branch is None:
        raise NotFoundError("Branch", branch_id)
    return branch


def _validate_type(movement_type: str) -> str:
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(
            f"Invalid movement type: {movement_type}",
            details={"allowed": list(MOVEMENT_TYPES)},
        )
    return movement_type


def _locked_stock(product_id: int, branch_id: int, *, create: bool = True) -> Stock | None:
    """Fetch the Stock row under a row lock, creating it when missing."""
    query = db.session.query(Stock).filter_by(product_id=product_id, branch_id=branch_id)
    stock = lock_for_update(query).first()
    if stock is None and create:
        stock = Stock(product_id=product_id, branch_id=branch_id, quantity=0, minimum_stock=0)
        db.session.add(stock)
        # A concurrent creator trips uq_stocks_product_branch; run_with_retry
        # rolls back and the retried unit finds the row.
        db.session.flush()
    return stock


def locked_quantities(branch_id: int, product_ids) -> dict[int, int]:
    """
    Lock the branch's stock rows for `product_ids` and return their quantities.

    Rows are locked in product_id order. Products without a row map to 0.
    Must run inside the caller's unit of work.
    """
    quantities = {}
    for product_id in sorted(set(product_ids)):
        stock = _locked_stock(product_id, branch_id, create=False)
        quantities[product_id] = stock.quantity if stock is not None else 0
    return quantities


def _record_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    from_branch_id: int | None = None,
    to_branch_id: int | None = None,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> StockMovement:
    movement = StockMovement(
        reference_number=movement_reference_number(),
        product_id=product_id,
        from_branch_id=from_branch_id,
        to_branch_id=to_branch_id,
        type=movement_type,
        quantity=quantity,
        notes=notes,
        created_by=actor_user_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def add_stock_locked(
    *,
    product_id: int,
    branch_id: int,
    quantity: int,
    movement_type: str = MOVEMENT_IN,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> Stock:
    """Core increment without retry or commit; caller owns the unit of work."""
    require_product(product_id)
    require_branch(branch_id)

    stock = _locked_stock(product_id, branch_id)
    stock.quantity = stock.quantity + quantity
    db.session.flush()

    _record_movement(
        product_id=product_id,
        movement_type=movement_type,
        quantity=quantity,
        to_branch_id=branch_id,
        notes=notes,
        actor_user_id=actor_user_id,
    )
    return stock


def reduce_stock_locked(
    *,
    product_id: int,
    branch_id: int,
    quantity: int,
    movement_type: str = MOVEMENT_OUT,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> Stock:
    """
    Core decrement without retry or commit; caller owns the unit of work.

    Raises InsufficientStockError before touching anything when the locked
    quantity is below the request.
    """
    product = require_product(product_id)
    require_branch(branch_id)

    stock = _locked_stock(product_id, branch_id)
    if stock.quantity < quantity:
        raise InsufficientStockError(product.id, product.name, quantity, stock.quantity)

    stock.quantity = stock.quantity - quantity
    db.session.flush()

    _record_movement(
        product_id=product_id,
        movement_type=movement_type,
        quantity=quantity,
        from_branch_id=branch_id,
        notes=notes,
        actor_user_id=actor_user_id,
    )
    return stock


def _adjust_to_locked(
    *,
    stock: Stock,
    physical_quantity: int,
    notes: str,
    actor_user_id: int | None = None,
) -> StockMovement | None:
    """
    Set a locked stock row to an absolute quantity.

    Records an adjustment movement for |difference|: shrinkage uses
    from_branch_id, surplus uses to_branch_id. No difference, no movement.
    """
    difference = physical_quantity - stock.quantity
    if difference == 0:
        return None

    stock.quantity = physical_quantity
    db.session.flush()

    return _record_movement(
        product_id=stock.product_id,
        movement_type=MOVEMENT_ADJUSTMENT,
        quantity=abs(difference),
        from_branch_id=stock.branch_id if difference < 0 else None,
        to_branch_id=stock.branch_id if difference > 0 else None,
        notes=notes,
        actor_user_id=actor_user_id,
    )


# =============================================================================
# Public operations (each one atomic unit)
# =============================================================================

def get_or_create(product_id: int, branch_id: int) -> Stock:
    """Return the Stock row for (product, branch), creating an empty one if needed."""
    product_id = coerce_int(product_id, "product_id")
    branch_id = coerce_int(branch_id, "branch_id")

    def _op():
        require_product(product_id)
        require_branch(branch_id)
        return _locked_stock(product_id, branch_id)

    return atomic(_op)


def add_stock(
    product_id: int,
    branch_id: int,
    quantity: int,
    type: str = MOVEMENT_IN,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> Stock:
    """Increment stock and append a movement with to_branch_id=branch_id."""
    quantity = coerce_positive_quantity(quantity)
    movement_type = _validate_type(type)

    stock = atomic(lambda: add_stock_locked(
        product_id=product_id,
        branch_id=branch_id,
        quantity=quantity,
        movement_type=movement_type,
        notes=notes,
        actor_user_id=actor_user_id,
    ))

    current_app.logger.info(
        "Stock added product_id=%s branch_id=%s quantity=%s type=%s actor=%s",
        product_id, branch_id, quantity, movement_type, actor_user_id,
    )
    return stock


def reduce_stock(
    product_id: int,
    branch_id: int,
    quantity: int,
    type: str = MOVEMENT_OUT,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> Stock:
    """
    Decrement stock and append a movement with from_branch_id=branch_id.

    Raises:
        InsufficientStockError: quantity on hand is below `quantity`
            (nothing is written).
    """
    quantity = coerce_positive_quantity(quantity)
    movement_type = _validate_type(type)

    stock = atomic(lambda: reduce_stock_locked(
        product_id=product_id,
        branch_id=branch_id,
        quantity=quantity,
        movement_type=movement_type,
        notes=notes,
        actor_user_id=actor_user_id,
    ))

    current_app.logger.info(
        "Stock reduced product_id=%s branch_id=%s quantity=%s type=%s actor=%s",
        product_id, branch_id, quantity, movement_type, actor_user_id,
    )
    return stock


def transfer_stock(
    product_id: int,
    from_branch_id: int,
    to_branch_id: int,
    quantity: int,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> dict:
    """
    Move stock between branches as a single unit.

    Returns:
        {"from_stock": Stock, "to_stock": Stock}

    Raises:
        ValidationError: same source and destination, or bad quantity
        InsufficientStockError: source short; neither row changes
    """
    quantity = coerce_positive_quantity(quantity)
    if from_branch_id == to_branch_id:
        raise ValidationError("Cannot transfer to the same branch")

    def _op():
        product = require_product(product_id)
        require_branch(from_branch_id)
        require_branch(to_branch_id)

        # Lock in branch order so opposite transfers cannot deadlock.
        locked = {}
        for branch_id in sorted((from_branch_id, to_branch_id)):
            locked[branch_id] = _locked_stock(product_id, branch_id)
        from_stock = locked[from_branch_id]
        to_stock = locked[to_branch_id]

        if from_stock.quantity < quantity:
            raise InsufficientStockError(product.id, product.name, quantity, from_stock.quantity)

        from_stock.quantity = from_stock.quantity - quantity
        to_stock.quantity = to_stock.quantity + quantity
        db.session.flush()

        _record_movement(
            product_id=product_id,
            movement_type=MOVEMENT_TRANSFER,
            quantity=quantity,
            from_branch_id=from_branch_id,
            to_branch_id=to_branch_id,
            notes=notes,
            actor_user_id=actor_user_id,
        )
        return {"from_stock": from_stock, "to_stock": to_stock}

    result = atomic(_op)

    current_app.logger.info(
        "Stock transferred product_id=%s from_branch_id=%s to_branch_id=%s quantity=%s actor=%s",
        product_id, from_branch_id, to_branch_id, quantity, actor_user_id,
    )
    return result


def stock_opname(branch_id: int, lines: list, actor_user_id: int | None = None) -> list[dict]:
    """
    Physical count reconciliation for one branch.

    Each line is {"product_id", "physical_quantity"}. Lines whose count
    differs from the system quantity set the stock to the count and record an
    adjustment movement; matching lines are skipped and not reported. The
    batch shares one MOV reference and commits as a whole.

    Returns:
        list of {product_id, system_quantity, physical_quantity, difference,
        reference_number, opname_reference}
    """
    parsed = [OpnameLine.from_any(line) for line in (lines or [])]

    def _op():
        require_branch(branch_id)
        adjustments = []
        opname_reference = None

        for line in parsed:
            require_product(line.product_id)
            stock = _locked_stock(line.product_id, branch_id)
            system_quantity = stock.quantity
            if line.physical_quantity == system_quantity:
                continue

            if opname_reference is None:
                opname_reference = next_reference_number(PREFIX_MOVEMENT)

            movement = _adjust_to_locked(
                stock=stock,
                physical_quantity=line.physical_quantity,
                notes=(
                    f"Stock Opname {opname_reference}: System ({system_quantity}) "
                    f"vs Physical ({line.physical_quantity})"
                ),
                actor_user_id=actor_user_id,
            )
            adjustments.append({
                "product_id": line.product_id,
                "system_quantity": system_quantity,
                "physical_quantity": line.physical_quantity,
                "difference": line.physical_quantity - system_quantity,
                "reference_number": movement.reference_number,
                "opname_reference": opname_reference,
            })

        return adjustments

    adjustments = atomic(_op)

    current_app.logger.info(
        "Stock opname completed branch_id=%s adjustments=%d actor=%s",
        branch_id, len(adjustments), actor_user_id,
    )
    return adjustments


def set_quantity(
    product_id: int,
    branch_id: int,
    quantity: int,
    actor_user_id: int | None = None,
    notes: str | None = None,
) -> Stock:
    """Manual correction to an absolute quantity, audited as an adjustment."""
    quantity = coerce_non_negative_quantity(quantity)

    def _op():
        require_product(product_id)
        require_branch(branch_id)
        stock = _locked_stock(product_id, branch_id)
        old_quantity = stock.quantity
        _adjust_to_locked(
            stock=stock,
            physical_quantity=quantity,
            notes=notes or f"Manual adjustment: {old_quantity} -> {quantity}",
            actor_user_id=actor_user_id,
        )
        return stock

    stock = atomic(_op)

    current_app.logger.info(
        "Stock quantity updated product_id=%s branch_id=%s new_quantity=%s actor=%s",
        product_id, branch_id, quantity, actor_user_id,
    )
    return stock


def initialize_stock(
    product_id: int,
    branch_id: int,
    quantity: int = 0,
    minimum_stock: int = 0,
    actor_user_id: int | None = None,
) -> Stock:
    """
    Create the stock row for a product newly carried by a branch.

    Raises:
        DuplicateError: the branch already has a stock row for the product
    """
    quantity = coerce_non_negative_quantity(quantity)
    minimum_stock = coerce_non_negative_quantity(minimum_stock, "minimum_stock")

    def _op():
        require_product(product_id)
        require_branch(branch_id)
        existing = _locked_stock(product_id, branch_id, create=False)
        if existing is not None:
            raise DuplicateError("stock", f"product {product_id} @ branch {branch_id}")

        stock = Stock(
            product_id=product_id,
            branch_id=branch_id,
            quantity=quantity,
            minimum_stock=minimum_stock,
        )
        db.session.add(stock)
        db.session.flush()

        if quantity > 0:
            _record_movement(
                product_id=product_id,
                movement_type=MOVEMENT_IN,
                quantity=quantity,
                to_branch_id=branch_id,
                notes="Initial stock",
                actor_user_id=actor_user_id,
            )
        return stock

    return atomic(_op)


def set_minimum_stock(product_id: int, branch_id: int, minimum_stock: int) -> Stock:
    minimum_stock = coerce_non_negative_quantity(minimum_stock, "minimum_stock")

    def _op():
        require_product(product_id)
        require_branch(branch_id)
        stock = _locked_stock(product_id, branch_id)
        stock.minimum_stock = minimum_stock
        db.session.flush()
        return stock

    return atomic(_op)


# =============================================================================
# Reads
# =============================================================================

def get_stock(product_id: int, branch_id: int) -> Stock:
    stock = db.session.query(Stock).filter_by(product_id=product_id, branch_id=branch_id).first()
    if stock is None:
        raise NotFoundError("Stock", f"product {product_id} @ branch {branch_id}")
    return stock


def get_quantity(product_id: int, branch_id: int) -> int:
    """Quantity on hand; 0 when the pair has never had stock."""
    value = (
        db.session.query(Stock.quantity)
        .filter_by(product_id=product_id, branch_id=branch_id)
        .scalar()
    )
    return int(value or 0)


def get_by_branch(branch_id: int) -> list[Stock]:
    return (
        db.session.query(Stock)
        .filter_by(branch_id=branch_id)
        .order_by(Stock.quantity.asc(), Stock.id.asc())
        .all()
    )


def get_by_product(product_id: int) -> list[Stock]:
    return (
        db.session.query(Stock)
        .filter_by(product_id=product_id)
        .order_by(Stock.quantity.desc(), Stock.id.asc())
        .all()
    )


def get_low_stock_alerts(branch_id: int | None = None) -> list[Stock]:
    """Rows at or below their minimum, lowest quantity first."""
    q = db.session.query(Stock).filter(Stock.quantity <= Stock.minimum_stock)
    if branch_id is not None:
        q = q.filter(Stock.branch_id == branch_id)
    return q.order_by(Stock.quantity.asc(), Stock.id.asc()).all()


def list_movements(
    *,
    product_id: int | None = None,
    branch_id: int | None = None,
    movement_type: str | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    """Newest first. A branch matches on either side of the movement."""
    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if branch_id is not None:
        q = q.filter(or_(
            StockMovement.from_branch_id == branch_id,
            StockMovement.to_branch_id == branch_id,
        ))
    if movement_type is not None:
        q = q.filter(StockMovement.type == _validate_type(movement_type))
    return (
        q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def get_ledger_quantity(product_id: int, branch_id: int) -> int:
    """Net quantity implied by the movement log for one branch."""
    inbound = (
        db.session.query(func.coalesce(func.sum(StockMovement.quantity), 0))
        .filter(StockMovement.product_id == product_id, StockMovement.to_branch_id == branch_id)
        .scalar()
    )
    outbound = (
        db.session.query(func.coalesce(func.sum(StockMovement.quantity), 0))
        .filter(StockMovement.product_id == product_id, StockMovement.from_branch_id == branch_id)
        .scalar()
    )
    return int(inbound or 0) - int(outbound or 0)


def reconcile(product_id: int, branch_id: int) -> dict:
    """Compare the recorded quantity with the movement log."""
    recorded = get_quantity(product_id, branch_id)
    ledger = get_ledger_quantity(product_id, branch_id)
    return {
        "product_id": product_id,
        "branch_id": branch_id,
        "recorded_quantity": recorded,
        "ledger_quantity": ledger,
        "difference": recorded - ledger,
        "balanced": recorded == ledger,
    }
