# Overview: Sales transaction engine; creation with stock reduction, approval, cancellation and summaries.

"""
Sales Transaction Invariants (authoritative)

Lifecycle:
- pending  --approve--> approved   (terminal, irreversible)
- pending  --cancel-->  cancelled  (terminal, stock restored)
- approved and cancelled have no outgoing transitions.

Stock coupling:
- create() validates every line against locked stock before writing, then
  persists the transaction, its items and one `sale` movement per item in a
  single unit. Any failure rolls all of it back, transaction number included.
- cancel() restores each item with a `return` movement in the same unit as
  the status change.
- Stock is only touched through stock_service.

Money:
- Decimal throughout, 2 fraction digits, ROUND_HALF_UP.
- item.subtotal = quantity * price - item.discount
- subtotal = sum(item.subtotal)
- total = subtotal - discount + tax
- tax from tax_rate is round_half_up(subtotal * tax_rate) to whole units.

Concurrency:
- Status transitions lock the transaction row and rely on version_id; of two
  racing approve/cancel calls one wins, the other re-reads a terminal status
  and fails with BusinessError.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import BusinessError, DuplicateError, InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import SalesTransaction, SalesTransactionItem
from ..models.sales import (
    TRANSACTION_STATUS_APPROVED,
    TRANSACTION_STATUS_CANCELLED,
    TRANSACTION_STATUS_PENDING,
    TRANSACTION_STATUSES,
)
from ..models.stock import MOVEMENT_RETURN, MOVEMENT_SALE
from ..validation import (
    PAYMENT_METHODS,
    TransactionRequest,
    quantize_money,
    round_half_up,
)
from salesdist.time_utils import parse_iso_date, today, utcnow
from .concurrency import atomic, lock_for_update
from .identifier_service import PREFIX_TRANSACTION, next_reference_number
from .pagination import paginate
from .stock_service import (
    add_stock_locked,
    locked_quantities,
    reduce_stock_locked,
    require_branch,
    require_product,
)


ZERO = Decimal("0.00")


def compute_totals(request: TransactionRequest) -> dict:
    """
    Price a request without touching the database.

    Returns:
        {"items": [(item_request, item_subtotal), ...], "subtotal", "discount", "tax", "total"}
    """
    if request.tax is not None and request.tax_rate is not None:
        raise ValidationError("Provide either tax or tax_rate, not both")

    priced = []
    subtotal = ZERO
    for index, item in enumerate(request.items):
        item_subtotal = quantize_money(item.price * item.quantity - item.discount)
        if item_subtotal < 0:
            raise ValidationError(
                "Item discount exceeds item amount",
                details={"line": index + 1, "product_id": item.product_id},
            )
        priced.append((item, item_subtotal))
        subtotal += item_subtotal

    subtotal = quantize_money(subtotal)
    discount = quantize_money(request.discount or ZERO)

    if request.tax is not None:
        tax = quantize_money(request.tax)
    elif request.tax_rate is not None:
        tax = quantize_money(round_half_up(subtotal * request.tax_rate))
    else:
        tax = ZERO

    total = quantize_money(subtotal - discount + tax)
    if total < 0:
        raise ValidationError("Transaction discount exceeds subtotal")

    return {
        "items": priced,
        "subtotal": subtotal,
        "discount": discount,
        "tax": tax,
        "total": total,
    }


def _validate_availability(branch_id: int, items) -> None:
    """
    Check every line against locked stock, in line order.

    Each line is resolved and checked before the next one, so the first
    failing line decides the error whether it is an unknown product or a
    shortfall.

    Repeated products draw on the same quantity, so the second line of a
    product sees what the first one left.
    """
    available = locked_quantities(branch_id, {item.product_id for item in items})

    claimed: dict[int, int] = {}
    for item in items:
        product = require_product(item.product_id)
        remaining = available[item.product_id] - claimed.get(item.product_id, 0)
        if item.quantity > remaining:
            raise InsufficientStockError(product.id, product.name, item.quantity, remaining)
        claimed[item.product_id] = claimed.get(item.product_id, 0) + item.quantity


def _query(include_deleted: bool = False):
    q = db.session.query(SalesTransaction)
    if not include_deleted:
        q = q.filter(SalesTransaction.deleted_at.is_(None))
    return q


def _get_locked(transaction_id: int, include_deleted: bool = False) -> SalesTransaction:
    txn = lock_for_update(_query(include_deleted).filter(SalesTransaction.id == transaction_id)).first()
    if txn is None:
        raise NotFoundError("SalesTransaction", transaction_id)
    return txn


def create(request, actor_user_id: int | None = None) -> SalesTransaction:
    """
    Create a pending transaction and reduce stock for each item.

    Args:
        request: TransactionRequest, or a dict accepted by TransactionRequest.from_dict
        actor_user_id: recorded as created_by and on the stock movements

    Raises:
        ValidationError: no items, unknown payment method, bad amounts
        NotFoundError: unknown branch or product
        InsufficientStockError: first under-stocked line in item order
        DuplicateError: caller-supplied transaction_number already used
    """
    if isinstance(request, dict):
        request = TransactionRequest.from_dict(request)

    if not request.items:
        raise ValidationError("Transaction must have at least one item")
    request = request.checked()
    if request.payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {request.payment_method}",
            details={"allowed": list(PAYMENT_METHODS)},
        )

    totals = compute_totals(request)

    def _op():
        require_branch(request.branch_id)

        if request.transaction_number:
            taken = (
                db.session.query(SalesTransaction.id)
                .filter_by(transaction_number=request.transaction_number)
                .first()
            )
            if taken is not None:
                raise DuplicateError("transaction_number", request.transaction_number)

        _validate_availability(request.branch_id, request.items)

        number = request.transaction_number or next_reference_number(PREFIX_TRANSACTION)

        txn = SalesTransaction(
            transaction_number=number,
            transaction_date=today(),
            branch_id=request.branch_id,
            sales_id=request.sales_id,
            area_id=request.area_id,
            customer_name=request.customer_name,
            customer_phone=request.customer_phone,
            customer_address=request.customer_address,
            subtotal=totals["subtotal"],
            discount=totals["discount"],
            tax=totals["tax"],
            total=totals["total"],
            payment_method=request.payment_method,
            status=TRANSACTION_STATUS_PENDING,
            notes=request.notes,
            latitude=request.latitude,
            longitude=request.longitude,
            created_by=actor_user_id,
        )
        db.session.add(txn)
        db.session.flush()

        for item, item_subtotal in totals["items"]:
            txn.items.append(SalesTransactionItem(
                product_id=item.product_id,
                quantity=item.quantity,
                price=item.price,
                discount=item.discount,
                subtotal=item_subtotal,
            ))
            db.session.flush()

            reduce_stock_locked(
                product_id=item.product_id,
                branch_id=request.branch_id,
                quantity=item.quantity,
                movement_type=MOVEMENT_SALE,
                notes=f"Sales Transaction: {number}",
                actor_user_id=actor_user_id,
            )

        return txn

    txn = atomic(_op)

    current_app.logger.info(
        "Sales transaction created number=%s branch_id=%s sales_id=%s total=%s items=%d actor=%s",
        txn.transaction_number, txn.branch_id, txn.sales_id, txn.total, len(txn.items), actor_user_id,
    )
    return txn


def approve(transaction_id: int, approver_user_id: int | None = None) -> SalesTransaction:
    """pending -> approved. Raises BusinessError from any other status."""
    def _op():
        txn = _get_locked(transaction_id)
        if txn.status != TRANSACTION_STATUS_PENDING:
            raise BusinessError(
                f"Only pending transactions can be approved (current status: {txn.status})",
                details={"transaction_id": txn.id, "status": txn.status},
            )
        txn.status = TRANSACTION_STATUS_APPROVED
        txn.approved_at = utcnow()
        txn.approved_by = approver_user_id
        db.session.flush()
        return txn

    txn = atomic(_op)

    current_app.logger.info(
        "Sales transaction approved number=%s approved_by=%s",
        txn.transaction_number, approver_user_id,
    )
    return txn


def cancel(transaction_id: int, reason: str | None = None, actor_user_id: int | None = None) -> SalesTransaction:
    """
    pending -> cancelled, restoring every item's quantity.

    Raises:
        BusinessError: already cancelled, or approved (approved sales are final)
    """
    reason = (reason or "").strip() or None

    def _op():
        txn = _get_locked(transaction_id)
        if txn.status == TRANSACTION_STATUS_CANCELLED:
            raise BusinessError(
                "Transaction is already cancelled",
                details={"transaction_id": txn.id, "status": txn.status},
            )
        if txn.status == TRANSACTION_STATUS_APPROVED:
            raise BusinessError(
                "Approved transactions cannot be cancelled",
                details={"transaction_id": txn.id, "status": txn.status},
            )

        for item in txn.items:
            add_stock_locked(
                product_id=item.product_id,
                branch_id=txn.branch_id,
                quantity=item.quantity,
                movement_type=MOVEMENT_RETURN,
                notes=f"Cancelled Transaction: {txn.transaction_number}",
                actor_user_id=actor_user_id,
            )

        txn.status = TRANSACTION_STATUS_CANCELLED
        txn.cancelled_at = utcnow()
        txn.cancelled_by = actor_user_id
        if reason:
            txn.notes = "\n".join(filter(None, [txn.notes, f"Cancellation Reason: {reason}"]))
        db.session.flush()
        return txn

    txn = atomic(_op)

    current_app.logger.info(
        "Sales transaction cancelled number=%s items_restored=%d actor=%s",
        txn.transaction_number, len(txn.items), actor_user_id,
    )
    return txn


def soft_delete(transaction_id: int, actor_user_id: int | None = None) -> SalesTransaction:
    """Hide a cancelled transaction from default reads. Other statuses still own stock."""
    def _op():
        txn = _get_locked(transaction_id, include_deleted=True)
        if txn.deleted_at is not None:
            raise BusinessError("Transaction is already deleted", details={"transaction_id": txn.id})
        if txn.status != TRANSACTION_STATUS_CANCELLED:
            raise BusinessError(
                "Only cancelled transactions can be deleted",
                details={"transaction_id": txn.id, "status": txn.status},
            )
        txn.deleted_at = utcnow()
        db.session.flush()
        return txn

    txn = atomic(_op)

    current_app.logger.info(
        "Sales transaction deleted number=%s actor=%s", txn.transaction_number, actor_user_id,
    )
    return txn


# =============================================================================
# Reads
# =============================================================================

def get_by_id(transaction_id: int, include_deleted: bool = False) -> SalesTransaction:
    txn = _query(include_deleted).filter(SalesTransaction.id == transaction_id).first()
    if txn is None:
        raise NotFoundError("SalesTransaction", transaction_id)
    return txn


def _apply_date_range(q, start_date, end_date):
    start_date = parse_iso_date(start_date)
    end_date = parse_iso_date(end_date)
    if start_date is not None:
        q = q.filter(SalesTransaction.transaction_date >= start_date)
    if end_date is not None:
        q = q.filter(SalesTransaction.transaction_date <= end_date)
    return q


def list_transactions(
    *,
    branch_id: int | None = None,
    sales_id: int | None = None,
    status: str | None = None,
    start_date=None,
    end_date=None,
    include_deleted: bool = False,
    page: int = 1,
    per_page: int | None = None,
) -> dict:
    """Newest transaction_date first, paginated."""
    q = _query(include_deleted)
    if branch_id is not None:
        q = q.filter(SalesTransaction.branch_id == branch_id)
    if sales_id is not None:
        q = q.filter(SalesTransaction.sales_id == sales_id)
    if status is not None:
        if status not in TRANSACTION_STATUSES:
            raise ValidationError(f"Invalid status: {status}", details={"allowed": list(TRANSACTION_STATUSES)})
        q = q.filter(SalesTransaction.status == status)
    q = _apply_date_range(q, start_date, end_date)
    q = q.order_by(SalesTransaction.transaction_date.desc(), SalesTransaction.id.desc())
    return paginate(q, page, per_page)


def get_by_sales(sales_id: int, start_date=None, end_date=None, include_deleted: bool = False) -> list[SalesTransaction]:
    q = _query(include_deleted).filter(SalesTransaction.sales_id == sales_id)
    q = _apply_date_range(q, start_date, end_date)
    return q.order_by(SalesTransaction.transaction_date.desc(), SalesTransaction.id.desc()).all()


def get_sales_summary(sales_id: int, start_date=None, end_date=None) -> dict:
    """
    Totals for one salesperson.

    total_transactions counts every status in range while total_sales only
    sums approved transactions; average_transaction divides the latter by
    the former.
    """
    base = _apply_date_range(
        _query().filter(SalesTransaction.sales_id == sales_id),
        start_date,
        end_date,
    )

    total_transactions = base.count()
    total_sales = (
        base.filter(SalesTransaction.status == TRANSACTION_STATUS_APPROVED)
        .with_entities(func.coalesce(func.sum(SalesTransaction.total), 0))
        .scalar()
    )
    total_sales = quantize_money(Decimal(str(total_sales or 0)))

    if total_transactions:
        average = quantize_money(total_sales / total_transactions)
    else:
        average = ZERO

    return {
        "sales_id": sales_id,
        "total_transactions": total_transactions,
        "total_sales": total_sales,
        "average_transaction": average,
    }
