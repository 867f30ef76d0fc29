# Overview: Commission payouts derived from approved sales transactions.

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..errors import BusinessError, DuplicateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Commission, SalesTransaction
from ..models.sales import (
    COMMISSION_STATUS_APPROVED,
    COMMISSION_STATUS_PAID,
    COMMISSION_STATUS_PENDING,
    TRANSACTION_STATUS_APPROVED,
)
from ..validation import coerce_money, quantize_money, round_half_up
from salesdist.time_utils import utcnow
from .concurrency import atomic, lock_for_update


COMMISSION_STATUSES = (COMMISSION_STATUS_PENDING, COMMISSION_STATUS_APPROVED, COMMISSION_STATUS_PAID)


def calculate_commission(amount, percentage) -> Decimal:
    """amount * percentage / 100, rounded half up to whole currency units."""
    amount = coerce_money(amount, "amount")
    percentage = coerce_money(percentage, "percentage")
    if percentage > 100:
        raise ValidationError("percentage must be between 0 and 100")
    return quantize_money(round_half_up(amount * percentage / 100))


def record_for_transaction(transaction_id: int, percentage=None, notes: str | None = None) -> Commission:
    """
    Create the commission for an approved transaction.

    Raises:
        NotFoundError: unknown or deleted transaction
        BusinessError: transaction is not approved
        DuplicateError: the transaction already has a commission
    """
    if percentage is None:
        percentage = current_app.config.get("COMMISSION_PERCENTAGE", Decimal("2.00"))
    percentage = coerce_money(percentage, "percentage")

    def _op():
        txn = (
            db.session.query(SalesTransaction)
            .filter(SalesTransaction.id == transaction_id, SalesTransaction.deleted_at.is_(None))
            .first()
        )
        if txn is None:
            raise NotFoundError("SalesTransaction", transaction_id)
        if txn.status != TRANSACTION_STATUS_APPROVED:
            raise BusinessError(
                "Commission can only be recorded for approved transactions",
                details={"transaction_id": txn.id, "status": txn.status},
            )

        existing = db.session.query(Commission.id).filter_by(sales_transaction_id=txn.id).first()
        if existing is not None:
            raise DuplicateError("commission for transaction", txn.transaction_number)

        commission = Commission(
            sales_transaction_id=txn.id,
            sales_id=txn.sales_id,
            transaction_amount=txn.total,
            commission_percentage=percentage,
            commission_amount=calculate_commission(txn.total, percentage),
            status=COMMISSION_STATUS_PENDING,
            notes=notes,
        )
        db.session.add(commission)
        db.session.flush()
        return commission

    commission = atomic(_op)

    current_app.logger.info(
        "Commission recorded transaction_id=%s sales_id=%s amount=%s",
        transaction_id, commission.sales_id, commission.commission_amount,
    )
    return commission


def approve_commission(commission_id: int) -> Commission:
    def _op():
        commission = _get_locked(commission_id)
        if commission.status != COMMISSION_STATUS_PENDING:
            raise BusinessError(
                f"Only pending commissions can be approved (current status: {commission.status})",
                details={"commission_id": commission.id, "status": commission.status},
            )
        commission.status = COMMISSION_STATUS_APPROVED
        db.session.flush()
        return commission

    return atomic(_op)


def mark_paid(commission_id: int) -> Commission:
    """pending/approved -> paid."""
    def _op():
        commission = _get_locked(commission_id)
        if commission.status == COMMISSION_STATUS_PAID:
            raise BusinessError(
                "Commission is already paid",
                details={"commission_id": commission.id, "status": commission.status},
            )
        commission.status = COMMISSION_STATUS_PAID
        commission.paid_at = utcnow()
        db.session.flush()
        return commission

    commission = atomic(_op)

    current_app.logger.info(
        "Commission paid id=%s sales_id=%s amount=%s",
        commission.id, commission.sales_id, commission.commission_amount,
    )
    return commission


def _get_locked(commission_id: int) -> Commission:
    commission = lock_for_update(
        db.session.query(Commission).filter(Commission.id == commission_id)
    ).first()
    if commission is None:
        raise NotFoundError("Commission", commission_id)
    return commission


def get_by_id(commission_id: int) -> Commission:
    commission = db.session.get(Commission, commission_id)
    if commission is None:
        raise NotFoundError("Commission", commission_id)
    return commission


def list_commissions(sales_id: int | None = None, status: str | None = None) -> list[Commission]:
    q = db.session.query(Commission)
    if sales_id is not None:
        q = q.filter(Commission.sales_id == sales_id)
    if status is not None:
        if status not in COMMISSION_STATUSES:
            raise ValidationError(f"Invalid status: {status}", details={"allowed": list(COMMISSION_STATUSES)})
        q = q.filter(Commission.status == status)
    return q.order_by(Commission.created_at.desc(), Commission.id.desc()).all()
