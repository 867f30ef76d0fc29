# Overview: Field visit records and their approval workflow.

"""
Visit lifecycle:
- pending --approve--> approved (terminal)
- pending --reject-->  rejected (terminal)

Transitions off a non-pending visit raise UnauthorizedActionError, a
BusinessError kind. Visits never touch stock.
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..errors import NotFoundError, UnauthorizedActionError, ValidationError
from ..extensions import db
from ..models import Visit
from ..models.visits import VISIT_STATUS_APPROVED, VISIT_STATUS_PENDING, VISIT_STATUS_REJECTED
from ..validation import VISIT_TYPES, VisitRequest
from salesdist.time_utils import parse_iso_date, today, utcnow, week_bounds
from .concurrency import atomic, lock_for_update
from .identifier_service import PREFIX_VISIT, next_reference_number
from .pagination import paginate
from .stock_service import require_branch


VISIT_STATUSES = (VISIT_STATUS_PENDING, VISIT_STATUS_APPROVED, VISIT_STATUS_REJECTED)


def _query(include_deleted: bool = False):
    q = db.session.query(Visit)
    if not include_deleted:
        q = q.filter(Visit.deleted_at.is_(None))
    return q


def _get_locked(visit_id: int, include_deleted: bool = False) -> Visit:
    visit = lock_for_update(_query(include_deleted).filter(Visit.id == visit_id)).first()
    if visit is None:
        raise NotFoundError("Visit", visit_id)
    return visit


def _require_pending(visit: Visit, action: str) -> None:
    if visit.status != VISIT_STATUS_PENDING:
        raise UnauthorizedActionError(f"{action} a visit that is already {visit.status}")


def create(request, actor_user_id: int | None = None) -> Visit:
    """Record a pending visit dated today with the next VST number."""
    if isinstance(request, dict):
        request = VisitRequest.from_dict(request)

    if request.visit_type not in VISIT_TYPES:
        raise ValidationError(
            f"Invalid visit type: {request.visit_type}",
            details={"allowed": list(VISIT_TYPES)},
        )

    def _op():
        require_branch(request.branch_id)
        visit = Visit(
            visit_number=next_reference_number(PREFIX_VISIT),
            visit_date=today(),
            branch_id=request.branch_id,
            sales_id=request.sales_id,
            area_id=request.area_id,
            customer_name=request.customer_name,
            customer_phone=request.customer_phone,
            customer_address=request.customer_address,
            visit_type=request.visit_type,
            status=VISIT_STATUS_PENDING,
            purpose=request.purpose,
            result=request.result,
            notes=request.notes,
            latitude=request.latitude,
            longitude=request.longitude,
            photo=request.photo,
            created_by=actor_user_id,
        )
        db.session.add(visit)
        db.session.flush()
        return visit

    visit = atomic(_op)

    current_app.logger.info(
        "Visit created number=%s branch_id=%s sales_id=%s actor=%s",
        visit.visit_number, visit.branch_id, visit.sales_id, actor_user_id,
    )
    return visit


def approve(visit_id: int, approver_user_id: int | None = None) -> Visit:
    def _op():
        visit = _get_locked(visit_id)
        _require_pending(visit, "approve")
        visit.status = VISIT_STATUS_APPROVED
        visit.approved_at = utcnow()
        visit.approved_by = approver_user_id
        db.session.flush()
        return visit

    visit = atomic(_op)

    current_app.logger.info("Visit approved number=%s approved_by=%s", visit.visit_number, approver_user_id)
    return visit


def reject(visit_id: int, rejecter_user_id: int | None = None, reason: str | None = None) -> Visit:
    """
    pending -> rejected.

    The reason is stored in rejection_reason and also appended to notes as
    "Rejected: {reason}" (pipe-joined onto existing notes) for readers of the
    free-text field.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required")

    def _op():
        visit = _get_locked(visit_id)
        _require_pending(visit, "reject")
        visit.status = VISIT_STATUS_REJECTED
        visit.rejected_at = utcnow()
        visit.rejected_by = rejecter_user_id
        visit.rejection_reason = reason
        visit.notes = " | ".join(filter(None, [visit.notes, f"Rejected: {reason}"]))
        db.session.flush()
        return visit

    visit = atomic(_op)

    current_app.logger.info("Visit rejected number=%s rejected_by=%s", visit.visit_number, rejecter_user_id)
    return visit


def soft_delete(visit_id: int, actor_user_id: int | None = None) -> Visit:
    def _op():
        visit = _get_locked(visit_id, include_deleted=True)
        if visit.deleted_at is not None:
            raise UnauthorizedActionError("delete a visit that is already deleted")
        visit.deleted_at = utcnow()
        db.session.flush()
        return visit

    visit = atomic(_op)

    current_app.logger.info("Visit deleted number=%s actor=%s", visit.visit_number, actor_user_id)
    return visit


# =============================================================================
# Reads
# =============================================================================

def get_by_id(visit_id: int, include_deleted: bool = False) -> Visit:
    visit = _query(include_deleted).filter(Visit.id == visit_id).first()
    if visit is None:
        raise NotFoundError("Visit", visit_id)
    return visit


def _filtered(branch_id=None, sales_id=None, include_deleted: bool = False):
    q = _query(include_deleted)
    if branch_id is not None:
        q = q.filter(Visit.branch_id == branch_id)
    if sales_id is not None:
        q = q.filter(Visit.sales_id == sales_id)
    return q


def list_visits(
    *,
    branch_id: int | None = None,
    sales_id: int | None = None,
    status: str | None = None,
    visit_type: str | None = None,
    start_date=None,
    end_date=None,
    include_deleted: bool = False,
    page: int = 1,
    per_page: int | None = None,
) -> dict:
    q = _filtered(branch_id, sales_id, include_deleted)
    if status is not None:
        if status not in VISIT_STATUSES:
            raise ValidationError(f"Invalid status: {status}", details={"allowed": list(VISIT_STATUSES)})
        q = q.filter(Visit.status == status)
    if visit_type is not None:
        q = q.filter(Visit.visit_type == visit_type)

    start_date = parse_iso_date(start_date)
    end_date = parse_iso_date(end_date)
    if start_date is not None:
        q = q.filter(Visit.visit_date >= start_date)
    if end_date is not None:
        q = q.filter(Visit.visit_date <= end_date)

    q = q.order_by(Visit.visit_date.desc(), Visit.id.desc())
    return paginate(q, page, per_page)


def get_with_locations(branch_id: int | None = None, sales_id: int | None = None, on_date=None) -> list[Visit]:
    """Visits carrying both coordinates, for map views."""
    q = _filtered(branch_id, sales_id).filter(
        Visit.latitude.isnot(None),
        Visit.longitude.isnot(None),
    )
    on_date = parse_iso_date(on_date)
    if on_date is not None:
        q = q.filter(Visit.visit_date == on_date)
    return q.order_by(Visit.visit_date.desc(), Visit.id.desc()).all()


def get_statistics(branch_id: int | None = None, sales_id: int | None = None) -> dict:
    """
    Independent counts over the same branch/sales filter.

    this_week is the Monday..Sunday window containing today.
    """
    current = today()
    week_start, week_end = week_bounds(current)
    month_start = current.replace(day=1)
    next_month_start = (month_start + timedelta(days=32)).replace(day=1)

    def _count(*criteria) -> int:
        return _filtered(branch_id, sales_id).filter(*criteria).count()

    return {
        "total": _count(),
        "pending": _count(Visit.status == VISIT_STATUS_PENDING),
        "approved": _count(Visit.status == VISIT_STATUS_APPROVED),
        "rejected": _count(Visit.status == VISIT_STATUS_REJECTED),
        "today": _count(Visit.visit_date == current),
        "this_week": _count(Visit.visit_date >= week_start, Visit.visit_date <= week_end),
        "this_month": _count(Visit.visit_date >= month_start, Visit.visit_date < next_month_start),
    }
