# Overview: Reference number generation for transactions, visits and stock movements.

"""
Reference numbers

Shape: {PREFIX}-{YYYYMMDD}-{SEQ}

- TRX / VST: SEQ is a 4-digit, zero-padded, per-day sequence taken from the
  ReferenceSequence counter row for (prefix, date). The counter is bumped
  inside the caller's unit of work, so numbers are unique under concurrent
  creation and a rolled-back insert returns its number.
- STK: stock movement references use a random 6-character upper-case hex
  suffix. A collision is re-rolled (bounded) instead of failing the unit.

The sequence keeps counting past 9999 (the field simply widens); the
4-digit shape only fixes the minimum width.
"""

from __future__ import annotations

import re
import secrets
from datetime import date, datetime

from sqlalchemy import update

from ..errors import StorageUnavailableError, ValidationError
from ..extensions import db
from ..models import ReferenceSequence, StockMovement
from salesdist.time_utils import today


PREFIX_TRANSACTION = "TRX"
PREFIX_VISIT = "VST"
PREFIX_STOCK_MOVEMENT = "STK"
PREFIX_MOVEMENT = "MOV"

SEQUENTIAL_PREFIXES = (PREFIX_TRANSACTION, PREFIX_VISIT, PREFIX_MOVEMENT)

SEQUENCE_PAD = 4
RANDOM_SUFFIX_LENGTH = 6
MAX_REROLLS = 8

_REFERENCE_RE = re.compile(r"^(?P<prefix>[A-Z]{3})-(?P<date>\d{8})-(?P<suffix>[0-9A-F]+)$")


def _format(prefix: str, on_date: date, suffix: str) -> str:
    return f"{prefix}-{on_date.strftime('%Y%m%d')}-{suffix}"


def next_sequence_value(prefix: str, on_date: date | None = None) -> int:
    """
    Atomically allocate the next per-day sequence value for `prefix`.

    Must run inside the caller's open unit of work; does not commit.
    """
    if not prefix:
        raise ValidationError("prefix is required")
    on_date = on_date or today()

    stmt = (
        update(ReferenceSequence)
        .where(
            ReferenceSequence.prefix == prefix,
            ReferenceSequence.sequence_date == on_date,
        )
        .values(next_number=ReferenceSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        current = (
            db.session.query(ReferenceSequence.next_number)
            .filter_by(prefix=prefix, sequence_date=on_date)
            .scalar()
        )
        return current - 1

    # First number of the day. A concurrent first insert fails the unique
    # constraint with IntegrityError and the whole unit is retried by
    # run_with_retry, which then takes the UPDATE path above.
    seq = ReferenceSequence(prefix=prefix, sequence_date=on_date, next_number=2)
    db.session.add(seq)
    db.session.flush()
    return 1


def next_reference_number(prefix: str, on_date: date | None = None) -> str:
    """Next sequential reference, e.g. TRX-20260115-0001."""
    if prefix not in SEQUENTIAL_PREFIXES:
        raise ValidationError(f"Unsupported sequential prefix: {prefix}")
    on_date = on_date or today()
    value = next_sequence_value(prefix, on_date)
    return _format(prefix, on_date, f"{value:0{SEQUENCE_PAD}d}")


def movement_reference_number(on_date: date | None = None) -> str:
    """Random-suffix reference for a stock movement, e.g. STK-20260115-3FA9C0."""
    on_date = on_date or today()
    for _ in range(MAX_REROLLS):
        candidate = _format(
            PREFIX_STOCK_MOVEMENT,
            on_date,
            secrets.token_hex(RANDOM_SUFFIX_LENGTH // 2).upper(),
        )
        taken = (
            db.session.query(StockMovement.id)
            .filter_by(reference_number=candidate)
            .first()
        )
        if taken is None:
            return candidate
    raise StorageUnavailableError("Could not allocate a unique stock movement reference")


def parse_reference_number(value: str) -> tuple[str, date, str]:
    """Split a reference into (prefix, date, suffix)."""
    match = _REFERENCE_RE.match((value or "").strip())
    if not match:
        raise ValidationError(f"Malformed reference number: {value!r}")
    try:
        ref_date = datetime.strptime(match.group("date"), "%Y%m%d").date()
    except ValueError:
        raise ValidationError(f"Malformed reference date in {value!r}")
    return match.group("prefix"), ref_date, match.group("suffix")
