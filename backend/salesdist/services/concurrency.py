# Overview: Unit-of-work helpers: row locks, write transactions and bounded retry.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StorageUnavailableError
from ..extensions import db


# Errors that mean "another writer got there first": roll back, re-read, retry.
RETRYABLE_ERRORS = (OperationalError, StaleDataError, IntegrityError)


def is_retryable(exc: Exception) -> bool:
    """
    IntegrityError only counts when a unique constraint lost a race.

    CHECK, NOT NULL and foreign key failures repeat identically on every
    attempt, so they propagate instead of turning into StorageUnavailableError.
    """
    if isinstance(exc, IntegrityError):
        message = str(exc.orig).lower()
        return "unique" in message or "duplicate" in message
    return True


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() takes the
    database write lock up front there instead.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Start the unit of work as a writer.

    On SQLite the default deferred BEGIN lets two connections read the same
    quantity and then race to write it. BEGIN IMMEDIATE takes the write lock
    before the first read, so check-then-act runs serialized. Other backends
    rely on lock_for_update().
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if raw is not None and not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and IntegrityError (lost get-or-create
    race on a unique constraint). Other integrity failures and business
    errors are never retried. When the attempts run out the
    failure surfaces as StorageUnavailableError.
    """
    config = current_app.config
    if attempts is None:
        attempts = config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = config.get("DB_RETRY_BACKOFF", 0.05)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if not is_retryable(exc):
                raise
            last_exc = exc
            if attempt >= attempts - 1:
                break
            current_app.logger.warning(
                "Retrying unit of work after %s (attempt %d/%d)",
                type(exc).__name__, attempt + 1, attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))

    raise StorageUnavailableError(
        f"Database operation failed after {attempts} attempts: {last_exc}"
    ) from last_exc


def atomic(func, **retry_options):
    """
    Run func as one committed unit: begin_write, func, commit.

    Any exception rolls the whole unit back before propagating, so partial
    writes are never observable.
    """
    def _op():
        begin_write()
        try:
            result = func()
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return result

    return run_with_retry(_op, **retry_options)
