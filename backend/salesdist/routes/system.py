# Overview: System health and version endpoints.

"""
System health and version endpoints.

The health check exercises the database and the stock ledger tables so a
deployment with a locked or missing database reports 503.
"""

import sys
import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Branch, Product, Stock, SalesTransaction, Visit
from ..models.sales import TRANSACTION_STATUS_PENDING
from salesdist.time_utils import to_utc_z, utcnow


system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Basic connectivity plus reference data counts."""
    start_time = time.time()
    try:
        branch_count = db.session.query(Branch).count()
        product_count = db.session.query(Product).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "branches": branch_count,
                "products": product_count,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_ledger_health() -> dict:
    """
    Stock and workflow tables are readable.

    Low stock rows and pending transactions are reported, not treated as
    failures.
    """
    start_time = time.time()
    try:
        low_stock = db.session.query(Stock).filter(Stock.quantity <= Stock.minimum_stock).count()
        pending_transactions = (
            db.session.query(SalesTransaction)
            .filter(
                SalesTransaction.status == TRANSACTION_STATUS_PENDING,
                SalesTransaction.deleted_at.is_(None),
            )
            .count()
        )
        visits = db.session.query(Visit).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "low_stock_rows": low_stock,
                "pending_transactions": pending_transactions,
                "visits": visits,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Ledger health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Ledger tables unavailable",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: all checks healthy
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "ledger": check_ledger_health(),
    }
    unhealthy = any(check["status"] == "unhealthy" for check in checks.values())

    response = {
        "status": "unhealthy" if unhealthy else "healthy",
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }
    return response, 503 if unhealthy else 200


@system_bp.get("/version")
def version():
    """Non-sensitive deployment information."""
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
