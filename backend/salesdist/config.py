# backend/salesdist/config.py
from __future__ import annotations
import os
from decimal import Decimal


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/salesdist.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///salesdist.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seconds a SQLite writer waits on a locked database before OperationalError
    SQLITE_BUSY_TIMEOUT = float(os.environ.get("SQLITE_BUSY_TIMEOUT", "5"))

    # Bounded retry for lock/serialization conflicts (see services/concurrency.py)
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.05"))

    COMMISSION_PERCENTAGE = Decimal(os.environ.get("COMMISSION_PERCENTAGE", "2.00"))
    DEFAULT_PAGE_SIZE = int(os.environ.get("DEFAULT_PAGE_SIZE", "15"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
