# backend/jobbudget/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/jobbudget.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///jobbudget.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upper bound for a single budget, in the budget's own currency
    BUDGET_MAX_AMOUNT = os.environ.get("BUDGET_MAX_AMOUNT", "1000000")

    # Retry policy for transactional operations (deadlocks, stale rows)
    TRANSACTION_RETRY_ATTEMPTS = int(os.environ.get("TRANSACTION_RETRY_ATTEMPTS", "3"))
    TRANSACTION_RETRY_BACKOFF = float(os.environ.get("TRANSACTION_RETRY_BACKOFF", "0.1"))

    # Comma separated: "email", "push"
    NOTIFICATION_CHANNELS = os.environ.get("NOTIFICATION_CHANNELS", "email,push")

    # Email addresses for notification recipients: "101=client@example.com,202=dev@example.com"
    NOTIFICATION_RECIPIENTS = os.environ.get("NOTIFICATION_RECIPIENTS", "")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
