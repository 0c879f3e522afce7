# backend/app/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storefront.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storefront.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Stock reservations (hours until the expiry sweep may release them)
    RESERVATION_TTL_HOURS = _env_int("RESERVATION_TTL_HOURS", 24)

    # Bounded retries for concurrent ledger updates before LedgerConflict
    LEDGER_RETRY_ATTEMPTS = _env_int("LEDGER_RETRY_ATTEMPTS", 3)

    # Order transition notifications (unset = outbox + in-process subscribers only)
    ORDER_WEBHOOK_URL = os.environ.get("ORDER_WEBHOOK_URL")
    ORDER_WEBHOOK_TIMEOUT = float(os.environ.get("ORDER_WEBHOOK_TIMEOUT", "5"))
    ORDER_WEBHOOK_MAX_ATTEMPTS = _env_int("ORDER_WEBHOOK_MAX_ATTEMPTS", 3)

    # Payment verification collaborator
    PAYMENT_GATEWAY_URL = os.environ.get("PAYMENT_GATEWAY_URL")
    PAYMENT_GATEWAY_TOKEN = os.environ.get("PAYMENT_GATEWAY_TOKEN")
