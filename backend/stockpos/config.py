# backend/stockpos/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Calendar days in reports are local to the store
    STORE_TIMEZONE = os.environ.get("STORE_TIMEZONE", "UTC")

    # Checkout retry policy for lock timeouts and write conflicts
    CHECKOUT_RETRY_ATTEMPTS = _env_int("CHECKOUT_RETRY_ATTEMPTS", 3)
    CHECKOUT_RETRY_BACKOFF = _env_float("CHECKOUT_RETRY_BACKOFF", 0.1)

    DEFAULT_MIN_STOCK = _env_int("DEFAULT_MIN_STOCK", 5)

    REPORT_DEFAULT_DAYS = _env_int("REPORT_DEFAULT_DAYS", 30)
    REPORT_DEFAULT_LIMIT = _env_int("REPORT_DEFAULT_LIMIT", 10)

    # Callable resolving the caller's identity from the request (import path)
    IDENTITY_PROVIDER = os.environ.get(
        "IDENTITY_PROVIDER",
        "stockpos.identity:header_identity_provider",
    )
