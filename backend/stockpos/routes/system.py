# backend/stockpos/routes/system.py
"""
System health and integrity endpoints.

/api/health is unauthenticated so load balancers can probe it.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..decorators import require_auth, require_role
from ..identity import ROLE_ADMIN
from ..services import integrity_service
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity with a trivial round trip.

    Returns dict with status and latency.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    return {
        "status": "ok" if healthy else "degraded",
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }, (200 if healthy else 503)


@system_bp.get("/api/system/integrity")
@require_auth
@require_role(ROLE_ADMIN)
def integrity():
    """Read-only invariant scan over stock and the sale ledger."""
    return integrity_service.scan(), 200
