# backend/app/routes/system.py
"""
System health endpoint.

Reports database connectivity and the change feed's live subscriber count
for deployment debugging.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db, change_feed
from ..change_feed import ADMIN_CHANNEL
from ..models import User, Order, OrderEvent
from app.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        order_count = db.session.query(Order).count()
        event_count = db.session.query(OrderEvent).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "orders": order_count,
                "order_events": event_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_change_feed_health() -> dict:
    return {
        "status": "healthy",
        "details": {
            "admin_subscribers": change_feed.subscriber_count(ADMIN_CHANNEL),
        }
    }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: All systems healthy
    - 503: Database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    feed_health = check_change_feed_health()

    if database_health["status"] == "unhealthy":
        overall_status = "unhealthy"
        http_status = 503
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "change_feed": feed_health,
        }
    }

    return response, http_status
