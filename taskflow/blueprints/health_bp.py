"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        simple 200 for load balancers
    GET /api/v1/health/ready  same, kept for orchestrators
    GET /api/v1/health/live   database, cache and gateway status
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from taskflow.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok", "app": "taskflow"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Dependency status. Only the database decides the overall result."""
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        checks["database"] = {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    checks["cache"] = current_app.extensions["query_cache"].health_check()
    gateway = current_app.extensions["functions_gateway"]
    checks["functions"] = {"status": "configured" if gateway.configured else "not_configured"}
    checks["change_feed"] = {"subscribers": current_app.extensions["change_feed"].subscriber_count}

    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), 200 if overall else 503
