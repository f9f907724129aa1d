"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  : 200 while the process is up (load balancers)
    GET /api/v1/health/live   : database round-trip, live stream subscribers, row counts
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from sqlalchemy import func

from ompro.models import db
from ompro.models.maintenance import Group, Task

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness probe, no dependency checks."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Database, change feed and data volume; 503 when a dependency is down."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # ── Change feed (live task streams) ──────────────────────────────
    feed = current_app.extensions.get("change_feed")
    if feed is None:
        checks["change_feed"] = {"status": "missing"}
        overall = False
    else:
        checks["change_feed"] = {"status": "ok", **feed.stats()}

    # ── Data volume ──────────────────────────────────────────────────
    if checks["database"]["status"] == "ok":
        checks["data"] = {
            "groups": db.session.query(func.count(Group.id)).scalar(),
            "tasks": db.session.query(func.count(Task.id)).scalar(),
        }

    checks["app"] = {
        "name": "OmPro",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), status_code
