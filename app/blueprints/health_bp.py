"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — database + signal table status
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from app.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")

# Tables the signal sources read from
SIGNAL_TABLES = (
    "projects", "approval_steps", "raid_items", "milestones",
    "change_requests", "portfolio_snapshots",
)


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Signal tables ────────────────────────────────────────────────
    if overall:
        tables = {}
        for tbl in SIGNAL_TABLES:
            try:
                count = db.session.execute(db.text(f"SELECT COUNT(*) FROM {tbl}")).scalar()
                tables[tbl] = {"status": "ok", "count": count}
            except SQLAlchemyError as exc:
                db.session.rollback()
                tables[tbl] = {"status": "error", "detail": str(exc)}
                overall = False
        checks["signal_tables"] = tables

    # ── Remote signal sources (configured, not probed) ───────────────
    remote = current_app.config.get("SIGNAL_REMOTE_SOURCES") or {}
    checks["remote_sources"] = {"status": "ok", "configured": sorted(remote)}

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": "Governance Signal Platform",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
