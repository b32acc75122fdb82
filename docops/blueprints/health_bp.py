"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — dependency status (database, blob store)
"""

import logging
import os
import time

from flask import Blueprint, current_app, jsonify

from docops.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness check: always 200 while the app is running."""
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
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Blob store (local adapter root) ──────────────────────────────
    root = current_app.config.get("BLOB_STORAGE_ROOT", "")
    if root and os.path.isdir(root):
        writable = os.access(root, os.W_OK)
        checks["blob_store"] = {"status": "ok" if writable else "read_only", "root": root}
    else:
        # created lazily on the first write
        checks["blob_store"] = {"status": "not_initialised", "root": root}

    checks["app"] = {
        "name": "DocOps Compliance Engine",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
