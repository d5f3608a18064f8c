"""
Health check routes.
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from videostudio.db import USE_DB, verify_connection

bp = Blueprint("health", __name__)


@bp.route("/health", methods=["GET"])
def health():
    orchestrator = current_app.extensions["video_orchestrator"]
    storage_ok, storage_reason = orchestrator.ingester.storage.is_configured()
    return jsonify({
        "ok": True,
        "db": "connected" if USE_DB and verify_connection() else ("unreachable" if USE_DB else "memory"),
        "storage": {"configured": storage_ok, "reason": storage_reason},
        "providers": orchestrator.router.status(),
    })
