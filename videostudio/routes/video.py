"""
Video Generation Routes Blueprint.
----------------------------------
Registered under /api.

- POST /video/generate            - Create a job (debit + dispatch)
- GET  /video/status/<job_id>     - Poll one job (?user_id=)
- POST /video/jobs                - List a user's jobs, reconciling in-progress ones
- POST /video/extend/<job_id>     - Add one segment to a complete Veo job

Error responses:
{
    "error": "<machine_code>",
    "message": "<human readable>"
}
"""

from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, Optional

from flask import Blueprint, current_app, jsonify, request

from videostudio.services.job_record import JobStatus
from videostudio.services.video_orchestrator import (
    JobNotExtendableError,
    JobNotFoundError,
    JobOrchestrator,
    JobValidationError,
)
from videostudio.services.video_providers.base import ImageInput, VideoProviderError
from videostudio.services.video_router import ProviderUnavailableError
from videostudio.utils.helpers import clamp_int

bp = Blueprint("video", __name__)


def _orchestrator() -> JobOrchestrator:
    return current_app.extensions["video_orchestrator"]


def _error(code: str, message: str, status: int, **extra):
    body = {"error": code, "message": message}
    body.update(extra)
    return jsonify(body), status


def _field(body: Dict[str, Any], *names: str, default=None):
    """First present key; the UI sends both snake_case and camelCase."""
    for name in names:
        if body.get(name) not in (None, ""):
            return body[name]
    return default


def _parse_image(body: Dict[str, Any]) -> Optional[ImageInput]:
    """Accept a data URI or raw base64 in image_data."""
    raw = _field(body, "image_data", "imageBase64", "image_base64")
    if not raw:
        return None
    content_type = _field(body, "image_mime_type", "imageMimeType", default="image/png")
    if isinstance(raw, str) and raw.startswith("data:"):
        header, _, raw = raw.partition(",")
        content_type = header[5:].split(";")[0] or content_type
    try:
        data = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError, TypeError):
        raise JobValidationError("image_data is not valid base64")
    if not data:
        raise JobValidationError("image_data is empty")
    return ImageInput(data=data, content_type=content_type)


# ── Error mapping ────────────────────────────────────────────
@bp.errorhandler(JobValidationError)
def _validation_error(e):
    return _error("invalid_request", str(e), 400)


@bp.errorhandler(JobNotFoundError)
def _not_found(e):
    return _error("job_not_found", str(e), 404)


@bp.errorhandler(JobNotExtendableError)
def _not_extendable(e):
    return _error("job_not_extendable", e.reason, 409)


@bp.errorhandler(ProviderUnavailableError)
def _provider_unavailable(e):
    return _error("provider_unavailable", str(e), 503)


@bp.errorhandler(VideoProviderError)
def _provider_error(e):
    return _error("provider_error", e.message, 502, provider=e.provider)


# ── Routes ───────────────────────────────────────────────────
@bp.route("/video/generate", methods=["POST"])
def generate_video():
    """
    Start a video generation job.

    Request body:
    {
        "user_id": "...",                 # Required
        "ad_account_id": "act_123",       # Required
        "prompt": "...",                  # Required
        "video_style": "ugc",             # Required
        "duration_seconds": 8,            # Optional, normalized per provider
        "provider": "sora|veo|veo-ext|runway",
        "target_duration_seconds": 22,    # veo-ext only (default 15)
        "image_data": "data:image/png;base64,...",
        "session_id", "canvas_id", "product_name", "ad_index", "overlay_config"
    }
    """
    body = request.get_json(silent=True) or {}

    ad_index = _field(body, "ad_index", "adIndex")
    target = _field(body, "target_duration_seconds", "targetDurationSeconds")
    job = _orchestrator().create_job(
        owner_id=_field(body, "user_id", "userId"),
        account_id=_field(body, "ad_account_id", "adAccountId"),
        prompt=_field(body, "prompt", default=""),
        video_style=_field(body, "video_style", "videoStyle"),
        duration_seconds=_field(body, "duration_seconds", "durationSeconds"),
        provider_choice=_field(body, "provider"),
        target_duration_seconds=clamp_int(target, 1, 600, None) if target is not None else None,
        image=_parse_image(body),
        session_id=_field(body, "session_id", "sessionId"),
        canvas_id=_field(body, "canvas_id", "canvasId"),
        product_name=_field(body, "product_name", "productName"),
        ad_index=clamp_int(ad_index, 0, 10_000, None) if ad_index is not None else None,
        overlay_config=_field(body, "overlay_config", "overlayConfig"),
    )

    view = _orchestrator().view(job)
    if job.status == JobStatus.FAILED:
        return _error("dispatch_failed", job.error_message or "Video dispatch failed", 502, job=view)
    return jsonify({"ok": True, **view}), 201


@bp.route("/video/status/<job_id>", methods=["GET"])
def video_status(job_id: str):
    user_id = request.args.get("user_id") or request.args.get("userId")
    if not user_id:
        return _error("invalid_request", "user_id is required", 400)
    return jsonify(_orchestrator().poll_job(job_id, user_id))


@bp.route("/video/jobs", methods=["POST"])
def list_video_jobs():
    body = request.get_json(silent=True) or {}
    user_id = _field(body, "user_id", "userId")
    if not user_id:
        return _error("invalid_request", "user_id is required", 400)

    reconcile = body.get("reconcile", True)
    if isinstance(reconcile, str):
        reconcile = reconcile.lower() not in ("false", "0", "no")

    limit = _field(body, "limit")
    jobs = _orchestrator().list_jobs(
        user_id,
        account_id=_field(body, "ad_account_id", "adAccountId"),
        session_id=_field(body, "session_id", "sessionId"),
        status=_field(body, "status"),
        limit=clamp_int(limit, 1, 200, None) if limit is not None else None,
        reconcile=bool(reconcile),
    )
    return jsonify({"ok": True, "jobs": jobs, "count": len(jobs)})


@bp.route("/video/extend/<job_id>", methods=["POST"])
def extend_video(job_id: str):
    body = request.get_json(silent=True) or {}
    user_id = _field(body, "user_id", "userId")
    if not user_id:
        return _error("invalid_request", "user_id is required", 400)
    return jsonify(_orchestrator().request_extension(job_id, user_id))
