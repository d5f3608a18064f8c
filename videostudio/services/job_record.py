"""
Job Record - the persisted shape of one video generation request.

Pure data: no I/O happens here. The repositories (job_repository.py) read and
write these rows; the orchestrator decides the transitions.

Statuses:
- queued: row written, backend not yet contacted
- generating: backend accepted the job, polling in progress
- extending: chained job, a follow-up extension segment is running
- complete: output ingested (terminal)
- failed: terminal failure, refund recorded (terminal)
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Dict, Optional

from videostudio.utils.helpers import now_utc


class JobStatus:
    """Valid job statuses."""
    QUEUED = "queued"
    GENERATING = "generating"
    EXTENDING = "extending"
    COMPLETE = "complete"
    FAILED = "failed"

    TERMINAL = (COMPLETE, FAILED)
    IN_PROGRESS = (GENERATING, EXTENDING)


class JobProvider:
    """Provider tags. Fixed at dispatch, except the manual operation -> operation-chained upgrade."""
    PERCENT_PROGRESS = "percent-progress"
    OPERATION = "operation"
    OPERATION_CHAINED = "operation-chained"
    TASK_RATIO = "task-ratio"

    ALL = (PERCENT_PROGRESS, OPERATION, OPERATION_CHAINED, TASK_RATIO)
    EXTENDABLE = (OPERATION, OPERATION_CHAINED)


class ErrorKind:
    """Normalized failure categories reported by provider polls."""
    NONE = "none"
    BACKEND = "backend"
    SAFETY_FILTER = "safety-filter"
    EMPTY_OUTPUT = "empty-output"


# Warning attached to a complete job whose upload failed twice
WARNING_INGESTION_DEGRADED = "ingestion-degraded"


@dataclass
class JobRecord:
    """One row of the video_jobs table."""

    id: str
    owner_id: str
    account_id: str
    prompt: str
    video_style: str
    provider: str
    duration_seconds: int
    status: str = JobStatus.QUEUED
    external_ref: Optional[str] = None
    progress_pct: int = 0
    session_id: Optional[str] = None
    canvas_id: Optional[str] = None
    product_name: Optional[str] = None
    ad_index: Optional[int] = None
    output_duration_seconds: Optional[int] = None
    target_duration_seconds: Optional[int] = None
    extension_step: int = 0
    extension_total: int = 0
    extension_video_uri: Optional[str] = None
    raw_video_url: Optional[str] = None
    final_video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    overlay_config: Optional[Dict[str, Any]] = None
    credit_cost: int = 0
    credits_refunded: int = 0
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    warning: Optional[str] = None
    # set when a complete job is manually extended
    extension_started_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    # ── state helpers ────────────────────────────────────────
    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL

    @property
    def is_in_progress(self) -> bool:
        return self.status in JobStatus.IN_PROGRESS

    @property
    def is_chained(self) -> bool:
        return self.provider == JobProvider.OPERATION_CHAINED

    # ── conversion ───────────────────────────────────────────
    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "JobRecord":
        """Build a record from a dict_row, ignoring columns the dataclass does not know."""
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in row.items() if k in known}
        data["id"] = str(data["id"])
        return cls(**data)

    def to_row(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def copy(self, **changes) -> "JobRecord":
        return replace(self, **changes)

    def to_view(self) -> Dict[str, Any]:
        """
        External status contract (JobStatusView).

        Always carries a refund flag so callers can reconcile balance
        without a second query.
        """
        return {
            "job_id": self.id,
            "status": self.status,
            "provider": self.provider,
            "progress_pct": self.progress_pct,
            "raw_video_url": self.raw_video_url,
            "final_video_url": self.final_video_url,
            "thumbnail_url": self.thumbnail_url,
            "error_message": self.error_message,
            "error_kind": self.error_kind,
            "warning": self.warning,
            "duration_seconds": self.output_duration_seconds or self.duration_seconds,
            "target_duration_seconds": self.target_duration_seconds,
            "extension_step": self.extension_step,
            "extension_total": self.extension_total,
            "credit_cost": self.credit_cost,
            "credits_refunded": self.credits_refunded > 0,
            "credits_refunded_amount": self.credits_refunded,
            "session_id": self.session_id,
            "canvas_id": self.canvas_id,
            "product_name": self.product_name,
            "ad_index": self.ad_index,
            "overlay_config": self.overlay_config,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
