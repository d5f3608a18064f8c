"""
Job Repository - persistence for video_jobs.

Every mutation is a single guarded UPDATE (compare-and-swap on the fields the
writer last observed). A guarded write that matches no row returns None, which
callers treat as "another poller got there first".

Two implementations share the same interface:
- JobRepository: Postgres via psycopg (production)
- MemoryJobRepository: process-local dict behind a lock (local dev, tests)
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional

from psycopg.types.json import Jsonb

from videostudio.db import execute_returning, query_all, query_one, Tables
from videostudio.services.job_record import JobProvider, JobRecord, JobStatus
from videostudio.utils.helpers import now_utc


# Columns finish() is allowed to set alongside the terminal status
FINISH_FIELDS = (
    "raw_video_url",
    "thumbnail_url",
    "output_duration_seconds",
    "extension_video_uri",
    "credits_refunded",
    "error_kind",
    "error_message",
    "warning",
    "progress_pct",
    # partial save shrinks the chain to what was delivered
    "extension_step",
    "extension_total",
)

_NON_TERMINAL = (JobStatus.QUEUED, JobStatus.GENERATING, JobStatus.EXTENDING)

# finish() adds these to the stored value instead of replacing it
ACCUMULATED_FIELDS = ("credits_refunded",)


def _check_finish_fields(values: Dict[str, Any]) -> None:
    unknown = set(values) - set(FINISH_FIELDS)
    if unknown:
        raise ValueError(f"finish() cannot set: {sorted(unknown)}")


class JobRepository:
    """Postgres-backed job store."""

    # ─────────────────────────────────────────────────────────────
    # Reads / insert
    # ─────────────────────────────────────────────────────────────
    def insert(self, job: JobRecord) -> JobRecord:
        row = job.to_row()
        if row.get("overlay_config") is not None:
            row["overlay_config"] = Jsonb(row["overlay_config"])
        columns = list(row.keys())
        placeholders = ", ".join(["%s"] * len(columns))
        saved = execute_returning(
            f"""
            INSERT INTO {Tables.VIDEO_JOBS} ({", ".join(columns)})
            VALUES ({placeholders})
            RETURNING *
            """,
            tuple(row[c] for c in columns),
        )
        return JobRecord.from_row(saved)

    def get(self, job_id: str, owner_id: Optional[str] = None) -> Optional[JobRecord]:
        if owner_id is None:
            row = query_one(f"SELECT * FROM {Tables.VIDEO_JOBS} WHERE id = %s", (job_id,))
        else:
            row = query_one(
                f"SELECT * FROM {Tables.VIDEO_JOBS} WHERE id = %s AND owner_id = %s",
                (job_id, owner_id),
            )
        return JobRecord.from_row(row) if row else None

    def list_for_owner(
        self,
        owner_id: str,
        account_id: Optional[str] = None,
        session_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[JobRecord]:
        clauses = ["owner_id = %s"]
        params: List[Any] = [owner_id]
        if account_id:
            clauses.append("account_id = %s")
            params.append(account_id)
        if session_id:
            clauses.append("session_id = %s")
            params.append(session_id)
        if status:
            clauses.append("status = %s")
            params.append(status)
        params.append(limit)
        rows = query_all(
            f"""
            SELECT * FROM {Tables.VIDEO_JOBS}
            WHERE {" AND ".join(clauses)}
            ORDER BY created_at DESC
            LIMIT %s
            """,
            tuple(params),
        )
        return [JobRecord.from_row(r) for r in rows]

    # ─────────────────────────────────────────────────────────────
    # Guarded writes
    # ─────────────────────────────────────────────────────────────
    def mark_dispatched(self, job_id: str, external_ref: str) -> Optional[JobRecord]:
        """queued -> generating, recording the backend reference."""
        row = execute_returning(
            f"""
            UPDATE {Tables.VIDEO_JOBS}
            SET status = %s, external_ref = %s, updated_at = NOW()
            WHERE id = %s AND status = %s
            RETURNING *
            """,
            (JobStatus.GENERATING, external_ref, job_id, JobStatus.QUEUED),
        )
        return JobRecord.from_row(row) if row else None

    def raise_progress(self, job_id: str, progress_pct: int) -> Optional[JobRecord]:
        """Persist progress only if it increases and the job is still running."""
        row = execute_returning(
            f"""
            UPDATE {Tables.VIDEO_JOBS}
            SET progress_pct = %s, updated_at = NOW()
            WHERE id = %s AND progress_pct < %s AND status = ANY(%s)
            RETURNING *
            """,
            (progress_pct, job_id, progress_pct, list(JobStatus.IN_PROGRESS)),
        )
        return JobRecord.from_row(row) if row else None

    def claim_extension(
        self,
        job_id: str,
        expected_step: int,
        segment_uri: Optional[str],
    ) -> Optional[JobRecord]:
        """
        Chain CAS: step -> step+1 only if step is still expected_step.

        The finished segment becomes extension_video_uri and external_ref is
        cleared until attach_extension_ref() stores the new operation, so the
        winner is the only poller that ever calls the backend to extend.
        """
        row = execute_returning(
            f"""
            UPDATE {Tables.VIDEO_JOBS}
            SET extension_step = extension_step + 1,
                external_ref = NULL,
                extension_video_uri = COALESCE(%s, extension_video_uri),
                status = %s,
                updated_at = NOW()
            WHERE id = %s
              AND extension_step = %s
              AND extension_step < extension_total
              AND provider = %s
              AND status = ANY(%s)
            RETURNING *
            """,
            (
                segment_uri,
                JobStatus.EXTENDING,
                job_id,
                expected_step,
                JobProvider.OPERATION_CHAINED,
                list(JobStatus.IN_PROGRESS),
            ),
        )
        return JobRecord.from_row(row) if row else None

    def attach_extension_ref(self, job_id: str, step: int, external_ref: str) -> Optional[JobRecord]:
        """Store the operation started for a claimed step."""
        row = execute_returning(
            f"""
            UPDATE {Tables.VIDEO_JOBS}
            SET external_ref = %s, updated_at = NOW()
            WHERE id = %s AND extension_step = %s AND external_ref IS NULL AND status = %s
            RETURNING *
            """,
            (external_ref, job_id, step, JobStatus.EXTENDING),
        )
        return JobRecord.from_row(row) if row else None

    def finish(
        self,
        job_id: str,
        status: str,
        expected_step: int,
        **values: Any,
    ) -> Optional[JobRecord]:
        """
        Move a non-terminal job to complete/failed. None if another writer won.
        credits_refunded is added to what earlier refunds already recorded.
        """
        if status not in JobStatus.TERMINAL:
            raise ValueError(f"finish() requires a terminal status, got {status}")
        _check_finish_fields(values)

        assignments = ["status = %s", "updated_at = NOW()"]
        params: List[Any] = [status]
        for column, value in values.items():
            if column in ACCUMULATED_FIELDS:
                assignments.append(f"{column} = {column} + %s")
            else:
                assignments.append(f"{column} = %s")
            params.append(value)
        params.extend([job_id, list(_NON_TERMINAL), expected_step])

        row = execute_returning(
            f"""
            UPDATE {Tables.VIDEO_JOBS}
            SET {", ".join(assignments)}
            WHERE id = %s AND status = ANY(%s) AND extension_step = %s
            RETURNING *
            """,
            tuple(params),
        )
        return JobRecord.from_row(row) if row else None

    def promote_to_chained(
        self,
        job_id: str,
        expected_step: int,
        external_ref: str,
        extra_cost: int,
        extension_seconds: int,
    ) -> Optional[JobRecord]:
        """Manual extension CAS on a complete job."""
        row = execute_returning(
            f"""
            UPDATE {Tables.VIDEO_JOBS}
            SET provider = %s,
                status = %s,
                external_ref = %s,
                extension_total = extension_total + 1,
                extension_step = extension_step + 1,
                credit_cost = credit_cost + %s,
                target_duration_seconds =
                    COALESCE(output_duration_seconds, duration_seconds) + %s,
                error_kind = NULL,
                error_message = NULL,
                warning = NULL,
                extension_started_at = NOW(),
                updated_at = NOW()
            WHERE id = %s AND status = %s AND extension_step = %s
            RETURNING *
            """,
            (
                JobProvider.OPERATION_CHAINED,
                JobStatus.EXTENDING,
                external_ref,
                extra_cost,
                extension_seconds,
                job_id,
                JobStatus.COMPLETE,
                expected_step,
            ),
        )
        return JobRecord.from_row(row) if row else None


class MemoryJobRepository:
    """
    In-process job store with the same guarded-write semantics.

    Used when DATABASE_URL is not set and by the test suite. The lock makes
    each guarded write atomic, matching a single UPDATE statement.
    """

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = threading.Lock()

    def insert(self, job: JobRecord) -> JobRecord:
        with self._lock:
            self._jobs[job.id] = job.copy()
            return job.copy()

    def get(self, job_id: str, owner_id: Optional[str] = None) -> Optional[JobRecord]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or (owner_id is not None and job.owner_id != owner_id):
                return None
            return job.copy()

    def list_for_owner(
        self,
        owner_id: str,
        account_id: Optional[str] = None,
        session_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[JobRecord]:
        with self._lock:
            jobs = [
                j.copy() for j in self._jobs.values()
                if j.owner_id == owner_id
                and (not account_id or j.account_id == account_id)
                and (not session_id or j.session_id == session_id)
                and (not status or j.status == status)
            ]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    def _update(self, job_id: str, guard, **changes) -> Optional[JobRecord]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or not guard(job):
                return None
            updated = job.copy(updated_at=now_utc(), **changes)
            self._jobs[job_id] = updated
            return updated.copy()

    def mark_dispatched(self, job_id: str, external_ref: str) -> Optional[JobRecord]:
        return self._update(
            job_id,
            lambda j: j.status == JobStatus.QUEUED,
            status=JobStatus.GENERATING,
            external_ref=external_ref,
        )

    def raise_progress(self, job_id: str, progress_pct: int) -> Optional[JobRecord]:
        return self._update(
            job_id,
            lambda j: j.is_in_progress and j.progress_pct < progress_pct,
            progress_pct=progress_pct,
        )

    def claim_extension(
        self,
        job_id: str,
        expected_step: int,
        segment_uri: Optional[str],
    ) -> Optional[JobRecord]:
        with self._lock:
            job = self._jobs.get(job_id)
            if (
                job is None
                or job.extension_step != expected_step
                or job.extension_step >= job.extension_total
                or job.provider != JobProvider.OPERATION_CHAINED
                or not job.is_in_progress
            ):
                return None
            updated = job.copy(
                extension_step=job.extension_step + 1,
                external_ref=None,
                extension_video_uri=segment_uri or job.extension_video_uri,
                status=JobStatus.EXTENDING,
                updated_at=now_utc(),
            )
            self._jobs[job_id] = updated
            return updated.copy()

    def attach_extension_ref(self, job_id: str, step: int, external_ref: str) -> Optional[JobRecord]:
        return self._update(
            job_id,
            lambda j: (
                j.extension_step == step
                and j.external_ref is None
                and j.status == JobStatus.EXTENDING
            ),
            external_ref=external_ref,
        )

    def finish(
        self,
        job_id: str,
        status: str,
        expected_step: int,
        **values: Any,
    ) -> Optional[JobRecord]:
        if status not in JobStatus.TERMINAL:
            raise ValueError(f"finish() requires a terminal status, got {status}")
        _check_finish_fields(values)
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in _NON_TERMINAL or job.extension_step != expected_step:
                return None
            for column in ACCUMULATED_FIELDS:
                if column in values:
                    values[column] = getattr(job, column) + values[column]
            updated = job.copy(status=status, updated_at=now_utc(), **values)
            self._jobs[job_id] = updated
            return updated.copy()

    def promote_to_chained(
        self,
        job_id: str,
        expected_step: int,
        external_ref: str,
        extra_cost: int,
        extension_seconds: int,
    ) -> Optional[JobRecord]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.COMPLETE or job.extension_step != expected_step:
                return None
            delivered = job.output_duration_seconds or job.duration_seconds
            updated = job.copy(
                provider=JobProvider.OPERATION_CHAINED,
                status=JobStatus.EXTENDING,
                external_ref=external_ref,
                extension_total=job.extension_total + 1,
                extension_step=job.extension_step + 1,
                credit_cost=job.credit_cost + extra_cost,
                target_duration_seconds=delivered + extension_seconds,
                error_kind=None,
                error_message=None,
                warning=None,
                extension_started_at=now_utc(),
                updated_at=now_utc(),
            )
            self._jobs[job_id] = updated
            return updated.copy()
