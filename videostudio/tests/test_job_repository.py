"""Guarded single-row writes on the in-memory job store."""

from __future__ import annotations

import pytest

from videostudio.services.job_record import JobProvider, JobRecord, JobStatus
from videostudio.services.job_repository import MemoryJobRepository


def _chain_job(repo, step=0, total=2, status=JobStatus.GENERATING):
    return repo.insert(JobRecord(
        id="job-1",
        owner_id="user-1",
        account_id="act_1",
        prompt="p",
        video_style="ugc",
        provider=JobProvider.OPERATION_CHAINED,
        duration_seconds=8,
        status=status,
        external_ref="veoext:op-0",
        extension_step=step,
        extension_total=total,
        credit_cost=100,
    ))


def test_claim_extension_is_compare_and_swap():
    repo = MemoryJobRepository()
    _chain_job(repo)

    claimed = repo.claim_extension("job-1", 0, "gs://seg0")
    assert claimed.extension_step == 1
    assert claimed.external_ref is None
    assert claimed.status == JobStatus.EXTENDING
    assert claimed.extension_video_uri == "gs://seg0"

    assert repo.claim_extension("job-1", 0, "gs://seg0") is None


def test_claim_stops_at_total():
    repo = MemoryJobRepository()
    _chain_job(repo, step=2, total=2)
    assert repo.claim_extension("job-1", 2, "gs://seg2") is None


def test_attach_ref_only_once():
    repo = MemoryJobRepository()
    _chain_job(repo)
    repo.claim_extension("job-1", 0, "gs://seg0")

    assert repo.attach_extension_ref("job-1", 1, "veoext:op-1").external_ref == "veoext:op-1"
    assert repo.attach_extension_ref("job-1", 1, "veoext:op-2") is None


def test_progress_only_rises():
    repo = MemoryJobRepository()
    _chain_job(repo)
    assert repo.raise_progress("job-1", 40).progress_pct == 40
    assert repo.raise_progress("job-1", 30) is None
    assert repo.get("job-1").progress_pct == 40


def test_finish_is_guarded_by_status_and_step():
    repo = MemoryJobRepository()
    _chain_job(repo, step=1)

    assert repo.finish("job-1", JobStatus.FAILED, 0, error_message="stale") is None
    done = repo.finish("job-1", JobStatus.COMPLETE, 1, progress_pct=100)
    assert done.status == JobStatus.COMPLETE
    assert repo.finish("job-1", JobStatus.FAILED, 1, error_message="late") is None


def test_finish_rejects_non_terminal_status_and_unknown_fields():
    repo = MemoryJobRepository()
    _chain_job(repo)
    with pytest.raises(ValueError):
        repo.finish("job-1", JobStatus.GENERATING, 0)
    with pytest.raises(ValueError):
        repo.finish("job-1", JobStatus.FAILED, 0, owner_id="someone-else")


def test_promote_to_chained():
    repo = MemoryJobRepository()
    repo.insert(JobRecord(
        id="job-2",
        owner_id="user-1",
        account_id="act_1",
        prompt="p",
        video_style="ugc",
        provider=JobProvider.OPERATION,
        duration_seconds=8,
        status=JobStatus.COMPLETE,
        progress_pct=100,
        output_duration_seconds=8,
        credit_cost=50,
    ))

    promoted = repo.promote_to_chained("job-2", 0, "veoext:op-1", 25, 7)
    assert promoted.provider == JobProvider.OPERATION_CHAINED
    assert promoted.status == JobStatus.EXTENDING
    assert promoted.extension_step == 1
    assert promoted.extension_total == 1
    assert promoted.credit_cost == 75
    assert promoted.target_duration_seconds == 15
    assert promoted.progress_pct == 100
    assert promoted.extension_started_at is not None

    assert repo.promote_to_chained("job-2", 0, "veoext:op-2", 25, 7) is None


def test_finish_adds_to_earlier_refunds():
    repo = MemoryJobRepository()
    repo.insert(JobRecord(
        id="job-3",
        owner_id="user-1",
        account_id="act_1",
        prompt="p",
        video_style="ugc",
        provider=JobProvider.OPERATION_CHAINED,
        duration_seconds=8,
        status=JobStatus.COMPLETE,
        output_duration_seconds=8,
        credit_cost=75,
        credits_refunded=25,
    ))
    repo.promote_to_chained("job-3", 0, "veoext:op-1", 25, 7)

    done = repo.finish("job-3", JobStatus.COMPLETE, 1, credits_refunded=25, extension_step=0, extension_total=0)
    assert done.credits_refunded == 50
    assert repo.get("job-3").credits_refunded == 50


def test_get_scopes_by_owner():
    repo = MemoryJobRepository()
    _chain_job(repo)
    assert repo.get("job-1", "user-1") is not None
    assert repo.get("job-1", "user-2") is None
