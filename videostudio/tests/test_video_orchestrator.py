"""
Lifecycle tests for the video job orchestrator.

Backends are scripted (see fakes.py); jobs and ledger live in memory.

Run locally:
    python -m pytest videostudio/tests/test_video_orchestrator.py -v
"""

from __future__ import annotations

import threading

import pytest

from videostudio.config import config
from videostudio.services.credit_ledger import CreditLedger, MemoryLedgerStore
from videostudio.services.job_record import ErrorKind, JobProvider, JobStatus, WARNING_INGESTION_DEGRADED
from videostudio.services.job_repository import MemoryJobRepository
from videostudio.services.media_ingester import IngestionError, MediaIngester
from videostudio.services.video_orchestrator import (
    JobNotExtendableError,
    JobNotFoundError,
    JobOrchestrator,
    JobValidationError,
)
from videostudio.services.video_providers.base import (
    ImageInput,
    PollResult,
    ProviderAuthError,
    ProviderTransientError,
    VideoProviderError,
)
from videostudio.services.video_providers.runway_provider import RunwayProvider, RunwaySettings
from videostudio.services.video_providers.sora_provider import SoraProvider, SoraSettings
from videostudio.services.video_router import ProviderUnavailableError, VideoRouter
from videostudio.tests.fakes import FakeResponse, done


def _claim_looks_abandoned(monkeypatch):
    monkeypatch.setattr(
        "videostudio.services.video_orchestrator.elapsed_seconds",
        lambda since: config.CHAIN_CLAIM_STALE_SECONDS + 1,
    )


def _poll_concurrently(orchestrator, job_id, n=2):
    errors = []

    def worker():
        try:
            orchestrator.poll_job(job_id, "user-1")
        except Exception as e:  # surfaced below
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    assert not errors


class TestCreateJob:

    def test_dispatch_stores_prefixed_ref_and_debits(self, create, repository, ledger):
        job = create("sora", duration_seconds=8)
        assert job.status == JobStatus.GENERATING
        assert job.external_ref == "sora:sora-native-1"
        assert job.provider == JobProvider.PERCENT_PROGRESS
        assert job.credit_cost == 50
        assert ledger.debited_total(job.id) == 50
        assert repository.get(job.id).status == JobStatus.GENERATING

    def test_dispatch_failure_fails_with_full_refund(self, create, sora, ledger):
        sora.create_error = ProviderTransientError("sora", "backend down", status_code=503)
        job = create("sora")
        assert job.status == JobStatus.FAILED
        assert job.external_ref is None
        assert job.credits_refunded == 50
        assert job.error_message.startswith("Video dispatch failed")
        assert ledger.refunded_total(job.id) == 50

    def test_missing_prompt_is_rejected_before_any_write(self, create, repository, ledger):
        with pytest.raises(JobValidationError):
            create("sora", prompt="   ")
        assert repository.list_for_owner("user-1") == []

    def test_unconfigured_provider_is_unavailable(self, create, runway, repository):
        runway.configured = False
        with pytest.raises(ProviderUnavailableError):
            create("runway")
        assert repository.list_for_owner("user-1") == []

    def test_unknown_provider_choice(self, create):
        with pytest.raises(ProviderUnavailableError):
            create("pika")

    def test_chain_plan_and_cost(self, create, ledger):
        job = create("veo-ext", target_duration_seconds=22)
        assert job.provider == JobProvider.OPERATION_CHAINED
        assert job.duration_seconds == 8
        assert job.extension_total == 2
        assert job.extension_step == 0
        assert job.credit_cost == 100
        assert ledger.debited_total(job.id) == 100

    def test_runway_image_is_uploaded_for_url_backends(self, create, storage):
        image = ImageInput(data=b"\x89PNG", content_type="image/png")
        job = create("runway", image=image)
        assert job.status == JobStatus.GENERATING
        assert storage.uploads == [f"user-1/123/images/{job.id}.png"]
        assert image.public_url == f"https://cdn.test/user-1/123/images/{job.id}.png"


class TestPolling:

    def test_progress_never_decreases(self, create, orchestrator, sora):
        sora.polls = [PollResult.running(42), PollResult.running(30)]
        job = create("sora")
        assert orchestrator.poll_job(job.id, "user-1")["progress_pct"] == 42
        assert orchestrator.poll_job(job.id, "user-1")["progress_pct"] == 42

    def test_terminal_job_is_not_polled_again(self, create, orchestrator, sora):
        sora.polls = [done(data=b"mp4-bytes")]
        job = create("sora")
        first = orchestrator.poll_job(job.id, "user-1")
        assert first["status"] == JobStatus.COMPLETE
        assert sora.poll_calls == 1

        second = orchestrator.poll_job(job.id, "user-1")
        assert sora.poll_calls == 1
        assert second == first

    def test_complete_ingests_to_owner_path(self, create, orchestrator, sora, storage):
        sora.polls = [done(data=b"mp4-bytes")]
        job = create("sora", duration_seconds=12)
        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.COMPLETE
        assert view["progress_pct"] == 100
        assert view["duration_seconds"] == 12
        assert view["raw_video_url"] == f"https://cdn.test/user-1/123/videos/{job.id}.mp4"
        assert view["credits_refunded"] is False
        assert view["warning"] is None

    def test_transient_poll_error_leaves_job_untouched(self, create, orchestrator, sora, repository):
        sora.polls = [ProviderTransientError("sora", "read timeout")]
        job = create("sora")
        before = repository.get(job.id)
        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.GENERATING
        assert view["poll_error"] == "read timeout"
        assert repository.get(job.id) == before

    def test_rejected_poll_fails_with_full_refund(self, create, orchestrator, sora, ledger):
        sora.polls = [VideoProviderError("sora", 404, "video not found")]
        job = create("sora")
        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.FAILED
        assert view["error_kind"] == ErrorKind.BACKEND
        assert "video not found" in view["error_message"]
        assert view["credits_refunded_amount"] == 50
        assert ledger.refunded_total(job.id) == 50

        orchestrator.poll_job(job.id, "user-1")
        assert sora.poll_calls == 1

    def test_auth_error_on_poll_keeps_job_for_retry(self, create, orchestrator, sora, ledger):
        sora.polls = [ProviderAuthError("sora", "invalid api key"), PollResult.running(15)]
        job = create("sora")
        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.GENERATING
        assert view["poll_error"] == "invalid api key"
        assert ledger.refunded_total(job.id) == 0

        assert orchestrator.poll_job(job.id, "user-1")["progress_pct"] == 15

    def test_failed_fetch_is_retried_on_next_poll(self, create, orchestrator, sora):
        sora.polls = [done(data=b"mp4-bytes")]
        sora.fetch_error = IngestionError("Failed to download output: HTTP 500", status_code=500)
        job = create("sora")
        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.GENERATING
        assert "Output not fetched yet" in view["poll_error"]

        sora.fetch_error = None
        assert orchestrator.poll_job(job.id, "user-1")["status"] == JobStatus.COMPLETE

    def test_upload_outage_completes_degraded(self, create, orchestrator, sora, storage):
        sora.polls = [done(data=b"mp4-bytes")]
        storage.failures = 2
        job = create("sora")
        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.COMPLETE
        assert view["warning"] == WARNING_INGESTION_DEGRADED
        assert view["raw_video_url"].endswith(f"/videos/{job.id}.mp4")
        assert storage.attempts == 2

    def test_safety_filter_fails_with_distinct_kind(self, create, orchestrator, veo, ledger):
        veo.polls = [PollResult.error(ErrorKind.SAFETY_FILTER, "Blocked by content policy: celebrity")]
        job = create("veo")
        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.FAILED
        assert view["error_kind"] == ErrorKind.SAFETY_FILTER
        assert "content policy" in view["error_message"]
        assert view["credits_refunded"] is True
        assert ledger.refunded_total(job.id) == 50

    def test_failure_is_refunded_once_even_with_stale_pollers(self, create, orchestrator, sora, repository, ledger):
        sora.polls = [PollResult.error(ErrorKind.BACKEND, "render crashed")]
        job = create("sora")
        stale = repository.get(job.id)

        orchestrator.poll_job(job.id, "user-1")
        orchestrator.poll_job(job.id, "user-1")
        reloaded, _ = orchestrator.reconcile(stale)

        assert reloaded.status == JobStatus.FAILED
        assert ledger.refunded_total(job.id) == 50
        refunds = [e for e in ledger.entries_for_job(job.id) if e["amount"] > 0]
        assert len(refunds) == 1

    def test_concurrent_pollers_refund_once(self, create, orchestrator, sora, ledger):
        sora.polls = [PollResult.error(ErrorKind.BACKEND, "render crashed")]
        job = create("sora")
        sora.poll_barrier = threading.Barrier(2)
        _poll_concurrently(orchestrator, job.id)
        assert ledger.refunded_total(job.id) == 50

    def test_estimated_time_remaining_for_operation_backends(self, create, orchestrator, veo):
        veo.polls = [PollResult.running(20)]
        job = create("veo")
        view = orchestrator.poll_job(job.id, "user-1")
        assert view["estimated_time_remaining"] == 60

    def test_unknown_or_foreign_job(self, create, orchestrator):
        job = create("sora")
        with pytest.raises(JobNotFoundError):
            orchestrator.poll_job(job.id, "someone-else")
        with pytest.raises(JobNotFoundError):
            orchestrator.poll_job("00000000-0000-0000-0000-000000000000", "user-1")


class TestExtensionChain:

    def test_full_chain_reaches_target(self, create, orchestrator, veo_ext, ledger):
        veo_ext.polls = [done("gs://out/seg0.mp4"), done("gs://out/seg1.mp4"), done("gs://out/seg2.mp4")]
        job = create("veo-ext", target_duration_seconds=22)

        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.EXTENDING
        assert view["extension_step"] == 1
        assert veo_ext.trigger_calls == ["gs://out/seg0.mp4"]

        view = orchestrator.poll_job(job.id, "user-1")
        assert view["extension_step"] == 2
        assert veo_ext.trigger_calls == ["gs://out/seg0.mp4", "gs://out/seg1.mp4"]

        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.COMPLETE
        assert view["duration_seconds"] == 22
        assert ledger.refunded_total(job.id) == 0

    def test_claim_swaps_in_new_ref(self, create, orchestrator, veo_ext, repository):
        veo_ext.polls = [done("gs://out/seg0.mp4"), PollResult.running()]
        job = create("veo-ext", target_duration_seconds=15)
        orchestrator.poll_job(job.id, "user-1")
        row = repository.get(job.id)
        assert row.external_ref == "veoext:ext-op-1"
        assert row.extension_video_uri == "gs://out/seg0.mp4"

    def test_concurrent_pollers_trigger_exactly_once(self, create, orchestrator, veo_ext, repository, ledger):
        veo_ext.polls = [done("gs://out/seg0.mp4")]
        job = create("veo-ext", target_duration_seconds=15)
        veo_ext.poll_barrier = threading.Barrier(2)

        _poll_concurrently(orchestrator, job.id)

        assert len(veo_ext.trigger_calls) == 1
        row = repository.get(job.id)
        assert row.extension_step == 1
        assert row.status == JobStatus.EXTENDING
        assert ledger.refunded_total(job.id) == 0

    def test_trigger_failure_saves_last_good_segment(self, create, orchestrator, veo_ext, ledger, storage):
        veo_ext.polls = [done("gs://out/seg0.mp4"), done("gs://out/seg1.mp4")]
        job = create("veo-ext", target_duration_seconds=22)
        orchestrator.poll_job(job.id, "user-1")

        veo_ext.trigger_error = VideoProviderError("veo-ext", 400, "extension rejected")
        view = orchestrator.poll_job(job.id, "user-1")

        assert view["status"] == JobStatus.COMPLETE
        assert view["duration_seconds"] == 8
        assert view["credits_refunded_amount"] == 25
        assert "saved the last completed segment" in view["error_message"]
        assert ledger.refunded_total(job.id) == 25
        assert storage.uploads == [f"user-1/123/videos/{job.id}.mp4"]

    def test_first_trigger_failure_keeps_base_segment(self, create, orchestrator, veo_ext, ledger):
        veo_ext.polls = [done("gs://out/seg0.mp4")]
        veo_ext.trigger_error = VideoProviderError("veo-ext", 400, "extension rejected")
        job = create("veo-ext", target_duration_seconds=22)

        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.COMPLETE
        assert view["duration_seconds"] == 8
        assert view["extension_total"] == 0
        assert ledger.refunded_total(job.id) == 25

    def test_backend_error_mid_chain_saves_partial(self, create, orchestrator, veo_ext, ledger):
        veo_ext.polls = [done("gs://out/seg0.mp4"), PollResult.error(ErrorKind.BACKEND, "quota exhausted")]
        job = create("veo-ext", target_duration_seconds=22)
        orchestrator.poll_job(job.id, "user-1")

        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.COMPLETE
        assert view["duration_seconds"] == 8
        assert view["error_message"] == "Extension failed (quota exhausted); saved the last completed segment (8s)"
        assert ledger.refunded_total(job.id) == 25

    def test_unexpected_trigger_exception_saves_partial(self, create, orchestrator, veo_ext, repository, ledger):
        veo_ext.polls = [done("gs://out/seg0.mp4")]
        veo_ext.trigger_error = RuntimeError("connection reset while reading response")
        job = create("veo-ext", target_duration_seconds=22)

        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.COMPLETE
        assert view["duration_seconds"] == 8
        assert "connection reset" in view["error_message"]
        assert ledger.refunded_total(job.id) == 25
        assert repository.get(job.id).external_ref is None

    def test_abandoned_claim_is_saved_once_stale(
        self, monkeypatch, create, orchestrator, veo_ext, repository, ledger, storage
    ):
        job = create("veo-ext", target_duration_seconds=22)
        # the process died between the claim and the trigger call
        repository.claim_extension(job.id, 0, "gs://out/seg0.mp4")

        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.EXTENDING
        assert ledger.refunded_total(job.id) == 0

        _claim_looks_abandoned(monkeypatch)
        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.COMPLETE
        assert view["duration_seconds"] == 8
        assert view["extension_step"] == 0
        assert view["extension_total"] == 0
        assert "never started" in view["error_message"]
        assert veo_ext.trigger_calls == []
        assert veo_ext.poll_calls == 0
        assert storage.uploads == [f"user-1/123/videos/{job.id}.mp4"]
        assert ledger.refunded_total(job.id) == 25

    def test_transient_partial_fetch_is_retried(self, create, orchestrator, veo_ext, ledger):
        veo_ext.polls = [done("gs://out/seg0.mp4"), PollResult.error(ErrorKind.BACKEND, "quota exhausted")]
        job = create("veo-ext", target_duration_seconds=22)
        orchestrator.poll_job(job.id, "user-1")

        veo_ext.fetch_error = IngestionError("Failed to download output: HTTP 503", status_code=503)
        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.EXTENDING
        assert "Last segment not fetched yet" in view["poll_error"]
        assert ledger.refunded_total(job.id) == 0

        veo_ext.fetch_error = None
        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.COMPLETE
        assert view["duration_seconds"] == 8
        assert ledger.refunded_total(job.id) == 25

    def test_error_before_any_segment_refunds_everything(self, create, orchestrator, veo_ext, ledger):
        veo_ext.polls = [PollResult.error(ErrorKind.BACKEND, "quota exhausted")]
        job = create("veo-ext", target_duration_seconds=22)
        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.FAILED
        assert ledger.refunded_total(job.id) == 100

    def test_unfetchable_partial_fails_with_step_refund(self, create, orchestrator, veo_ext, ledger):
        veo_ext.polls = [done("gs://out/seg0.mp4"), done("gs://out/seg1.mp4")]
        job = create("veo-ext", target_duration_seconds=22)
        orchestrator.poll_job(job.id, "user-1")

        veo_ext.trigger_error = VideoProviderError("veo-ext", 400, "extension rejected")
        veo_ext.fetch_error = IngestionError("Failed to download output: HTTP 404", status_code=404)
        view = orchestrator.poll_job(job.id, "user-1")

        assert view["status"] == JobStatus.FAILED
        assert "last segment unavailable" in view["error_message"]
        assert ledger.refunded_total(job.id) == 25


class TestListJobs:

    def test_one_bad_backend_does_not_fail_the_batch(self, create, orchestrator, sora, runway):
        sora.polls = [PollResult.running(10)]
        runway.polls = [RuntimeError("unexpected payload")]
        create("sora")
        create("sora")
        broken = create("runway")

        views = orchestrator.list_jobs("user-1")
        assert len(views) == 3
        by_id = {v["job_id"]: v for v in views}
        assert by_id[broken.id]["poll_error"] == "unexpected payload"
        assert by_id[broken.id]["status"] == JobStatus.GENERATING
        assert sorted(v["progress_pct"] for v in views) == [0, 10, 10]

    def test_reconcile_can_be_skipped(self, create, orchestrator, sora):
        create("sora")
        views = orchestrator.list_jobs("user-1", reconcile=False)
        assert len(views) == 1
        assert sora.poll_calls == 0

    def test_filters(self, create, orchestrator):
        create("sora", session_id="s-1")
        create("sora", session_id="s-2")
        assert len(orchestrator.list_jobs("user-1", session_id="s-1", reconcile=False)) == 1
        assert orchestrator.list_jobs("user-2", reconcile=False) == []
        assert orchestrator.list_jobs("user-1", status=JobStatus.COMPLETE, reconcile=False) == []


class TestManualExtension:

    def _complete_veo_job(self, create, orchestrator, veo):
        veo.polls = [done("gs://out/veo.mp4")]
        job = create("veo", duration_seconds=8)
        assert orchestrator.poll_job(job.id, "user-1")["status"] == JobStatus.COMPLETE
        return job

    def test_promotes_complete_job_to_chain(self, create, orchestrator, veo, veo_ext, ledger):
        job = self._complete_veo_job(create, orchestrator, veo)

        view = orchestrator.request_extension(job.id, "user-1")
        assert view["status"] == JobStatus.EXTENDING
        assert view["provider"] == JobProvider.OPERATION_CHAINED
        assert view["extension_step"] == 1
        assert view["extension_total"] == 1
        assert view["credit_cost"] == 75
        assert view["target_duration_seconds"] == 15
        assert veo_ext.trigger_calls == ["gs://out/veo.mp4"]
        assert ledger.debited_total(job.id) == 75

        veo_ext.polls = [done("gs://out/ext.mp4")]
        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.COMPLETE
        assert view["duration_seconds"] == 15

    def test_trigger_failure_refunds_extension(self, create, orchestrator, veo, veo_ext, repository, ledger):
        job = self._complete_veo_job(create, orchestrator, veo)
        veo_ext.trigger_error = VideoProviderError("veo-ext", 400, "extension rejected")

        with pytest.raises(VideoProviderError):
            orchestrator.request_extension(job.id, "user-1")

        assert repository.get(job.id).status == JobStatus.COMPLETE
        assert ledger.debited_total(job.id) == 75
        assert ledger.refunded_total(job.id) == 25

    def test_failed_extension_restores_previous_output(
        self, create, orchestrator, veo, veo_ext, repository, ledger, storage
    ):
        job = self._complete_veo_job(create, orchestrator, veo)
        before = repository.get(job.id)
        orchestrator.request_extension(job.id, "user-1")

        veo_ext.polls = [PollResult.error(ErrorKind.BACKEND, "render crashed")]
        view = orchestrator.poll_job(job.id, "user-1")

        assert view["status"] == JobStatus.COMPLETE
        assert view["raw_video_url"] == before.raw_video_url
        assert view["duration_seconds"] == 8
        assert view["extension_step"] == 0
        assert view["extension_total"] == 0
        assert view["error_message"] == "Extension failed (render crashed); saved the last completed segment (8s)"
        assert view["credits_refunded_amount"] == 25
        assert ledger.debited_total(job.id) == 75
        assert ledger.refunded_total(job.id) == 25
        assert storage.uploads == [f"user-1/123/videos/{job.id}.mp4"]
        assert repository.get(job.id).extension_video_uri == "gs://out/veo.mp4"

    def test_extended_output_gets_a_new_storage_key(self, create, orchestrator, veo, veo_ext, storage):
        job = self._complete_veo_job(create, orchestrator, veo)
        orchestrator.request_extension(job.id, "user-1")

        veo_ext.polls = [done("gs://out/ext.mp4")]
        view = orchestrator.poll_job(job.id, "user-1")
        assert view["raw_video_url"] == f"https://cdn.test/user-1/123/videos/{job.id}-s1.mp4"
        assert storage.uploads == [
            f"user-1/123/videos/{job.id}.mp4",
            f"user-1/123/videos/{job.id}-s1.mp4",
        ]

    def test_refunds_accumulate_across_partial_saves(self, create, orchestrator, veo_ext, ledger):
        veo_ext.polls = [done("gs://out/seg0.mp4")]
        veo_ext.trigger_error = VideoProviderError("veo-ext", 400, "extension rejected")
        job = create("veo-ext", target_duration_seconds=15)
        first = orchestrator.poll_job(job.id, "user-1")
        assert first["status"] == JobStatus.COMPLETE
        assert first["credits_refunded_amount"] == 25

        veo_ext.trigger_error = None
        orchestrator.request_extension(job.id, "user-1")
        veo_ext.polls = [PollResult.error(ErrorKind.BACKEND, "render crashed")]
        view = orchestrator.poll_job(job.id, "user-1")

        assert view["status"] == JobStatus.COMPLETE
        assert view["credits_refunded_amount"] == 50
        assert ledger.refunded_total(job.id) == 50
        assert ledger.debited_total(job.id) == 100

    def test_rejects_jobs_that_cannot_be_extended(self, create, orchestrator, sora, veo):
        sora.polls = [done(data=b"mp4-bytes")]
        sora_job = create("sora")
        orchestrator.poll_job(sora_job.id, "user-1")
        with pytest.raises(JobNotExtendableError):
            orchestrator.request_extension(sora_job.id, "user-1")

        running = create("veo")
        with pytest.raises(JobNotExtendableError):
            orchestrator.request_extension(running.id, "user-1")

        with pytest.raises(JobNotFoundError):
            orchestrator.request_extension(running.id, "user-2")


class TestSoraEndToEnd:
    """Real Sora adapter against canned HTTP responses."""

    def test_expired_content_fails_and_refunds(self, monkeypatch, storage):
        statuses = [{"status": "in_progress", "progress": 40}, {"status": "completed"}]

        def fake_get(url, headers=None, timeout=None, **kwargs):
            if url.endswith("/content"):
                return FakeResponse(410, {"error": {"message": "gone"}})
            return FakeResponse(200, statuses.pop(0) if len(statuses) > 1 else statuses[0])

        def fake_post(url, headers=None, timeout=None, **kwargs):
            return FakeResponse(200, {"id": "video_abc", "status": "queued"})

        monkeypatch.setattr("videostudio.services.video_providers.base.requests.get", fake_get)
        monkeypatch.setattr("videostudio.services.video_providers.base.requests.post", fake_post)

        ledger = CreditLedger(MemoryLedgerStore(), base_cost=50, extension_cost=25)
        orchestrator = JobOrchestrator(
            MemoryJobRepository(),
            ledger,
            MediaIngester(storage),
            VideoRouter([SoraProvider(SoraSettings(api_key="sk-test"))]),
            cfg=config,
        )
        job = orchestrator.create_job("user-1", "act_1", "A cat surfing", "ugc", 8, "sora")
        assert job.external_ref == "sora:video_abc"

        assert orchestrator.poll_job(job.id, "user-1")["progress_pct"] == 40

        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.FAILED
        assert view["error_kind"] == ErrorKind.EMPTY_OUTPUT
        assert "expired" in view["error_message"]
        assert ledger.refunded_total(job.id) == 50

        orchestrator.poll_job(job.id, "user-1")
        assert ledger.refunded_total(job.id) == 50


class TestRunwayEndToEnd:
    """Real Runway adapter against canned HTTP responses."""

    def test_ratio_progress_never_regresses(self, monkeypatch, storage):
        tasks = [
            {"id": "task_1", "status": "RUNNING", "progress": 0.42},
            {"id": "task_1", "status": "RUNNING", "progress": 0.30},
            {"id": "task_1", "status": "SUCCEEDED", "output": ["https://cdn.runway.test/task_1.mp4"]},
        ]

        def fake_get(url, headers=None, timeout=None, **kwargs):
            if url.endswith("/v1/tasks/task_1"):
                return FakeResponse(200, tasks.pop(0) if len(tasks) > 1 else tasks[0])
            if url == "https://cdn.runway.test/task_1.mp4":
                return FakeResponse(200, content=b"mp4-bytes", headers={"Content-Type": "video/mp4"})
            raise AssertionError(f"unexpected GET {url}")

        def fake_post(url, headers=None, timeout=None, **kwargs):
            return FakeResponse(200, {"id": "task_1"})

        monkeypatch.setattr("videostudio.services.video_providers.base.requests.get", fake_get)
        monkeypatch.setattr("videostudio.services.video_providers.base.requests.post", fake_post)

        ledger = CreditLedger(MemoryLedgerStore(), base_cost=50, extension_cost=25)
        orchestrator = JobOrchestrator(
            MemoryJobRepository(),
            ledger,
            MediaIngester(storage),
            VideoRouter([RunwayProvider(RunwaySettings(api_key="rw-test", api_base="https://runway.test"))]),
            cfg=config,
        )
        job = orchestrator.create_job("user-1", "act_1", "A cat surfing", "ugc", 5, "runway")
        assert job.external_ref == "runway:task_1"

        assert orchestrator.poll_job(job.id, "user-1")["progress_pct"] == 42
        assert orchestrator.poll_job(job.id, "user-1")["progress_pct"] == 42

        view = orchestrator.poll_job(job.id, "user-1")
        assert view["status"] == JobStatus.COMPLETE
        assert view["duration_seconds"] == 5
        assert view["raw_video_url"] == f"https://cdn.test/user-1/1/videos/{job.id}.mp4"
        assert ledger.refunded_total(job.id) == 0
