"""
Video Job Orchestrator - lifecycle of a video generation job.

Flow:
1. create_job(owner, account, prompt, style, ...) ->
   a) Insert job row (status=queued) and debit credits
   b) Dispatch to the chosen backend
   c) Store the encoded external ref (status=generating)
   d) On dispatch error: status=failed, full refund
2. poll_job(job_id, owner) -> status view
   Terminal jobs are answered from the row alone. Otherwise the adapter for
   the stored ref is polled and the result applied:
     running          -> progress raised (never lowered)
     error            -> failed + refund (or partial save for chains)
     done, chained    -> claim next step, trigger extension
     done, final      -> ingest output, complete
3. list_jobs(owner, ...) -> views, in-progress jobs reconciled concurrently
4. request_extension(job_id, owner) -> upgrade a complete Veo job to a chain

There is no background worker: every poll is driven by a request, so all
writes are guarded single-row updates and any poller may run at any time.
Transient backend failures never change job state.
"""

from __future__ import annotations

import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

from videostudio.config import config
from videostudio.services.credit_ledger import CreditLedger
from videostudio.services.job_record import (
    ErrorKind,
    JobProvider,
    JobRecord,
    JobStatus,
    WARNING_INGESTION_DEGRADED,
)
from videostudio.services.media_ingester import (
    IngestionError,
    MediaIngester,
    image_path,
    video_path,
)
from videostudio.services.s3_service import StorageError
from videostudio.services.video_providers.base import (
    ImageInput,
    PollResult,
    ProviderAuthError,
    ProviderConfigError,
    VideoProvider,
    VideoProviderError,
)
from videostudio.services.video_router import ProviderUnavailableError, VideoRouter, encode_ref
from videostudio.utils.helpers import elapsed_seconds, log_event


REFUND_LABEL_FAILED = "Refund: Video generation failed"
REFUND_LABEL_PARTIAL = "Refund: Video extension failed"

# Output URLs answering these will never serve the file
GONE_STATUS_CODES = (404, 410)


class JobNotFoundError(Exception):
    """Raised when a job does not exist or belongs to another owner."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class JobValidationError(ValueError):
    """Raised for bad creation parameters."""
    pass


class JobNotExtendableError(Exception):
    """Raised when a manual extension is requested on a job that cannot be extended."""

    def __init__(self, job_id: str, reason: str):
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Job {job_id} cannot be extended: {reason}")


def _error_message(kind: str, detail: Optional[str]) -> str:
    detail = detail or "no details"
    if kind == ErrorKind.SAFETY_FILTER:
        return f"Video blocked by content policy. {detail}"
    if kind == ErrorKind.EMPTY_OUTPUT:
        return f"Video generation produced no output: {detail}"
    return f"Video generation failed: {detail}"


def _is_transient(e: Exception) -> bool:
    """
    True when the next poll may succeed without any state change.

    Auth and config errors count as transient: a rotated key or a fixed
    deployment setting brings the job back without losing it.
    """
    if isinstance(e, IngestionError):
        return e.status_code not in GONE_STATUS_CODES
    if isinstance(e, (ProviderAuthError, ProviderConfigError)):
        return True
    return isinstance(e, VideoProviderError) and e.retryable


class JobOrchestrator:
    """State machine over JobRecord rows."""

    def __init__(
        self,
        repository,
        ledger: CreditLedger,
        ingester: MediaIngester,
        router: VideoRouter,
        cfg=config,
    ):
        self.repository = repository
        self.ledger = ledger
        self.ingester = ingester
        self.router = router
        self.config = cfg

    # ─────────────────────────────────────────────────────────────
    # Creation
    # ─────────────────────────────────────────────────────────────
    def create_job(
        self,
        owner_id: str,
        account_id: str,
        prompt: str,
        video_style: str,
        duration_seconds: Optional[int] = None,
        provider_choice: Optional[str] = None,
        target_duration_seconds: Optional[int] = None,
        image: Optional[ImageInput] = None,
        session_id: Optional[str] = None,
        canvas_id: Optional[str] = None,
        product_name: Optional[str] = None,
        ad_index: Optional[int] = None,
        overlay_config: Optional[Dict[str, Any]] = None,
    ) -> JobRecord:
        """
        Write the job, debit credits and dispatch to the backend.

        Returns the job row: generating on success, failed (refunded) when the
        backend rejected the request.

        Raises:
            JobValidationError: missing owner/account/prompt/style
            ProviderUnavailableError: chosen provider unknown or not configured
        """
        if not owner_id:
            raise JobValidationError("owner_id is required")
        if not account_id:
            raise JobValidationError("account_id is required")
        if not prompt or not prompt.strip():
            raise JobValidationError("prompt is required")
        if not video_style:
            raise JobValidationError("video_style is required")

        provider = self.router.choose(provider_choice)
        duration = provider.normalize_duration(duration_seconds)

        extension_total = 0
        target = None
        if provider.tag == JobProvider.OPERATION_CHAINED:
            target = int(target_duration_seconds or self.config.CHAIN_DEFAULT_TARGET_SECONDS)
            extension_total = provider.extension_plan(target, self.config.CHAIN_MAX_EXTENSIONS)

        cost = self.ledger.job_cost(extension_total)
        job = self.repository.insert(JobRecord(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            account_id=account_id,
            prompt=prompt,
            video_style=video_style,
            provider=provider.tag,
            duration_seconds=duration,
            target_duration_seconds=target,
            extension_total=extension_total,
            credit_cost=cost,
            session_id=session_id,
            canvas_id=canvas_id,
            product_name=product_name,
            ad_index=ad_index,
            overlay_config=overlay_config,
        ))
        self.ledger.debit(job, cost)

        print(f"[VideoJobs] Created job {job.id} provider={provider.name} duration={duration}s "
              f"target={target} extensions={extension_total} cost={cost}")
        return self._dispatch(job, provider, image)

    def _dispatch(self, job: JobRecord, provider: VideoProvider, image: Optional[ImageInput]) -> JobRecord:
        try:
            if image is not None and provider.accepts_image_url:
                image.public_url = self.ingester.store_image(
                    image_path(job.owner_id, job.account_id, job.id, image.content_type),
                    image.data,
                    image.content_type,
                )
            native_id = provider.create(job.prompt, job.duration_seconds, image)
        except (VideoProviderError, StorageError) as e:
            print(f"[VideoJobs] Dispatch failed for job {job.id}: {e}")
            failed, _ = self._fail(job, ErrorKind.BACKEND, f"Dispatch failed: {e}", message=f"Video dispatch failed: {e}")
            return failed

        dispatched = self.repository.mark_dispatched(job.id, encode_ref(provider.tag, native_id))
        if dispatched is None:
            return self._reload(job)
        log_event("video_job.dispatched", {"job_id": job.id, "provider": provider.name})
        return dispatched

    # ─────────────────────────────────────────────────────────────
    # Polling
    # ─────────────────────────────────────────────────────────────
    def poll_job(self, job_id: str, owner_id: str) -> Dict[str, Any]:
        job = self.repository.get(job_id, owner_id)
        if job is None:
            raise JobNotFoundError(job_id)
        job, poll_error = self.reconcile(job)
        return self.view(job, poll_error)

    def reconcile(self, job: JobRecord) -> Tuple[JobRecord, Optional[str]]:
        """
        Bring one job up to date with its backend.

        Returns (job, poll_error). poll_error is set when the backend could not
        be reached; the row is left exactly as it was. A backend that rejects
        the stored ref outright (non-retryable 4xx) fails the job.
        """
        if job.is_terminal:
            return job, None
        if not job.external_ref:
            if job.status == JobStatus.EXTENDING and self._claim_is_stale(job):
                return self._recover_stale_claim(job)
            # queued, or a chain step whose extension is being started right now
            return job, None

        provider, native_id = self.router.for_ref(job.external_ref)
        try:
            result = provider.poll(native_id, job)
        except VideoProviderError as e:
            if _is_transient(e):
                print(f"[VideoJobs] Transient poll error for job {job.id} ({provider.name}): {e}")
                return job, e.message
            print(f"[VideoJobs] Backend rejected poll for job {job.id} ({provider.name}): {e}")
            result = PollResult.error(ErrorKind.BACKEND, e.message)

        return self._apply(job, provider, result)

    def _claim_is_stale(self, job: JobRecord) -> bool:
        return elapsed_seconds(job.updated_at) > self.config.CHAIN_CLAIM_STALE_SECONDS

    def _recover_stale_claim(self, job: JobRecord) -> Tuple[JobRecord, Optional[str]]:
        """A claimed step never got its backend ref (crash mid-trigger): save what was delivered."""
        provider = self.router.for_tag(job.provider)
        print(f"[VideoJobs] Job {job.id} step {job.extension_step} claimed without a ref since "
              f"{job.updated_at}, saving the last segment")
        return self._save_partial(
            job, provider,
            reason="extension was never started",
            expected_step=job.extension_step,
            saved_uri=job.extension_video_uri,
            delivered_extensions=job.extension_step - 1,
        )

    def _apply(self, job: JobRecord, provider: VideoProvider, result: PollResult) -> Tuple[JobRecord, Optional[str]]:
        if not result.done:
            return self._raise_progress(job, result.progress_pct), None

        if result.failed:
            if job.is_chained and job.extension_step > 0 and job.extension_video_uri:
                return self._save_partial(
                    job,
                    provider,
                    reason=result.error_detail or result.error_kind,
                    expected_step=job.extension_step,
                    saved_uri=job.extension_video_uri,
                    delivered_extensions=job.extension_step - 1,
                )
            return self._fail(job, result.error_kind, result.error_detail)

        if job.is_chained and job.extension_step < job.extension_total:
            return self._advance_chain(job, provider, result)

        return self._complete(job, provider, result)

    def _raise_progress(self, job: JobRecord, progress_pct: Optional[int]) -> JobRecord:
        if progress_pct is None or progress_pct <= job.progress_pct:
            return job
        updated = self.repository.raise_progress(job.id, progress_pct)
        return updated or self._reload(job)

    # ── terminal transitions ─────────────────────────────────
    def _fail(
        self,
        job: JobRecord,
        kind: str,
        detail: Optional[str],
        message: Optional[str] = None,
    ) -> Tuple[JobRecord, Optional[str]]:
        # once a chain step has succeeded only the failed step is given back
        amount = self.ledger.refund_amount(job, partial=job.extension_step > 0)
        updated = self.repository.finish(
            job.id,
            JobStatus.FAILED,
            job.extension_step,
            error_kind=kind,
            error_message=message or _error_message(kind, detail),
            credits_refunded=amount,
        )
        if updated is None:
            # another poller already finished this job and issued any refund
            return self._reload(job), None

        self.ledger.refund(updated, amount, REFUND_LABEL_FAILED)
        print(f"[VideoJobs] Job {job.id} failed ({kind}): {detail}")
        log_event("video_job.failed", {"job_id": job.id, "error_kind": kind, "refund": amount})
        return updated, None

    def _complete(self, job: JobRecord, provider: VideoProvider, result: PollResult) -> Tuple[JobRecord, Optional[str]]:
        try:
            source = provider.media_source(result)
            ingested = self.ingester.ingest(
                source, video_path(job.owner_id, job.account_id, job.id, job.extension_step)
            )
        except (IngestionError, VideoProviderError) as e:
            print(f"[VideoJobs] Ingestion deferred for job {job.id}: {e}")
            return job, f"Output not fetched yet: {e}"

        if job.is_chained:
            output_duration = provider.segment_seconds(job.duration_seconds, job.extension_step)
        else:
            output_duration = job.duration_seconds

        updated = self.repository.finish(
            job.id,
            JobStatus.COMPLETE,
            job.extension_step,
            raw_video_url=ingested.url,
            output_duration_seconds=output_duration,
            extension_video_uri=result.output_uri or job.extension_video_uri,
            progress_pct=100,
            warning=WARNING_INGESTION_DEGRADED if ingested.degraded else None,
        )
        if updated is None:
            return self._reload(job), None

        print(f"[VideoJobs] Job {job.id} complete: {ingested.url} ({output_duration}s)")
        log_event("video_job.complete", {
            "job_id": job.id,
            "provider": job.provider,
            "duration_seconds": output_duration,
            "degraded": ingested.degraded,
        })
        return updated, None

    # ── chained extension ────────────────────────────────────
    def _advance_chain(self, job: JobRecord, provider: VideoProvider, result: PollResult) -> Tuple[JobRecord, Optional[str]]:
        """
        Start the next chain segment. The claim is a compare-and-swap on
        extension_step, taken before the backend call: only the poller whose
        claim succeeds ever calls trigger_extension.
        """
        step = job.extension_step
        previous_uri = job.extension_video_uri

        claimed = self.repository.claim_extension(job.id, step, result.output_uri)
        if claimed is None:
            print(f"[VideoJobs] Job {job.id} step {step} already advanced by another poller")
            return self._reload(job), None

        if previous_uri:
            saved_uri, delivered = previous_uri, step - 1
        else:
            saved_uri, delivered = result.output_uri, 0

        if not result.output_uri:
            return self._save_partial(
                claimed, provider,
                reason="segment finished without a reusable video reference",
                expected_step=claimed.extension_step,
                saved_uri=saved_uri,
                saved_result=None if previous_uri else result,
                delivered_extensions=delivered,
            )

        # the claim is already written: any error here must settle the job
        try:
            native_id = provider.trigger_extension(result.output_uri, job.prompt)
        except Exception as e:
            print(f"[VideoJobs] Extension trigger failed for job {job.id} at step {step}: "
                  f"{type(e).__name__}: {e}")
            return self._save_partial(
                claimed, provider,
                reason=str(e) or type(e).__name__,
                expected_step=claimed.extension_step,
                saved_uri=saved_uri,
                delivered_extensions=delivered,
            )

        attached = self.repository.attach_extension_ref(
            job.id, claimed.extension_step, encode_ref(JobProvider.OPERATION_CHAINED, native_id)
        )
        print(f"[VideoJobs] Job {job.id} extension {claimed.extension_step}/{claimed.extension_total} started")
        log_event("video_job.extended", {"job_id": job.id, "step": claimed.extension_step})
        return attached or self._reload(job), None

    def _save_partial(
        self,
        job: JobRecord,
        provider: VideoProvider,
        reason: str,
        expected_step: int,
        saved_uri: Optional[str],
        delivered_extensions: int,
        saved_result: Optional[PollResult] = None,
    ) -> Tuple[JobRecord, Optional[str]]:
        """
        Complete a chain with the last good segment after a later step failed.
        Only the failed extension's cost is refunded.

        A manually extended job still holds its previous output, which is
        restored as-is. Otherwise the saved segment is ingested: a fetch that
        may succeed later leaves the job untouched, and a segment the backend
        no longer has fails the job with the step refund.
        """
        delivered_extensions = max(0, delivered_extensions)
        duration = provider.segment_seconds(job.duration_seconds, delivered_extensions)
        degraded = False

        if job.raw_video_url:
            video_url = job.raw_video_url
            duration = job.output_duration_seconds or duration
        elif saved_result is None and not saved_uri:
            return self._fail(job, ErrorKind.BACKEND, f"{reason}; no completed segment to save")
        else:
            source_result = saved_result or PollResult(done=True, output_uri=saved_uri)
            try:
                source = provider.media_source(source_result)
                ingested = self.ingester.ingest(
                    source, video_path(job.owner_id, job.account_id, job.id, delivered_extensions)
                )
            except (IngestionError, VideoProviderError) as e:
                if _is_transient(e):
                    print(f"[VideoJobs] Partial save deferred for job {job.id}: {e}")
                    return job, f"Last segment not fetched yet: {e}"
                print(f"[VideoJobs] Partial save failed for job {job.id}: {e}")
                return self._fail(job, ErrorKind.BACKEND, f"{reason}; last segment unavailable: {e}")
            video_url, degraded = ingested.url, ingested.degraded

        amount = self.ledger.refund_amount(job, partial=True)
        updated = self.repository.finish(
            job.id,
            JobStatus.COMPLETE,
            expected_step,
            raw_video_url=video_url,
            output_duration_seconds=duration,
            extension_video_uri=saved_uri,
            extension_step=delivered_extensions,
            extension_total=delivered_extensions,
            credits_refunded=amount,
            progress_pct=100,
            error_message=f"Extension failed ({reason}); saved the last completed segment ({duration}s)",
            warning=WARNING_INGESTION_DEGRADED if degraded else None,
        )
        if updated is None:
            return self._reload(job), None

        self.ledger.refund(updated, amount, REFUND_LABEL_PARTIAL)
        print(f"[VideoJobs] Job {job.id} saved partially at {duration}s, refunded {amount}")
        log_event("video_job.partial", {"job_id": job.id, "duration_seconds": duration, "refund": amount})
        return updated, None

    # ─────────────────────────────────────────────────────────────
    # Listing
    # ─────────────────────────────────────────────────────────────
    def list_jobs(
        self,
        owner_id: str,
        account_id: Optional[str] = None,
        session_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        reconcile: bool = True,
    ) -> List[Dict[str, Any]]:
        """Newest first. In-progress jobs are polled concurrently unless reconcile=False."""
        if not owner_id:
            raise JobValidationError("owner_id is required")
        jobs = self.repository.list_for_owner(
            owner_id,
            account_id=account_id,
            session_id=session_id,
            status=status,
            limit=limit or self.config.LIST_DEFAULT_LIMIT,
        )
        poll_errors: Dict[str, Optional[str]] = {}

        pending = [j for j in jobs if j.is_in_progress] if reconcile else []
        if pending:
            workers = max(1, min(self.config.POLL_MAX_WORKERS, len(pending)))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="video_poll") as executor:
                results = list(executor.map(self._reconcile_quietly, pending))
            refreshed = {job.id: job for job, _ in results}
            poll_errors = {job.id: err for job, err in results}
            jobs = [refreshed.get(j.id, j) for j in jobs]

        return [self.view(j, poll_errors.get(j.id)) for j in jobs]

    def _reconcile_quietly(self, job: JobRecord) -> Tuple[JobRecord, Optional[str]]:
        """One job's failure must not fail the batch."""
        try:
            return self.reconcile(job)
        except Exception as e:
            print(f"[VideoJobs] Batch poll error for job {job.id}: {type(e).__name__}: {e}")
            return job, str(e)

    # ─────────────────────────────────────────────────────────────
    # Manual extension
    # ─────────────────────────────────────────────────────────────
    def request_extension(self, job_id: str, owner_id: str) -> Dict[str, Any]:
        """
        Add one more segment to a complete Veo job, upgrading it to a chain.

        Raises:
            JobNotFoundError, JobNotExtendableError, ProviderUnavailableError,
            VideoProviderError (trigger rejected; the debit is refunded)
        """
        job = self.repository.get(job_id, owner_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.COMPLETE:
            raise JobNotExtendableError(job_id, f"status is {job.status}")
        if job.provider not in JobProvider.EXTENDABLE:
            raise JobNotExtendableError(job_id, f"provider {job.provider} does not support extension")
        if not job.extension_video_uri:
            raise JobNotExtendableError(job_id, "no reusable video reference was kept")
        if job.extension_total >= self.config.CHAIN_MAX_EXTENSIONS:
            raise JobNotExtendableError(job_id, "maximum number of extensions reached")

        chained = self.router.for_tag(JobProvider.OPERATION_CHAINED)
        configured, reason = chained.is_configured()
        if not configured:
            raise ProviderUnavailableError(chained.name, reason or "not configured")

        cost = self.ledger.extension_cost
        self.ledger.debit(job, cost, "Video extension")
        try:
            native_id = chained.trigger_extension(job.extension_video_uri, job.prompt)
        except Exception:
            self.ledger.refund(job, cost, REFUND_LABEL_PARTIAL)
            raise

        promoted = self.repository.promote_to_chained(
            job.id,
            job.extension_step,
            encode_ref(JobProvider.OPERATION_CHAINED, native_id),
            cost,
            self.config.CHAIN_EXTENSION_SECONDS,
        )
        if promoted is None:
            print(f"[VideoJobs] Job {job.id} changed during extension request, refunding")
            self.ledger.refund(job, cost, REFUND_LABEL_PARTIAL)
            return self.view(self._reload(job))

        print(f"[VideoJobs] Job {job.id} manually extended to step {promoted.extension_step}")
        log_event("video_job.manual_extension", {"job_id": job.id, "step": promoted.extension_step})
        return self.view(promoted)

    # ─────────────────────────────────────────────────────────────
    # Views
    # ─────────────────────────────────────────────────────────────
    def view(self, job: JobRecord, poll_error: Optional[str] = None) -> Dict[str, Any]:
        out = job.to_view()
        if poll_error:
            out["poll_error"] = poll_error
        if job.is_in_progress:
            try:
                provider = self.router.for_tag(job.provider)
            except ProviderUnavailableError:
                provider = None
            if provider is not None and provider.estimates_progress:
                out["estimated_time_remaining"] = provider.estimated_remaining(job)
        return out

    def _reload(self, job: JobRecord) -> JobRecord:
        return self.repository.get(job.id) or job


def build_orchestrator(cfg=config) -> JobOrchestrator:
    """Wire the orchestrator from process configuration (Postgres when DATABASE_URL is set)."""
    from videostudio.db import USE_DB
    from videostudio.services.credit_ledger import LedgerStore, MemoryLedgerStore
    from videostudio.services.job_repository import JobRepository, MemoryJobRepository

    if USE_DB:
        repository, ledger_store = JobRepository(), LedgerStore()
    else:
        print("[VideoJobs] DATABASE_URL not set - jobs and ledger are kept in memory")
        repository, ledger_store = MemoryJobRepository(), MemoryLedgerStore()

    return JobOrchestrator(
        repository=repository,
        ledger=CreditLedger(ledger_store, cfg.VIDEO_CREDIT_COST, cfg.EXTENSION_CREDIT_COST),
        ingester=MediaIngester(),
        router=VideoRouter(),
        cfg=cfg,
    )
