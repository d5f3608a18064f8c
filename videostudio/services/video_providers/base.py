"""
Video provider base - shared contract for the four backend families.

Every adapter reduces its backend's status format to a PollResult:

    done          bool, True once the backend has stopped working on the job
    progress_pct  int or None, native or estimated percent
    output_uri    gs:// or https:// descriptor of the finished video
    video_bytes   inline bytes when the backend returned them directly
    error_kind    none | backend | safety-filter | empty-output
    error_detail  human-readable message for error_kind != none

Transient conditions (timeouts, 5xx, connection resets) are never reported as a
PollResult; they raise ProviderTransientError so the orchestrator leaves the
job untouched for the next poll.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import requests
from requests.exceptions import ConnectionError as RequestsConnectionError, Timeout

from videostudio.services.job_record import ErrorKind, JobRecord
from videostudio.services.media_ingester import MediaSource
from videostudio.utils.helpers import elapsed_seconds


MAX_RETRIES = 2
BASE_RETRY_DELAY = 2        # exponential backoff base (seconds)


# ── Exceptions ───────────────────────────────────────────────
class VideoProviderError(Exception):
    """Typed exception for backend API errors."""

    def __init__(self, provider: str, status_code: int, message: str, *, retryable: bool = False):
        self.provider = provider
        self.status_code = status_code
        self.message = message
        self.retryable = retryable
        super().__init__(f"{provider} API error {status_code}: {message}")


class ProviderConfigError(VideoProviderError):
    """Raised when a provider is missing credentials or settings."""

    def __init__(self, provider: str, message: str):
        super().__init__(provider, 0, message, retryable=False)


class ProviderAuthError(VideoProviderError):
    """Raised for 401/403 authentication failures."""

    def __init__(self, provider: str, message: str = "authentication failed", status_code: int = 401):
        super().__init__(provider, status_code, message, retryable=False)


class ProviderQuotaError(VideoProviderError):
    """Raised for 429 rate-limit / quota exhaustion."""

    def __init__(self, provider: str, message: str = "rate limit exceeded"):
        super().__init__(provider, 429, message, retryable=True)


class ProviderTransientError(VideoProviderError):
    """Network failure, timeout or 5xx. The job state must not change."""

    def __init__(self, provider: str, message: str, status_code: int = 0):
        super().__init__(provider, status_code, message, retryable=True)


def _parse_error(provider: str, r: requests.Response) -> VideoProviderError:
    """Convert a non-2xx response into a typed VideoProviderError."""
    body_text = r.text[:500] if r.text else ""

    try:
        body = r.json()
        err = body.get("error", body.get("message", body_text))
        msg = err.get("message", str(err)) if isinstance(err, dict) else err
    except ValueError:
        msg = body_text

    if r.status_code in (401, 403):
        return ProviderAuthError(provider, str(msg), status_code=r.status_code)
    if r.status_code == 429:
        return ProviderQuotaError(provider, str(msg))
    if r.status_code >= 500:
        return ProviderTransientError(provider, str(msg), status_code=r.status_code)
    return VideoProviderError(provider, r.status_code, str(msg), retryable=False)


# ── Result shapes ────────────────────────────────────────────
@dataclass
class PollResult:
    done: bool
    progress_pct: Optional[int] = None
    output_uri: Optional[str] = None
    video_bytes: Optional[bytes] = None
    content_type: str = "video/mp4"
    error_kind: str = ErrorKind.NONE
    error_detail: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.done and self.error_kind != ErrorKind.NONE

    @classmethod
    def running(cls, progress_pct: Optional[int] = None) -> "PollResult":
        return cls(done=False, progress_pct=progress_pct)

    @classmethod
    def error(cls, kind: str, detail: str) -> "PollResult":
        return cls(done=True, error_kind=kind, error_detail=detail)


@dataclass
class ImageInput:
    """Optional product image. public_url is filled in once uploaded."""
    data: bytes
    content_type: str = "image/png"
    public_url: Optional[str] = None


@dataclass
class ProgressEstimate:
    """Two-tier elapsed-time heuristic for backends that report no percent."""
    short_clip_max_seconds: int = 8
    expected_short_seconds: int = 120
    expected_long_seconds: int = 180
    cap: int = 90

    def expected_seconds(self, duration_seconds: int, segments: int = 1) -> int:
        per = self.expected_short_seconds if duration_seconds <= self.short_clip_max_seconds else self.expected_long_seconds
        return per * max(1, segments)

    def percent(self, created_at: Optional[datetime], duration_seconds: int, segments: int = 1,
                now: Optional[datetime] = None) -> int:
        expected = self.expected_seconds(duration_seconds, segments)
        pct = round(elapsed_seconds(created_at, now) / expected * 100)
        return max(0, min(self.cap, pct))

    def remaining_seconds(self, created_at: Optional[datetime], duration_seconds: int, segments: int = 1,
                          now: Optional[datetime] = None) -> int:
        expected = self.expected_seconds(duration_seconds, segments)
        return max(0, int(expected - elapsed_seconds(created_at, now)))

    @classmethod
    def from_config(cls, cfg) -> "ProgressEstimate":
        return cls(
            short_clip_max_seconds=cfg.PROGRESS_SHORT_CLIP_MAX_SECONDS,
            expected_short_seconds=cfg.PROGRESS_EXPECTED_SHORT_SECONDS,
            expected_long_seconds=cfg.PROGRESS_EXPECTED_LONG_SECONDS,
            cap=cfg.PROGRESS_ESTIMATE_CAP,
        )


# ── Provider base ────────────────────────────────────────────
class VideoProvider:
    """
    Base interface every video provider must implement.

    name  - short backend name used in logs and provider choice ("sora", "veo", ...)
    tag   - JobProvider tag stored on the job row
    """

    name: str = "unknown"
    tag: str = "unknown"
    estimates_progress: bool = False
    accepts_image_url: bool = False

    def __init__(self, settings):
        self.settings = settings

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        return False, "Not implemented"

    def normalize_duration(self, seconds: Any) -> int:
        raise NotImplementedError

    def create(self, prompt: str, duration_seconds: int, image: Optional[ImageInput] = None) -> str:
        """Submit a generation and return the backend's native job id."""
        raise NotImplementedError

    def poll(self, native_id: str, job: Optional[JobRecord] = None) -> PollResult:
        raise NotImplementedError

    def media_source(self, result: PollResult) -> MediaSource:
        """Describe how the ingester should fetch a finished output."""
        return MediaSource(uri=result.output_uri, data=result.video_bytes, content_type=result.content_type)

    def estimated_remaining(self, job: JobRecord) -> Optional[int]:
        return None

    # ── HTTP helpers ─────────────────────────────────────────
    def _debug(self, method: str, url: str) -> None:
        if getattr(self.settings, "debug_http", False):
            print(f"[{self.name}] {method} {url}")

    def _get(self, url: str, headers: Dict[str, str], **kwargs) -> requests.Response:
        self._debug("GET", url)
        try:
            r = requests.get(url, headers=headers, timeout=self.settings.timeout, **kwargs)
        except (Timeout, RequestsConnectionError) as e:
            raise ProviderTransientError(self.name, f"Connection error: {e}") from e
        return r

    def _get_json(self, url: str, headers: Dict[str, str]) -> Dict[str, Any]:
        r = self._get(url, headers)
        if not r.ok:
            raise _parse_error(self.name, r)
        try:
            return r.json()
        except ValueError as e:
            raise ProviderTransientError(self.name, f"Invalid JSON from backend: {e}", status_code=r.status_code)

    def _post(self, url: str, headers: Dict[str, str], **kwargs) -> Dict[str, Any]:
        """POST with retries on 5xx / connection errors."""
        last_err: Optional[Exception] = None
        for attempt in range(1, MAX_RETRIES + 2):  # 1-indexed, +1 for initial try
            self._debug("POST", url)
            try:
                r = requests.post(url, headers=headers, timeout=self.settings.timeout, **kwargs)
                if r.ok:
                    try:
                        return r.json()
                    except ValueError as e:
                        raise VideoProviderError(self.name, r.status_code, f"Invalid JSON from backend: {e}")

                err = _parse_error(self.name, r)
                if not isinstance(err, ProviderTransientError) or attempt > MAX_RETRIES:
                    raise err
                last_err = err
            except (Timeout, RequestsConnectionError) as e:
                last_err = e
                if attempt > MAX_RETRIES:
                    raise ProviderTransientError(self.name, f"Connection error: {e}") from e

            delay = BASE_RETRY_DELAY * (2 ** (attempt - 1))
            print(f"[{self.name}] POST retry {attempt}/{MAX_RETRIES} after {delay}s: {last_err}")
            time.sleep(delay)

        raise ProviderTransientError(self.name, f"Max retries exceeded: {last_err}")
