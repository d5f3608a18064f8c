"""
Sora Video Provider - OpenAI video API (percent-progress backend).

Endpoints:
  POST /v1/videos                 -> create (multipart form)
  GET  /v1/videos/{id}            -> queued | in_progress | completed | failed, progress 0-100
  GET  /v1/videos/{id}/content    -> mp4 bytes (second call after completed)

The content endpoint answers 410 (or 404) once the rendered file has expired.
That is terminal, reported as empty-output so the job fails and is refunded.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from videostudio.services.job_record import ErrorKind, JobProvider, JobRecord
from videostudio.services.video_providers.base import (
    ImageInput,
    PollResult,
    ProviderConfigError,
    VideoProvider,
    _parse_error,
)


# Sora accepts exactly these clip lengths
SORA_DURATIONS = (4, 8, 12)
SORA_DEFAULT_DURATION = 8


@dataclass
class SoraSettings:
    api_key: str
    api_base: str = "https://api.openai.com/v1"
    model: str = "sora-2-pro"
    size: str = "1024x1792"
    timeout: Tuple[int, int] = (15, 60)
    debug_http: bool = False

    @classmethod
    def from_config(cls, cfg) -> "SoraSettings":
        return cls(
            api_key=cfg.OPENAI_API_KEY,
            api_base=cfg.OPENAI_API_BASE.rstrip("/"),
            model=cfg.SORA_MODEL,
            size=cfg.SORA_SIZE,
            timeout=cfg.HTTP_TIMEOUT,
            debug_http=cfg.DEBUG_PROVIDER_HTTP,
        )


class SoraProvider(VideoProvider):
    """OpenAI Sora: native percent while running, content fetched in a second call."""

    name = "sora"
    tag = JobProvider.PERCENT_PROGRESS

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        if not self.settings.api_key:
            return False, "OPENAI_API_KEY is not set"
        return True, None

    def _headers(self) -> Dict[str, str]:
        if not self.settings.api_key:
            raise ProviderConfigError(self.name, "OPENAI_API_KEY is not set")
        return {"Authorization": f"Bearer {self.settings.api_key}"}

    def normalize_duration(self, seconds: Any) -> int:
        try:
            seconds = int(seconds)
        except (TypeError, ValueError):
            return SORA_DEFAULT_DURATION
        return seconds if seconds in SORA_DURATIONS else SORA_DEFAULT_DURATION

    # ── submit ───────────────────────────────────────────────
    def create(self, prompt: str, duration_seconds: int, image: Optional[ImageInput] = None) -> str:
        seconds = self.normalize_duration(duration_seconds)
        form = {
            "model": (None, self.settings.model),
            "prompt": (None, prompt),
            "seconds": (None, str(seconds)),
            "size": (None, self.settings.size),
        }
        resp = self._post(f"{self.settings.api_base}/videos", self._headers(), files=form)

        video_id = resp.get("id")
        if not video_id:
            raise ProviderConfigError(self.name, f"No video id in response: {resp}")

        print(f"[Sora] video submitted -> id={video_id}, seconds={seconds}, size={self.settings.size}")
        return video_id

    # ── poll ─────────────────────────────────────────────────
    def poll(self, native_id: str, job: Optional[JobRecord] = None) -> PollResult:
        resp = self._get_json(f"{self.settings.api_base}/videos/{native_id}", self._headers())
        status = (resp.get("status") or "").lower()

        if status in ("queued", "in_progress"):
            return PollResult.running(_as_percent(resp.get("progress")))

        if status == "failed":
            error = resp.get("error") or {}
            detail = error.get("message") if isinstance(error, dict) else str(error)
            print(f"[Sora] video {native_id} failed: {detail}")
            return PollResult.error(ErrorKind.BACKEND, detail or "Sora generation failed")

        if status == "completed":
            return self._fetch_content(native_id)

        print(f"[Sora] video {native_id} unknown status '{status}', treating as running")
        return PollResult.running(_as_percent(resp.get("progress")))

    def _fetch_content(self, native_id: str) -> PollResult:
        r = self._get(f"{self.settings.api_base}/videos/{native_id}/content", self._headers())

        if r.status_code in (404, 410):
            print(f"[Sora] content for {native_id} is gone (HTTP {r.status_code})")
            return PollResult.error(
                ErrorKind.EMPTY_OUTPUT,
                f"Video content expired before it could be saved (HTTP {r.status_code})",
            )
        if not r.ok:
            raise _parse_error(self.name, r)

        content_type = r.headers.get("Content-Type", "video/mp4")
        if not content_type.startswith("video/"):
            content_type = "video/mp4"
        print(f"[Sora] downloaded {len(r.content)} bytes for {native_id}")
        return PollResult(done=True, progress_pct=100, video_bytes=r.content, content_type=content_type)


def _as_percent(value: Any) -> Optional[int]:
    try:
        return max(0, min(100, int(round(float(value)))))
    except (TypeError, ValueError):
        return None
