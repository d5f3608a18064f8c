"""
Veo Video Providers - Google long-running operations (Gemini API).

Start job:
  POST {base}/models/{model}:predictLongRunning     header x-goog-api-key
Poll:
  GET  {base}/{operation_name}                     -> {"done": bool, "response"|"error"}

The operation exposes no percent. While not done, progress is estimated from
the time since the job was created (two-tier expected duration, capped at 90).

When done, the response carries one of:
- an https:// file URI (fetched with the API key header, ?key= fallback)
- a gs:// URI when storageUri is configured (fetched with a service-account token)
- inline base64 bytes

Two variants:
- VeoProvider:          plain operation (4/6/8 s clips)
- VeoExtendedProvider:  extension-capable model; 8 s initial segment, then
                        trigger_extension() feeds the previous output back in
                        to add 7 s per step
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from videostudio.services.job_record import ErrorKind, JobProvider, JobRecord
from videostudio.services.media_ingester import MediaSource
from videostudio.services.video_providers.base import (
    ImageInput,
    PollResult,
    ProgressEstimate,
    ProviderConfigError,
    VideoProvider,
)
from videostudio.services.video_providers.google_auth import ServiceAccountTokenSource


VEO_DURATIONS = (4, 6, 8)
VEO_DEFAULT_DURATION = 8
VEO_ASPECT_RATIO = "9:16"
VEO_RESOLUTION = "720p"


@dataclass
class VeoSettings:
    api_key: str
    api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    model: str = "veo-3.1-generate-preview"
    extension_model: str = "veo-3.1-generate-preview"
    output_gcs_uri: str = ""
    credentials_json: str = ""
    timeout: Tuple[int, int] = (15, 60)
    debug_http: bool = False
    estimate: ProgressEstimate = field(default_factory=ProgressEstimate)
    chain_base_seconds: int = 8
    chain_extension_seconds: int = 7

    @classmethod
    def from_config(cls, cfg) -> "VeoSettings":
        return cls(
            api_key=cfg.GEMINI_API_KEY,
            api_base=cfg.GEMINI_API_BASE.rstrip("/"),
            model=cfg.VEO_MODEL,
            extension_model=cfg.VEO_EXTENSION_MODEL,
            output_gcs_uri=cfg.VEO_OUTPUT_GCS_URI,
            credentials_json=cfg.GOOGLE_APPLICATION_CREDENTIALS_JSON,
            timeout=cfg.HTTP_TIMEOUT,
            debug_http=cfg.DEBUG_PROVIDER_HTTP,
            estimate=ProgressEstimate.from_config(cfg),
            chain_base_seconds=cfg.CHAIN_BASE_SECONDS,
            chain_extension_seconds=cfg.CHAIN_EXTENSION_SECONDS,
        )


class VeoProvider(VideoProvider):
    """Google Veo operation backend: done flag only, estimated progress."""

    name = "veo"
    tag = JobProvider.OPERATION
    estimates_progress = True

    def __init__(self, settings: VeoSettings, token_source: Optional[ServiceAccountTokenSource] = None):
        super().__init__(settings)
        self.token_source = token_source or ServiceAccountTokenSource(settings.credentials_json)

    @property
    def model(self) -> str:
        return self.settings.model

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        if not self.settings.api_key:
            return False, "GEMINI_API_KEY is not set"
        if self.settings.output_gcs_uri and not self.token_source.is_configured():
            return False, "VEO_OUTPUT_GCS_URI requires GOOGLE_APPLICATION_CREDENTIALS_JSON"
        return True, None

    def _headers(self) -> Dict[str, str]:
        if not self.settings.api_key:
            raise ProviderConfigError(self.name, "GEMINI_API_KEY is not set")
        return {"x-goog-api-key": self.settings.api_key, "Content-Type": "application/json"}

    def normalize_duration(self, seconds: Any) -> int:
        try:
            seconds = int(seconds)
        except (TypeError, ValueError):
            return VEO_DEFAULT_DURATION
        return seconds if seconds in VEO_DURATIONS else VEO_DEFAULT_DURATION

    # ── submit ───────────────────────────────────────────────
    def _start(self, instance: Dict[str, Any], duration_seconds: int) -> str:
        parameters: Dict[str, Any] = {
            "aspectRatio": VEO_ASPECT_RATIO,
            "resolution": VEO_RESOLUTION,
            "durationSeconds": duration_seconds,
        }
        if self.settings.output_gcs_uri:
            parameters["storageUri"] = self.settings.output_gcs_uri

        url = f"{self.settings.api_base}/models/{self.model}:predictLongRunning"
        resp = self._post(url, self._headers(), json={"instances": [instance], "parameters": parameters})

        operation_name = resp.get("name")
        if not operation_name:
            raise ProviderConfigError(self.name, f"No operation name in response: {json.dumps(resp)[:300]}")
        return operation_name

    def create(self, prompt: str, duration_seconds: int, image: Optional[ImageInput] = None) -> str:
        seconds = self.normalize_duration(duration_seconds)
        instance: Dict[str, Any] = {"prompt": prompt}
        if image is not None:
            instance["image"] = {
                "bytesBase64Encoded": base64.b64encode(image.data).decode("ascii"),
                "mimeType": image.content_type,
            }
        operation_name = self._start(instance, seconds)
        print(f"[Veo] operation created: {operation_name} model={self.model} duration={seconds}s "
              f"image={image is not None}")
        return operation_name

    # ── poll ─────────────────────────────────────────────────
    def _segments(self, job: Optional[JobRecord]) -> int:
        return 1

    def _estimate_start(self, job: JobRecord):
        return job.created_at

    def poll(self, native_id: str, job: Optional[JobRecord] = None) -> PollResult:
        result = self._get_json(f"{self.settings.api_base}/{native_id.lstrip('/')}", self._headers())

        if not result.get("done"):
            if job is None:
                return PollResult.running()
            return PollResult.running(self.settings.estimate.percent(
                self._estimate_start(job), job.duration_seconds, self._segments(job)
            ))

        if "error" in result:
            error_info = result["error"] or {}
            error_msg = error_info.get("message", "Unknown error")
            print(f"[Veo] operation failed: {error_info.get('code', 0)} - {error_msg}")
            return PollResult.error(ErrorKind.BACKEND, error_msg)

        output = _extract_video_data(result)
        if output.get("video_bytes"):
            return PollResult(done=True, progress_pct=100, video_bytes=output["video_bytes"])
        if output.get("video_url"):
            return PollResult(done=True, progress_pct=100, output_uri=output["video_url"])

        filtered_count, filtered_reasons = _filtered_info(result)
        if filtered_count or filtered_reasons:
            reasons = ", ".join(str(r) for r in filtered_reasons) or f"{filtered_count} output(s) filtered"
            print(f"[Veo] content filtered: {reasons}")
            return PollResult.error(
                ErrorKind.SAFETY_FILTER,
                f"Blocked by content policy: {reasons}",
            )

        print(f"[Veo] no video in response: {json.dumps(result, default=str)[:500]}")
        return PollResult.error(ErrorKind.EMPTY_OUTPUT, "Generation finished without a video")

    def estimated_remaining(self, job: JobRecord) -> Optional[int]:
        return self.settings.estimate.remaining_seconds(
            self._estimate_start(job), job.duration_seconds, self._segments(job)
        )

    # ── output ───────────────────────────────────────────────
    def media_source(self, result: PollResult) -> MediaSource:
        if result.video_bytes:
            return MediaSource(data=result.video_bytes, content_type=result.content_type)

        uri = result.output_uri or ""
        if uri.startswith("gs://"):
            bucket, _, path = uri[5:].partition("/")
            return MediaSource(
                uri=f"https://storage.googleapis.com/{bucket}/{path}",
                headers={"Authorization": f"Bearer {self.token_source.token()}"},
            )

        return MediaSource(
            uri=uri,
            headers={"x-goog-api-key": self.settings.api_key},
            fallback_params={"key": self.settings.api_key},
        )


class VeoExtendedProvider(VeoProvider):
    """
    Extension-capable Veo model.

    The initial segment is always chain_base_seconds long; each
    trigger_extension() adds chain_extension_seconds.
    """

    name = "veo-ext"
    tag = JobProvider.OPERATION_CHAINED

    @property
    def model(self) -> str:
        return self.settings.extension_model

    def normalize_duration(self, seconds: Any) -> int:
        return self.settings.chain_base_seconds

    def extension_plan(self, target_seconds: int, max_extensions: int) -> int:
        """Number of extensions needed to reach target_seconds."""
        base = self.settings.chain_base_seconds
        step = self.settings.chain_extension_seconds
        if target_seconds <= base:
            return 0
        needed = -(-(target_seconds - base) // step)  # ceil
        return min(needed, max_extensions)

    def segment_seconds(self, base_seconds: int, extension_step: int) -> int:
        """Length of the video produced by the operation running at a chain step."""
        return base_seconds + self.settings.chain_extension_seconds * max(0, extension_step)

    def _segments(self, job: Optional[JobRecord]) -> int:
        if job is None:
            return 1
        if job.extension_started_at:
            # manual extension: only the segments still to run
            return max(1, job.extension_total - job.extension_step + 1)
        return job.extension_total + 1

    def _estimate_start(self, job: JobRecord):
        return job.extension_started_at or job.created_at

    def trigger_extension(self, last_output_uri: str, prompt: str) -> str:
        """Start an operation that continues last_output_uri. Returns the new operation name."""
        if not last_output_uri:
            raise ProviderConfigError(self.name, "No previous output to extend")
        video_key = "gcsUri" if last_output_uri.startswith("gs://") else "uri"
        instance = {"prompt": prompt, "video": {video_key: last_output_uri}}
        operation_name = self._start(instance, self.settings.chain_extension_seconds)
        print(f"[Veo] extension operation created: {operation_name} from {last_output_uri[:80]}")
        return operation_name


# ── Response parsing ─────────────────────────────────────────
def _extract_video_data(result: Dict[str, Any]) -> Dict[str, Any]:
    """
    Pull the single output out of a finished operation.

    Returns {"video_bytes": bytes}, {"video_url": str} or {}.
    """
    response = result.get("response") or {}

    # Gemini API: response.generateVideoResponse.generatedSamples[0].video
    video_response = response.get("generateVideoResponse") or {}
    samples = video_response.get("generatedSamples") or response.get("generatedSamples") or []
    items = [s.get("video") or {} for s in samples]
    # Vertex-style: response.videos[0]
    items.extend(response.get("videos") or [])

    for item in items:
        b64_data = item.get("bytesBase64Encoded")
        if b64_data:
            try:
                return {"video_bytes": base64.b64decode(b64_data)}
            except (ValueError, TypeError) as e:
                print(f"[Veo] failed to decode base64 video: {e}")
        uri = item.get("uri") or item.get("gcsUri")
        if uri:
            return {"video_url": uri}
    return {}


def _filtered_info(result: Dict[str, Any]) -> Tuple[int, list]:
    response = result.get("response") or {}
    video_response = response.get("generateVideoResponse") or {}
    count = video_response.get("raiMediaFilteredCount") or response.get("raiMediaFilteredCount") or 0
    reasons = video_response.get("raiMediaFilteredReasons") or response.get("raiMediaFilteredReasons") or []
    try:
        count = int(count)
    except (TypeError, ValueError):
        count = 0
    return count, list(reasons)
