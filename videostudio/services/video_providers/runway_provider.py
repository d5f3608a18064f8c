"""
Runway Video Provider - Runway tasks API (task-ratio backend).

Auth:     Authorization: Bearer <RUNWAY_API_KEY>
Version:  X-Runway-Version: 2024-11-06

Endpoints used:
  POST /v1/text_to_video   -> start text-to-video task
  POST /v1/image_to_video  -> start image-to-video task (promptImage is a public URL)
  GET  /v1/tasks/{id}      -> PENDING | THROTTLED | RUNNING | SUCCEEDED | FAILED,
                              optional progress ratio 0-1

Output URLs on SUCCEEDED are pre-signed and ephemeral (24-48 h); they need no
auth, so ingestion must happen on the poll that first sees SUCCEEDED.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from videostudio.services.job_record import ErrorKind, JobProvider, JobRecord
from videostudio.services.video_providers.base import (
    ImageInput,
    PollResult,
    ProviderConfigError,
    VideoProvider,
)


RUNWAY_RATIO = "720:1280"   # 9:16 portrait
RUNWAY_MIN_DURATION = 2
RUNWAY_MAX_DURATION = 10
RUNWAY_DEFAULT_DURATION = 8
PROMPT_MAX_CHARS = 1000
PROMPT_MIN_SENTENCE_CUT = 600


@dataclass
class RunwaySettings:
    api_key: str
    api_base: str = "https://api.dev.runwayml.com"
    api_version: str = "2024-11-06"
    model: str = "gen4.5"
    timeout: Tuple[int, int] = (15, 60)
    debug_http: bool = False

    @classmethod
    def from_config(cls, cfg) -> "RunwaySettings":
        return cls(
            api_key=cfg.RUNWAY_API_KEY,
            api_base=cfg.RUNWAY_API_BASE.rstrip("/"),
            api_version=cfg.RUNWAY_API_VERSION,
            model=cfg.RUNWAY_MODEL,
            timeout=cfg.HTTP_TIMEOUT,
            debug_http=cfg.DEBUG_PROVIDER_HTTP,
        )


# ── Prompt condensation ──────────────────────────────────────
# Structured prompts written for Sora/Veo carry block headers, beat markers
# and technical directives that Runway does not need.
_CONDENSE_RULES: List[Tuple[str, str, int]] = [
    (r"\[(?:Scene|Subject|Action|Product|Mood & Atmosphere|Technical|Dialogue)\]\n?", "", 0),
    (r"Vertical 9:16 portrait[^.]*\.\s*(?:Professional ad quality\.?\s*)?(?:Cinematic lighting\.?\s*)?", "", re.I),
    (r"Pacing:[^.]*\.[^.]*\.", "", 0),
    (r"\bBeat \d+:\s*", "", 0),
    (r"\bOpening:\s*", "", 0),
    (r"\bMid:\s*", "", 0),
    (r"\bClosing:\s*", "", 0),
    (r"\b(?:the kind of (?:shot|video|frame) that)[^.]*\.", "", re.I),
    (r"\b(?:every frame (?:is|feels|looks)[^.]*\.)", "", re.I),
    (r"\b(?:the viewer feels[^.]*\.)", "", re.I),
    (r"\b(?:nothing else competes for attention\.?\s*)", "", re.I),
    (r"\bNo (?:dialogue|music|background music)[^.]*\.\s*", "", re.I),
    (r"\n{2,}", " ", 0),
    (r"\n", " ", 0),
    (r"\s{2,}", " ", 0),
    (r"\.\s*\.", ".", 0),
]


def condense_prompt(prompt: str) -> str:
    """Shrink a prompt to Runway's 1000-char limit, keeping whole sentences where possible."""
    if len(prompt) <= PROMPT_MAX_CHARS:
        return prompt

    condensed = prompt
    for pattern, replacement, flags in _CONDENSE_RULES:
        condensed = re.sub(pattern, replacement, condensed, flags=flags)
    condensed = condensed.strip()

    if len(condensed) > PROMPT_MAX_CHARS:
        condensed = condensed[:PROMPT_MAX_CHARS]
        last_period = condensed.rfind(".")
        if last_period > PROMPT_MIN_SENTENCE_CUT:
            condensed = condensed[:last_period + 1]

    print(f"[Runway] prompt condensed: {len(prompt)} -> {len(condensed)} chars")
    return condensed


# ── Provider class ───────────────────────────────────────────
class RunwayProvider(VideoProvider):
    """Runway tasks: coarse status enum plus an optional progress ratio."""

    name = "runway"
    tag = JobProvider.TASK_RATIO
    accepts_image_url = True

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        if not self.settings.api_key:
            return False, "RUNWAY_API_KEY is not set"
        return True, None

    def _headers(self) -> Dict[str, str]:
        if not self.settings.api_key:
            raise ProviderConfigError(self.name, "RUNWAY_API_KEY is not set")
        return {
            "Authorization": f"Bearer {self.settings.api_key}",
            "X-Runway-Version": self.settings.api_version,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def normalize_duration(self, seconds: Any) -> int:
        try:
            seconds = int(seconds)
        except (TypeError, ValueError):
            return RUNWAY_DEFAULT_DURATION
        return max(RUNWAY_MIN_DURATION, min(RUNWAY_MAX_DURATION, seconds))

    # ── submit ───────────────────────────────────────────────
    def create(self, prompt: str, duration_seconds: int, image: Optional[ImageInput] = None) -> str:
        body: Dict[str, Any] = {
            "model": self.settings.model,
            "promptText": condense_prompt(prompt),
            "ratio": RUNWAY_RATIO,
            "duration": self.normalize_duration(duration_seconds),
        }
        path = "/v1/text_to_video"
        if image is not None and image.public_url:
            body["promptImage"] = image.public_url
            path = "/v1/image_to_video"

        resp = self._post(f"{self.settings.api_base}{path}", self._headers(), json=body)

        task_id = resp.get("id")
        if not task_id:
            raise ProviderConfigError(self.name, f"No task id in response: {resp}")

        print(f"[Runway] {path.rsplit('/', 1)[-1]} submitted -> task_id={task_id}")
        return task_id

    # ── poll ─────────────────────────────────────────────────
    def poll(self, native_id: str, job: Optional[JobRecord] = None) -> PollResult:
        headers = self._headers()
        headers.pop("Content-Type", None)  # no body on GET
        resp = self._get_json(f"{self.settings.api_base}/v1/tasks/{native_id}", headers)

        raw_status = (resp.get("status") or "UNKNOWN").upper()

        if raw_status == "SUCCEEDED":
            outputs: List[str] = resp.get("output") or []
            if not outputs:
                return PollResult.error(ErrorKind.EMPTY_OUTPUT, "Runway task succeeded without output")
            return PollResult(done=True, progress_pct=100, output_uri=outputs[0])

        if raw_status == "FAILED":
            failure = resp.get("failure") or resp.get("error") or "Unknown failure"
            print(f"[Runway] task {native_id} failed: {failure}")
            return PollResult.error(ErrorKind.BACKEND, str(failure))

        if raw_status in ("PENDING", "THROTTLED", "RUNNING"):
            return PollResult.running(_ratio_to_percent(resp.get("progress")))

        print(f"[Runway] task {native_id} unknown status '{raw_status}', treating as running")
        return PollResult.running()


def _ratio_to_percent(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        ratio = float(value)
    except (TypeError, ValueError):
        return None
    return max(0, min(100, int(round(ratio * 100))))
