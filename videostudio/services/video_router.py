"""
Video Provider Router.

Two jobs:
1. External-ref codec. The stored external_ref carries the provider tag as a
   prefix so polling can resume from the row alone after a restart:

       sora:<video id>        percent-progress (bare ids are legacy Sora refs)
       veo:<operation name>   operation
       veoext:<operation>     operation-chained
       runway:<task id>       task-ratio

2. Provider registry. Adapters are built from explicit settings, looked up by
   tag (polling) or by user-facing choice (creation). An unconfigured provider
   is a normal condition: ProviderUnavailableError, never an import-time crash.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from videostudio.config import config
from videostudio.services.job_record import JobProvider
from videostudio.services.video_providers.base import VideoProvider
from videostudio.services.video_providers.runway_provider import RunwayProvider, RunwaySettings
from videostudio.services.video_providers.sora_provider import SoraProvider, SoraSettings
from videostudio.services.video_providers.veo_provider import VeoExtendedProvider, VeoProvider, VeoSettings


# ── Errors ────────────────────────────────────────────────────
class ProviderUnavailableError(Exception):
    """Raised when the chosen provider is unknown or not configured."""

    def __init__(self, provider: str, reason: str = ""):
        self.provider = provider
        self.reason = reason
        super().__init__(f"Video provider '{provider}' is unavailable{': ' + reason if reason else ''}")


# ── External-ref codec ────────────────────────────────────────
REF_PREFIXES: Dict[str, str] = {
    JobProvider.PERCENT_PROGRESS: "sora",
    JobProvider.OPERATION: "veo",
    JobProvider.OPERATION_CHAINED: "veoext",
    JobProvider.TASK_RATIO: "runway",
}
_PREFIX_TO_TAG = {prefix: tag for tag, prefix in REF_PREFIXES.items()}


def encode_ref(tag: str, native_id: str) -> str:
    if tag not in REF_PREFIXES:
        raise ValueError(f"Unknown provider tag: {tag}")
    return f"{REF_PREFIXES[tag]}:{native_id}"


def decode_ref(ref: str) -> Tuple[str, str]:
    """Split a stored ref into (tag, native_id). Unprefixed refs are Sora ids."""
    if not ref:
        raise ValueError("Empty external ref")
    prefix, sep, rest = ref.partition(":")
    if sep and prefix in _PREFIX_TO_TAG:
        return _PREFIX_TO_TAG[prefix], rest
    return JobProvider.PERCENT_PROGRESS, ref


# ── Provider choice aliases ───────────────────────────────────
_CHOICE_ALIASES: Dict[str, str] = {
    "sora": JobProvider.PERCENT_PROGRESS,
    "openai": JobProvider.PERCENT_PROGRESS,
    JobProvider.PERCENT_PROGRESS: JobProvider.PERCENT_PROGRESS,
    "veo": JobProvider.OPERATION,
    "google": JobProvider.OPERATION,
    JobProvider.OPERATION: JobProvider.OPERATION,
    "veo-ext": JobProvider.OPERATION_CHAINED,
    "veo_ext": JobProvider.OPERATION_CHAINED,
    "veoext": JobProvider.OPERATION_CHAINED,
    JobProvider.OPERATION_CHAINED: JobProvider.OPERATION_CHAINED,
    "runway": JobProvider.TASK_RATIO,
    JobProvider.TASK_RATIO: JobProvider.TASK_RATIO,
}


def resolve_choice(choice: Optional[str], default: Optional[str] = None) -> str:
    """Map a user-facing provider choice to a tag; falls back to VIDEO_PROVIDER."""
    key = (choice or default or config.VIDEO_PROVIDER or "sora").strip().lower()
    if key not in _CHOICE_ALIASES:
        raise ProviderUnavailableError(key, "unknown provider")
    return _CHOICE_ALIASES[key]


def build_default_providers(cfg=config) -> List[VideoProvider]:
    """Adapters built from the process configuration."""
    veo_settings = VeoSettings.from_config(cfg)
    return [
        SoraProvider(SoraSettings.from_config(cfg)),
        VeoProvider(veo_settings),
        VeoExtendedProvider(veo_settings),
        RunwayProvider(RunwaySettings.from_config(cfg)),
    ]


# ── Router ────────────────────────────────────────────────────
class VideoRouter:
    """Look up adapters by tag or user-facing choice."""

    def __init__(self, providers: Optional[List[VideoProvider]] = None):
        self.providers = providers if providers is not None else build_default_providers()
        self._by_tag = {p.tag: p for p in self.providers}

    def status(self) -> Dict[str, Dict[str, object]]:
        out = {}
        for p in self.providers:
            ok, reason = p.is_configured()
            out[p.name] = {"tag": p.tag, "configured": ok, "reason": reason}
        return out

    def for_tag(self, tag: str) -> VideoProvider:
        """Adapter for a stored tag. Does not check configuration (polling must still try)."""
        provider = self._by_tag.get(tag)
        if provider is None:
            raise ProviderUnavailableError(tag, "no adapter registered")
        return provider

    def for_ref(self, ref: str) -> Tuple[VideoProvider, str]:
        tag, native_id = decode_ref(ref)
        return self.for_tag(tag), native_id

    def choose(self, choice: Optional[str]) -> VideoProvider:
        """Adapter for a creation request; must be configured."""
        tag = resolve_choice(choice)
        provider = self.for_tag(tag)
        configured, reason = provider.is_configured()
        if not configured:
            print(f"[VideoRouter] {provider.name} not configured: {reason}")
            raise ProviderUnavailableError(provider.name, reason or "not configured")
        return provider
