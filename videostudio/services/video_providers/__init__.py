"""Video backends, one adapter per protocol family."""

from videostudio.services.video_providers.base import (
    ImageInput,
    PollResult,
    ProgressEstimate,
    ProviderAuthError,
    ProviderConfigError,
    ProviderQuotaError,
    ProviderTransientError,
    VideoProvider,
    VideoProviderError,
)
from videostudio.services.video_providers.runway_provider import RunwayProvider, RunwaySettings, condense_prompt
from videostudio.services.video_providers.sora_provider import SoraProvider, SoraSettings
from videostudio.services.video_providers.veo_provider import VeoExtendedProvider, VeoProvider, VeoSettings

__all__ = [
    "ImageInput",
    "PollResult",
    "ProgressEstimate",
    "ProviderAuthError",
    "ProviderConfigError",
    "ProviderQuotaError",
    "ProviderTransientError",
    "RunwayProvider",
    "RunwaySettings",
    "SoraProvider",
    "SoraSettings",
    "VeoExtendedProvider",
    "VeoProvider",
    "VeoSettings",
    "VideoProvider",
    "VideoProviderError",
    "condense_prompt",
]
