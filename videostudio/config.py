"""
Configuration module for the video studio backend.
Centralizes all environment variables and settings.

Usage:
    from videostudio.config import config

    if config.HAS_DATABASE:
        print("Using Postgres job store")

    timeout = config.HTTP_TIMEOUT
"""

import os
from typing import List, Tuple
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load .env file (safe - won't override existing env vars)
load_dotenv()


def _get_env(key: str, default: str = "") -> str:
    """Safely get and strip an environment variable."""
    return os.getenv(key, default).strip()


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get an environment variable as boolean."""
    val = _get_env(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int = 0) -> int:
    """Get an environment variable as integer."""
    try:
        return int(_get_env(key, str(default)))
    except ValueError:
        return default


def _get_env_list(key: str, default: List[str] = None) -> List[str]:
    """Get a comma-separated environment variable as list."""
    val = _get_env(key, "")
    if not val:
        return default or []
    return [item.strip() for item in val.split(",") if item.strip()]


def _fix_database_url(url: str) -> str:
    """psycopg3 requires 'postgresql://' rather than the legacy 'postgres://'."""
    if url and url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


@dataclass
class Config:
    """
    Application configuration with all settings.
    Loaded from environment variables with sensible defaults.
    """

    # ─────────────────────────────────────────────────────────────
    # Server
    # ─────────────────────────────────────────────────────────────
    PORT: int = field(default_factory=lambda: _get_env_int("PORT", 5001))
    HOST: str = field(default_factory=lambda: _get_env("HOST", "0.0.0.0"))
    ALLOWED_ORIGINS: List[str] = field(default_factory=lambda: _get_env_list("ALLOWED_ORIGINS"))

    @property
    def ALLOW_ALL_ORIGINS(self) -> bool:
        """No explicit origin list means development-style open CORS."""
        return not self.ALLOWED_ORIGINS

    # ─────────────────────────────────────────────────────────────
    # Database
    # ─────────────────────────────────────────────────────────────
    _DATABASE_URL_RAW: str = field(default_factory=lambda: _get_env("DATABASE_URL"))
    DB_CONNECT_TIMEOUT: int = field(default_factory=lambda: _get_env_int("DB_CONNECT_TIMEOUT", 10))
    APP_SCHEMA: str = field(default_factory=lambda: _get_env("APP_SCHEMA", "videostudio"))

    @property
    def DATABASE_URL(self) -> str:
        """Database connection URL (fixed for psycopg3 compatibility)."""
        return _fix_database_url(self._DATABASE_URL_RAW)

    @property
    def HAS_DATABASE(self) -> bool:
        """True if database URL is configured."""
        return bool(self._DATABASE_URL_RAW)

    # ─────────────────────────────────────────────────────────────
    # Object storage (S3)
    # ─────────────────────────────────────────────────────────────
    AWS_REGION: str = field(default_factory=lambda: _get_env("AWS_REGION", "eu-west-2"))
    AWS_BUCKET_MEDIA: str = field(default_factory=lambda: _get_env("AWS_BUCKET_MEDIA"))
    AWS_ACCESS_KEY_ID: str = field(default_factory=lambda: _get_env("AWS_ACCESS_KEY_ID"))
    AWS_SECRET_ACCESS_KEY: str = field(default_factory=lambda: _get_env("AWS_SECRET_ACCESS_KEY"))
    # Optional CDN in front of the bucket, e.g. https://media.example.com
    MEDIA_PUBLIC_BASE_URL: str = field(default_factory=lambda: _get_env("MEDIA_PUBLIC_BASE_URL"))

    # ─────────────────────────────────────────────────────────────
    # Video providers
    # ─────────────────────────────────────────────────────────────
    # Default provider when a request does not name one: sora, veo, veo-ext, runway
    VIDEO_PROVIDER: str = field(default_factory=lambda: _get_env("VIDEO_PROVIDER", "sora").lower())

    # OpenAI Sora
    OPENAI_API_KEY: str = field(default_factory=lambda: _get_env("OPENAI_API_KEY"))
    OPENAI_API_BASE: str = field(default_factory=lambda: _get_env("OPENAI_API_BASE", "https://api.openai.com/v1"))
    SORA_MODEL: str = field(default_factory=lambda: _get_env("SORA_MODEL", "sora-2-pro"))
    SORA_SIZE: str = field(default_factory=lambda: _get_env("SORA_SIZE", "1024x1792"))

    # Google Veo (Gemini API) + optional service account for gs:// outputs
    GEMINI_API_KEY: str = field(default_factory=lambda: _get_env("GEMINI_API_KEY") or _get_env("GOOGLE_API_KEY"))
    GEMINI_API_BASE: str = field(
        default_factory=lambda: _get_env("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
    )
    VEO_MODEL: str = field(default_factory=lambda: _get_env("VEO_MODEL", "veo-3.1-generate-preview"))
    VEO_EXTENSION_MODEL: str = field(default_factory=lambda: _get_env("VEO_EXTENSION_MODEL", "veo-3.1-generate-preview"))
    VEO_OUTPUT_GCS_URI: str = field(default_factory=lambda: _get_env("VEO_OUTPUT_GCS_URI"))
    GOOGLE_APPLICATION_CREDENTIALS_JSON: str = field(
        default_factory=lambda: _get_env("GOOGLE_APPLICATION_CREDENTIALS_JSON")
    )

    # Runway
    RUNWAY_API_KEY: str = field(default_factory=lambda: _get_env("RUNWAY_API_KEY"))
    RUNWAY_API_BASE: str = field(default_factory=lambda: _get_env("RUNWAY_API_BASE", "https://api.dev.runwayml.com"))
    RUNWAY_API_VERSION: str = field(default_factory=lambda: _get_env("RUNWAY_API_VERSION", "2024-11-06"))
    RUNWAY_MODEL: str = field(default_factory=lambda: _get_env("RUNWAY_MODEL", "gen4.5"))

    # HTTP timeouts for backend calls: (connect, read) seconds
    HTTP_CONNECT_TIMEOUT: int = field(default_factory=lambda: _get_env_int("HTTP_CONNECT_TIMEOUT", 15))
    HTTP_READ_TIMEOUT: int = field(default_factory=lambda: _get_env_int("HTTP_READ_TIMEOUT", 60))
    DOWNLOAD_TIMEOUT: int = field(default_factory=lambda: _get_env_int("DOWNLOAD_TIMEOUT", 300))

    @property
    def HTTP_TIMEOUT(self) -> Tuple[int, int]:
        return (self.HTTP_CONNECT_TIMEOUT, self.HTTP_READ_TIMEOUT)

    # ─────────────────────────────────────────────────────────────
    # Progress estimation (providers without native percent)
    # ─────────────────────────────────────────────────────────────
    # Two-tier heuristic: short clips (<= threshold) vs long clips.
    PROGRESS_SHORT_CLIP_MAX_SECONDS: int = field(
        default_factory=lambda: _get_env_int("PROGRESS_SHORT_CLIP_MAX_SECONDS", 8)
    )
    PROGRESS_EXPECTED_SHORT_SECONDS: int = field(
        default_factory=lambda: _get_env_int("PROGRESS_EXPECTED_SHORT_SECONDS", 120)
    )
    PROGRESS_EXPECTED_LONG_SECONDS: int = field(
        default_factory=lambda: _get_env_int("PROGRESS_EXPECTED_LONG_SECONDS", 180)
    )
    PROGRESS_ESTIMATE_CAP: int = field(default_factory=lambda: _get_env_int("PROGRESS_ESTIMATE_CAP", 90))

    # ─────────────────────────────────────────────────────────────
    # Chained extension
    # ─────────────────────────────────────────────────────────────
    CHAIN_BASE_SECONDS: int = field(default_factory=lambda: _get_env_int("CHAIN_BASE_SECONDS", 8))
    CHAIN_EXTENSION_SECONDS: int = field(default_factory=lambda: _get_env_int("CHAIN_EXTENSION_SECONDS", 7))
    CHAIN_DEFAULT_TARGET_SECONDS: int = field(
        default_factory=lambda: _get_env_int("CHAIN_DEFAULT_TARGET_SECONDS", 15)
    )
    CHAIN_MAX_EXTENSIONS: int = field(default_factory=lambda: _get_env_int("CHAIN_MAX_EXTENSIONS", 20))
    # A claimed segment with no backend ref after this long is treated as abandoned
    CHAIN_CLAIM_STALE_SECONDS: int = field(
        default_factory=lambda: _get_env_int("CHAIN_CLAIM_STALE_SECONDS", 300)
    )

    # ─────────────────────────────────────────────────────────────
    # Credits
    # ─────────────────────────────────────────────────────────────
    VIDEO_CREDIT_COST: int = field(default_factory=lambda: _get_env_int("VIDEO_CREDIT_COST", 50))
    EXTENSION_CREDIT_COST: int = field(default_factory=lambda: _get_env_int("EXTENSION_CREDIT_COST", 25))

    # ─────────────────────────────────────────────────────────────
    # Batch reconcile
    # ─────────────────────────────────────────────────────────────
    POLL_MAX_WORKERS: int = field(default_factory=lambda: _get_env_int("POLL_MAX_WORKERS", 8))
    LIST_DEFAULT_LIMIT: int = field(default_factory=lambda: _get_env_int("LIST_DEFAULT_LIMIT", 50))

    # Print every backend request URL (noisy)
    DEBUG_PROVIDER_HTTP: bool = field(default_factory=lambda: _get_env_bool("DEBUG_PROVIDER_HTTP", False))


# Singleton used by the rest of the app
config = Config()
