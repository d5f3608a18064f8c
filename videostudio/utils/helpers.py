"""
Utility helpers for the video studio backend.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any


def now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def clamp_int(value: Any, minimum: int, maximum: int, default: int) -> int:
    """Clamp a value to an integer within [minimum, maximum]."""
    try:
        return max(minimum, min(maximum, int(value)))
    except (TypeError, ValueError):
        return default


def sanitize_path_segment(name: str, max_length: int = 64) -> str:
    """
    Sanitize a string to be safe for use in storage keys.
    - Replaces anything outside [A-Za-z0-9_-] with underscores
    - Limits length
    """
    if not name:
        return ""
    safe = str(name).strip()
    safe = re.sub(r"[^A-Za-z0-9_\-]", "_", safe)
    safe = re.sub(r"_+", "_", safe)
    safe = safe.strip("_")
    if len(safe) > max_length:
        safe = safe[:max_length].rstrip("_")
    return safe


def elapsed_seconds(since: datetime | None, now: datetime | None = None) -> float:
    """Seconds elapsed since a timestamp; naive datetimes are treated as UTC."""
    if since is None:
        return 0.0
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    now = now or now_utc()
    return max(0.0, (now - since).total_seconds())


_logger = logging.getLogger("videostudio.events")


def _mask_value(val: Any, max_len: int = 400) -> str:
    try:
        s = json.dumps(val, ensure_ascii=False, default=str)
    except Exception:
        s = str(val)
    if len(s) > max_len:
        return s[:max_len] + "…"
    return s


def _scrub_secrets(data: Any) -> Any:
    if isinstance(data, dict):
        cleaned = {}
        for k, v in data.items():
            key = str(k).lower()
            if any(t in key for t in ("key", "token", "secret", "auth")):
                cleaned[k] = "***"
            else:
                cleaned[k] = _scrub_secrets(v)
        return cleaned
    if isinstance(data, list):
        return [_scrub_secrets(x) for x in data]
    return data


def log_event(event_name: str, data: dict) -> None:
    """Structured event logging that avoids leaking secrets."""
    try:
        safe_payload = _scrub_secrets(data)
        _logger.info("[event] %s :: %s", event_name, _mask_value(safe_payload))
    except Exception as e:
        _logger.warning("[event] %s :: failed to log (%s)", event_name, e)
