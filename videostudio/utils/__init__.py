"""Utility helpers for the video studio backend."""

from videostudio.utils.helpers import (
    clamp_int,
    elapsed_seconds,
    log_event,
    now_utc,
    sanitize_path_segment,
)

__all__ = [
    "clamp_int",
    "elapsed_seconds",
    "log_event",
    "now_utc",
    "sanitize_path_segment",
]
