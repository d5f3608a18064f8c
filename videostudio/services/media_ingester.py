"""
Media Ingester - moves a finished backend output into durable object storage.

Flow:
1. Resolve bytes: inline bytes from the poll, or an HTTP fetch of the output
   descriptor (plain, credentialed, or credentialed with one fallback retry
   using a query-parameter credential when the first fetch is rejected).
2. Upload to {owner}/{account}/videos/{job_id}.mp4.
3. Upload failure is retried exactly once. If both attempts fail the public
   URL of the attempted path is still returned, flagged as degraded, so a
   storage outage never holds a finished job open.

A failed *fetch* is different: the bytes are not in hand, so IngestionError
is raised and the orchestrator leaves the job for the next poll.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import requests
from requests.exceptions import ConnectionError as RequestsConnectionError, Timeout

from videostudio.config import config
from videostudio.services.s3_service import ObjectStorage, StorageError
from videostudio.utils.helpers import log_event, sanitize_path_segment


class IngestionError(Exception):
    """Raised when the finished output could not be fetched from the backend."""

    def __init__(self, message: str, status_code: int = 0):
        self.status_code = status_code
        super().__init__(message)


@dataclass
class MediaSource:
    """
    Where to get a finished video.

    data            inline bytes (no fetch)
    uri             https URL to fetch
    headers         credential headers for the first fetch
    fallback_params query params for one retry when the first fetch gets 401/403
    """
    uri: Optional[str] = None
    data: Optional[bytes] = None
    content_type: str = "video/mp4"
    headers: Dict[str, str] = field(default_factory=dict)
    fallback_params: Optional[Dict[str, str]] = None


@dataclass
class IngestResult:
    url: str
    degraded: bool = False
    size_bytes: int = 0


def video_path(owner_id: str, account_id: str, job_id: str, step: int = 0) -> str:
    """
    Deterministic storage key for a job's video.

    Each chain step gets its own key: uploads are served with a one-year
    cache lifetime, so a longer output must never reuse an earlier URL.
    """
    account = (account_id or "").replace("act_", "", 1)
    name = f"{job_id}-s{step}" if step else job_id
    return f"{sanitize_path_segment(owner_id)}/{sanitize_path_segment(account) or 'default'}/videos/{name}.mp4"


def image_path(owner_id: str, account_id: str, job_id: str, content_type: str) -> str:
    ext = {"image/jpeg": "jpg", "image/webp": "webp"}.get(content_type, "png")
    account = (account_id or "").replace("act_", "", 1)
    return f"{sanitize_path_segment(owner_id)}/{sanitize_path_segment(account) or 'default'}/images/{job_id}.{ext}"


class MediaIngester:
    """Fetch + upload with one upload retry."""

    def __init__(self, storage: Optional[ObjectStorage] = None, download_timeout: Optional[int] = None):
        self.storage = storage or ObjectStorage()
        self.download_timeout = download_timeout or config.DOWNLOAD_TIMEOUT

    # ── fetch ────────────────────────────────────────────────
    def _get(self, url: str, headers: Dict[str, str], params: Optional[Dict[str, str]] = None) -> requests.Response:
        try:
            return requests.get(
                url,
                headers=headers,
                params=params,
                timeout=(config.HTTP_CONNECT_TIMEOUT, self.download_timeout),
                allow_redirects=True,
            )
        except (Timeout, RequestsConnectionError) as e:
            raise IngestionError(f"Download connection error: {e}") from e

    def fetch(self, source: MediaSource) -> Tuple[bytes, str]:
        """Resolve a MediaSource to (bytes, content_type)."""
        if source.data:
            return source.data, source.content_type
        if not source.uri:
            raise IngestionError("Output descriptor has neither bytes nor a URI")

        print(f"[Ingest] Downloading video from: {source.uri[:100]}...")
        r = self._get(source.uri, source.headers)

        if r.status_code in (401, 403) and source.fallback_params:
            print(f"[Ingest] Fetch rejected ({r.status_code}), retrying with fallback credential")
            r = self._get(source.uri, {}, params=source.fallback_params)

        if not r.ok:
            raise IngestionError(f"Failed to download output: HTTP {r.status_code}", status_code=r.status_code)

        content_type = r.headers.get("Content-Type", source.content_type) or source.content_type
        if not content_type.startswith("video/"):
            content_type = source.content_type
        print(f"[Ingest] Downloaded {len(r.content)} bytes, type={content_type}")
        return r.content, content_type

    # ── upload ───────────────────────────────────────────────
    def store(self, path: str, data: bytes, content_type: str) -> IngestResult:
        """Upload with one retry; degraded public URL when both attempts fail."""
        for attempt in (1, 2):
            try:
                self.storage.upload(path, data, content_type)
                return IngestResult(url=self.storage.public_url(path), size_bytes=len(data))
            except StorageError as e:
                print(f"[Ingest] Upload attempt {attempt}/2 failed for {path}: {e}")

        log_event("ingest.degraded", {"path": path, "size_bytes": len(data)})
        return IngestResult(url=self.storage.public_url(path), degraded=True, size_bytes=len(data))

    def ingest(self, source: MediaSource, path: str) -> IngestResult:
        data, content_type = self.fetch(source)
        return self.store(path, data, content_type)

    def store_image(self, path: str, data: bytes, content_type: str) -> str:
        """Upload a source image that a backend must fetch by URL. Raises StorageError."""
        try:
            self.storage.upload(path, data, content_type)
        except StorageError:
            self.storage.upload(path, data, content_type)
        return self.storage.public_url(path)
