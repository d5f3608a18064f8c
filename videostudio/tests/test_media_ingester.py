"""Media ingester: fetch strategies and the one-retry upload policy."""

from __future__ import annotations

import pytest
import requests

from videostudio.services.media_ingester import (
    IngestionError,
    MediaIngester,
    MediaSource,
    image_path,
    video_path,
)
from videostudio.tests.fakes import FakeResponse, FakeStorage


def test_storage_paths():
    assert video_path("user-1", "act_123", "job-9") == "user-1/123/videos/job-9.mp4"
    assert video_path("user 1", "", "job-9") == "user_1/default/videos/job-9.mp4"
    assert video_path("user-1", "act_123", "job-9", step=2) == "user-1/123/videos/job-9-s2.mp4"
    assert image_path("user-1", "act_123", "job-9", "image/jpeg") == "user-1/123/images/job-9.jpg"


def test_inline_bytes_skip_the_fetch(monkeypatch):
    monkeypatch.setattr(requests, "get", lambda *a, **kw: pytest.fail("no fetch expected"))
    storage = FakeStorage()
    result = MediaIngester(storage).ingest(MediaSource(data=b"mp4"), "u/a/videos/j.mp4")
    assert result.url == "https://cdn.test/u/a/videos/j.mp4"
    assert result.degraded is False
    assert storage.uploads == ["u/a/videos/j.mp4"]


def test_upload_is_retried_once():
    storage = FakeStorage(failures=1)
    result = MediaIngester(storage).store("u/a/videos/j.mp4", b"mp4", "video/mp4")
    assert result.degraded is False
    assert storage.attempts == 2


def test_two_upload_failures_degrade_instead_of_raising():
    storage = FakeStorage(failures=5)
    result = MediaIngester(storage).store("u/a/videos/j.mp4", b"mp4", "video/mp4")
    assert result.degraded is True
    assert result.url == "https://cdn.test/u/a/videos/j.mp4"
    assert storage.attempts == 2


def test_rejected_fetch_retries_with_fallback_credential(monkeypatch):
    calls = []

    def fake_get(url, headers=None, params=None, **kwargs):
        calls.append((headers, params))
        if params:
            return FakeResponse(200, content=b"mp4", headers={"Content-Type": "video/mp4"})
        return FakeResponse(403, {"error": "forbidden"})

    monkeypatch.setattr(requests, "get", fake_get)
    source = MediaSource(
        uri="https://files.test/v.mp4",
        headers={"x-goog-api-key": "g-key"},
        fallback_params={"key": "g-key"},
    )
    data, content_type = MediaIngester(FakeStorage()).fetch(source)
    assert data == b"mp4"
    assert content_type == "video/mp4"
    assert calls == [({"x-goog-api-key": "g-key"}, None), ({}, {"key": "g-key"})]


def test_failed_fetch_raises(monkeypatch):
    monkeypatch.setattr(requests, "get", lambda url, **kw: FakeResponse(500, {"error": "boom"}))
    with pytest.raises(IngestionError) as exc_info:
        MediaIngester(FakeStorage()).fetch(MediaSource(uri="https://files.test/v.mp4"))
    assert exc_info.value.status_code == 500


def test_fetch_timeout_raises(monkeypatch):
    def fake_get(url, **kw):
        raise requests.exceptions.ConnectionError("reset")

    monkeypatch.setattr(requests, "get", fake_get)
    with pytest.raises(IngestionError):
        MediaIngester(FakeStorage()).fetch(MediaSource(uri="https://files.test/v.mp4"))


def test_non_video_content_type_falls_back(monkeypatch):
    monkeypatch.setattr(
        requests, "get",
        lambda url, **kw: FakeResponse(200, content=b"mp4", headers={"Content-Type": "application/octet-stream"}),
    )
    _, content_type = MediaIngester(FakeStorage()).fetch(MediaSource(uri="https://files.test/v.mp4"))
    assert content_type == "video/mp4"
