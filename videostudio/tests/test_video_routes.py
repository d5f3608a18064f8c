"""HTTP surface: status codes and response shapes through the Flask test client."""

from __future__ import annotations

import base64

import pytest

from videostudio.app import create_app
from videostudio.services.job_record import JobStatus
from videostudio.services.video_providers.base import PollResult, ProviderTransientError, VideoProviderError
from videostudio.tests.fakes import done


@pytest.fixture
def client(orchestrator, monkeypatch):
    monkeypatch.setattr("videostudio.routes.health.USE_DB", False)
    app = create_app(orchestrator=orchestrator)
    app.config["TESTING"] = True
    return app.test_client()


def _generate(client, **overrides):
    body = {
        "user_id": "user-1",
        "ad_account_id": "act_123",
        "prompt": "A sneaker spinning on a pedestal",
        "video_style": "product",
        "provider": "sora",
    }
    body.update(overrides)
    return client.post("/api/video/generate", json=body)


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["ok"] is True
    assert data["db"] == "memory"
    assert data["providers"]["sora"]["configured"] is True


def test_generate_returns_job_view(client):
    resp = _generate(client, adIndex=2, sessionId="s-1")
    assert resp.status_code == 201
    data = resp.get_json()
    assert data["ok"] is True
    assert data["status"] == JobStatus.GENERATING
    assert data["ad_index"] == 2
    assert data["session_id"] == "s-1"
    assert data["credits_refunded"] is False


def test_generate_validation_error(client):
    resp = _generate(client, prompt="")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "invalid_request"


def test_generate_with_bad_image(client):
    resp = _generate(client, image_data="data:image/png;base64,@@@")
    assert resp.status_code == 400


def test_generate_with_image(client, storage):
    image = "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8jpeg").decode()
    resp = _generate(client, provider="runway", image_data=image)
    assert resp.status_code == 201
    assert storage.uploads[0].endswith(".jpg")


def test_generate_unavailable_provider(client, runway):
    runway.configured = False
    resp = _generate(client, provider="runway")
    assert resp.status_code == 503
    assert resp.get_json()["error"] == "provider_unavailable"


def test_generate_dispatch_failure(client, sora):
    sora.create_error = ProviderTransientError("sora", "backend down", status_code=503)
    resp = _generate(client)
    assert resp.status_code == 502
    data = resp.get_json()
    assert data["error"] == "dispatch_failed"
    assert data["job"]["status"] == JobStatus.FAILED
    assert data["job"]["credits_refunded"] is True


def test_status_polls_backend(client, sora):
    sora.polls = [PollResult.running(35)]
    job_id = _generate(client).get_json()["job_id"]

    resp = client.get(f"/api/video/status/{job_id}?user_id=user-1")
    assert resp.status_code == 200
    assert resp.get_json()["progress_pct"] == 35


def test_status_requires_owner(client):
    job_id = _generate(client).get_json()["job_id"]
    assert client.get(f"/api/video/status/{job_id}").status_code == 400
    assert client.get(f"/api/video/status/{job_id}?user_id=user-2").status_code == 404


def test_list_jobs(client, sora):
    sora.polls = [done(data=b"mp4")]
    _generate(client)
    _generate(client)

    resp = client.post("/api/video/jobs", json={"user_id": "user-1"})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["count"] == 2
    assert {j["status"] for j in data["jobs"]} == {JobStatus.COMPLETE}


def test_list_jobs_without_reconcile(client, sora):
    _generate(client)
    resp = client.post("/api/video/jobs", json={"userId": "user-1", "reconcile": "false"})
    assert resp.get_json()["count"] == 1
    assert sora.poll_calls == 0


def test_extend_rejects_non_veo_job(client, sora):
    sora.polls = [done(data=b"mp4")]
    job_id = _generate(client).get_json()["job_id"]
    client.get(f"/api/video/status/{job_id}?user_id=user-1")

    resp = client.post(f"/api/video/extend/{job_id}", json={"user_id": "user-1"})
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "job_not_extendable"


def test_extend_veo_job(client, veo, veo_ext):
    veo.polls = [done("gs://out/veo.mp4")]
    job_id = _generate(client, provider="veo").get_json()["job_id"]
    client.get(f"/api/video/status/{job_id}?user_id=user-1")

    resp = client.post(f"/api/video/extend/{job_id}", json={"user_id": "user-1"})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["status"] == JobStatus.EXTENDING
    assert data["extension_total"] == 1


def test_extend_trigger_failure_is_502(client, veo, veo_ext):
    veo.polls = [done("gs://out/veo.mp4")]
    veo_ext.trigger_error = VideoProviderError("veo-ext", 400, "extension rejected")
    job_id = _generate(client, provider="veo").get_json()["job_id"]
    client.get(f"/api/video/status/{job_id}?user_id=user-1")

    resp = client.post(f"/api/video/extend/{job_id}", json={"user_id": "user-1"})
    assert resp.status_code == 502
    assert resp.get_json()["error"] == "provider_error"
