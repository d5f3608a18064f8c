"""
Shared fixtures: in-memory stores and scripted backends wired into a real
JobOrchestrator.
"""

from __future__ import annotations

import pytest

from videostudio.config import config
from videostudio.services.credit_ledger import CreditLedger, MemoryLedgerStore
from videostudio.services.job_record import JobProvider
from videostudio.services.job_repository import MemoryJobRepository
from videostudio.services.media_ingester import MediaIngester
from videostudio.services.video_orchestrator import JobOrchestrator
from videostudio.services.video_router import VideoRouter
from videostudio.tests.fakes import FakeStorage, ScriptedChainProvider, ScriptedProvider


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def sora():
    return ScriptedProvider("sora", JobProvider.PERCENT_PROGRESS)


@pytest.fixture
def veo():
    return ScriptedProvider("veo", JobProvider.OPERATION, estimates=True)


@pytest.fixture
def veo_ext():
    return ScriptedChainProvider()


@pytest.fixture
def runway():
    provider = ScriptedProvider("runway", JobProvider.TASK_RATIO)
    provider.accepts_image_url = True  # mirrors RunwayProvider
    return provider


@pytest.fixture
def ledger():
    return CreditLedger(MemoryLedgerStore(), base_cost=50, extension_cost=25)


@pytest.fixture
def repository():
    return MemoryJobRepository()


@pytest.fixture
def orchestrator(repository, ledger, storage, sora, veo, veo_ext, runway):
    router = VideoRouter([sora, veo, veo_ext, runway])
    return JobOrchestrator(repository, ledger, MediaIngester(storage), router, cfg=config)


@pytest.fixture
def create(orchestrator):
    """Create a job with sensible defaults."""

    def _create(provider: str = "sora", **kwargs):
        params = dict(
            owner_id="user-1",
            account_id="act_123",
            prompt="A bottle of sparkling water on a beach at sunset",
            video_style="ugc",
            provider_choice=provider,
        )
        params.update(kwargs)
        return orchestrator.create_job(**params)

    return _create

