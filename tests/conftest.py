"""Shared test fixtures for nbrelay.

Nothing here launches a browser or talks to AWS/Slack: the worker's
collaborators are replaced by the in-memory fakes in tests.helpers.
"""
from __future__ import annotations

from pathlib import Path

import pytest

from nbrelay.config import Config
from nbrelay.target import NOTEBOOKLM_JA, TargetProfile
from tests.helpers import FakeBlobStore, FakeNotifier, FakeSurface, SurfaceFactory

ENTRY_URL = "https://notebooklm.example.com/notebook/abc"


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    """Isolated Config: tmp runtime dir, fast polling, short auth window."""
    runtime = tmp_path / "runtime"
    runtime.mkdir()
    return Config(
        target_url=ENTRY_URL,
        login_user="bot@example.com",
        login_password="hunter2",
        queue_url="https://sqs.example.com/123/nbrelay.fifo",
        webhook_url="https://hooks.slack.example.com/T/B/X",
        poll_interval_ms=1,          # short for tests
        auth_grace_seconds=0.01,
        runtime_dir=runtime,
    )


@pytest.fixture
def profile() -> TargetProfile:
    return NOTEBOOKLM_JA


@pytest.fixture
def answering_surface(profile: TargetProfile):
    """Factory for surfaces that show *answers* in order and copy *clipboard*."""
    def make(answers=("回答",), clipboard="**回答**"):
        return FakeSurface(
            elements={profile.query_input, profile.submit_button, profile.copy_button},
            texts={profile.answer: list(answers)},
            clipboard=clipboard,
        )
    return make


@pytest.fixture
def surfaces() -> SurfaceFactory:
    return SurfaceFactory()


@pytest.fixture
def store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()
