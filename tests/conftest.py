"""Pytest configuration and fixtures."""

import tempfile
import time
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from vidpress.config import settings
from vidpress.dependencies import get_orchestrator
from vidpress.main import app
from tests.fixtures import FakeRunner, make_orchestrator, make_settings


@pytest.fixture
def temp_storage_dir():
    """Create a temporary directory for file storage during tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_settings(temp_storage_dir):
    """Settings pointing at the temporary directory."""
    return make_settings(temp_storage_dir)


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest_asyncio.fixture
async def orchestrator(test_settings, fake_runner):
    """Orchestrator on the test's event loop, backed by the fake runner."""
    orchestrator = make_orchestrator(test_settings, fake_runner)
    yield orchestrator
    await orchestrator.shutdown()


@pytest.fixture
def make_upload(test_settings):
    """Write a fake uploaded video of the given size into the input directory."""
    def _make(size: int, name: str = "clip.mp4") -> Path:
        test_settings.input_dir.mkdir(parents=True, exist_ok=True)
        path = test_settings.input_dir / f"upload-{time.monotonic_ns()}-{name}"
        path.write_bytes(b"\0" * size)
        return path
    return _make


@pytest.fixture
def client(test_settings, fake_runner, monkeypatch):
    """Test client whose routes use an orchestrator backed by the fake runner."""
    monkeypatch.setattr(settings, "input_dir", test_settings.input_dir)
    monkeypatch.setattr(settings, "output_dir", test_settings.output_dir)

    api_orchestrator = make_orchestrator(test_settings, fake_runner)
    app.dependency_overrides[get_orchestrator] = lambda: api_orchestrator
    try:
        with TestClient(app) as test_client:
            test_client.orchestrator = api_orchestrator
            yield test_client
            test_client.portal.call(api_orchestrator.shutdown)
    finally:
        app.dependency_overrides.clear()

