"""Pytest configuration and shared fixtures."""

import os
import sys

import pytest
from fastapi.testclient import TestClient

from bakker_api.config import Settings
from bakker_api.context import AppContext
from bakker_api.coordinator import ProcessProbe
from bakker_api.main import create_app
from bakker_api.mutation_queue import MutationQueue

SECRET = "correct horse battery staple"
TOKEN = "test-token"


class FakeProbe(ProcessProbe):
    """Process probe whose answers are set by the test."""

    def __init__(self, alive=None):
        self.alive = set(alive or ())

    def is_alive(self, pid: int) -> bool:
        return pid in self.alive


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a temporary directory, with the scheduler off."""
    return Settings(
        data_dir=str(tmp_path / "data"),
        run_dir=str(tmp_path / "run"),
        crontab_path=str(tmp_path / "cron.d" / "bakker"),
        encryption_secret=SECRET,
        auth_token=TOKEN,
        port=3500,
        log_level="DEBUG",
        scheduler_enabled=False,
        job_command=[sys.executable, "-m", "bakker_api.job"],
    )


@pytest.fixture
def queue():
    q = MutationQueue()
    yield q
    q.shutdown()


@pytest.fixture
def probe():
    return FakeProbe()


@pytest.fixture
def context(settings):
    ctx = AppContext.from_settings(settings)
    yield ctx
    ctx.close()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def client(settings):
    """TestClient running the app's startup and shutdown hooks."""
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client


def write_backup_file(backup_dir, filename, content=b"data"):
    os.makedirs(backup_dir, exist_ok=True)
    path = os.path.join(backup_dir, filename)
    with open(path, "wb") as f:
        f.write(content)
    return path
