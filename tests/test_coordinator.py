"""Tests for the per-database lock and status records."""

import json
import os
import subprocess
import sys

import pytest

from bakker_api.coordinator import FileLockCoordinator, PsutilProbe
from bakker_api.errors import AlreadyRunningError


@pytest.fixture
def coordinator(tmp_path, probe):
    return FileLockCoordinator(str(tmp_path / "run"), probe=probe)


class TestAcquire:
    def test_second_acquire_fails(self, coordinator):
        """Test only one of two acquires on the same database succeeds."""
        lock = coordinator.acquire("prod")
        try:
            with pytest.raises(AlreadyRunningError):
                coordinator.acquire("prod")
        finally:
            lock.release()

    def test_acquire_after_release(self, coordinator):
        coordinator.acquire("prod").release()
        lock = coordinator.acquire("prod")
        assert lock.held
        lock.release()
        assert not lock.held

    def test_databases_are_independent(self, coordinator):
        with coordinator.acquire("prod"), coordinator.acquire("staging") as staging:
            assert staging.held

    def test_lock_is_held_across_processes(self, coordinator):
        """Test a lock taken by another process blocks this one until it exits."""
        child = subprocess.Popen(
            [
                sys.executable,
                "-c",
                "import fcntl, sys; f = open(sys.argv[1], 'a'); "
                "fcntl.flock(f, fcntl.LOCK_EX); print('locked', flush=True); sys.stdin.read()",
                coordinator.lock_path("prod"),
            ],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            text=True,
        )
        try:
            assert child.stdout.readline().strip() == "locked"
            with pytest.raises(AlreadyRunningError):
                coordinator.acquire("prod")
        finally:
            child.stdin.close()
            child.wait(timeout=10)
            child.stdout.close()

        coordinator.acquire("prod").release()

    def test_live_status_record_blocks_acquire(self, coordinator, probe):
        coordinator.publish_status("prod", 4242)
        probe.alive.add(4242)
        with pytest.raises(AlreadyRunningError):
            coordinator.acquire("prod")

    def test_dead_status_record_is_cleared_on_acquire(self, coordinator):
        coordinator.publish_status("prod", 4242)
        with coordinator.acquire("prod"):
            assert not os.path.exists(coordinator.status_path("prod"))


class TestStatusRecords:
    def test_publish_and_list(self, coordinator, probe):
        coordinator.publish_status("prod", 4242)
        probe.alive.add(4242)

        running = coordinator.list_running()
        assert [(r.database, r.pid) for r in running] == [("prod", 4242)]
        with open(coordinator.status_path("prod")) as f:
            data = json.load(f)
        assert data["running"] is True
        assert data["started"]

    def test_list_removes_stale_records(self, coordinator, probe):
        coordinator.publish_status("prod", 4242)
        coordinator.publish_status("staging", 4343)
        probe.alive.add(4343)

        running = coordinator.list_running()
        assert [r.database for r in running] == ["staging"]
        assert not os.path.exists(coordinator.status_path("prod"))

    def test_clear_only_own_record(self, coordinator):
        """Test clearing with a pid leaves a record published by another process."""
        coordinator.publish_status("prod", 4242)
        coordinator.clear_status("prod", pid=1111)
        assert os.path.exists(coordinator.status_path("prod"))

        coordinator.clear_status("prod", pid=4242)
        assert not os.path.exists(coordinator.status_path("prod"))

    def test_unreadable_record_is_ignored(self, coordinator):
        with open(coordinator.status_path("prod"), "w") as f:
            f.write("{")
        assert coordinator.list_running() == []


class TestPsutilProbe:
    def test_killed_process_is_dropped(self, tmp_path):
        """Test killing the process behind a record makes list_running drop and delete it."""
        coordinator = FileLockCoordinator(str(tmp_path / "run"), probe=PsutilProbe())
        child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
        try:
            coordinator.publish_status("prod", child.pid)
            assert [r.pid for r in coordinator.list_running()] == [child.pid]
        finally:
            child.kill()
            child.wait(timeout=10)

        assert coordinator.list_running() == []
        assert not os.path.exists(coordinator.status_path("prod"))

    def test_own_process_is_alive(self):
        assert PsutilProbe().is_alive(os.getpid())
        assert not PsutilProbe().is_alive(0)
