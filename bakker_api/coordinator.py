"""
Cross-process coordination of backup jobs through the filesystem.

Each database has an advisory lock file, taken with a non-blocking `flock`,
and a JSON status record that lives while its job runs. The kernel drops
the lock when the holding process dies, however it dies. Status records
left behind by killed jobs are detected by probing their pid and removed
the next time anyone looks.
"""
import abc
import fcntl
import json
import os
from datetime import datetime, timezone
from typing import List, Optional

import psutil

from .errors import AlreadyRunningError
from .logger import get_logger
from .metrics import STALE_STATUS_RECORDS_TOTAL
from .models import StatusRecord
from .utils import atomic_write_json

logger = get_logger(__name__)

STATUS_PREFIX = "status-"
STATUS_SUFFIX = ".json"


class ProcessProbe(abc.ABC):
    @abc.abstractmethod
    def is_alive(self, pid: int) -> bool:
        pass


class PsutilProbe(ProcessProbe):
    def is_alive(self, pid: int) -> bool:
        if pid <= 0 or not psutil.pid_exists(pid):
            return False
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            # Exists, but owned by someone else
            return True


class JobLock:
    """An acquired per-database lock. Released on `release()` or when every holder exits."""

    def __init__(self, database: str, fd: int):
        self.database = database
        self._fd: Optional[int] = fd

    def fileno(self) -> int:
        if self._fd is None:
            raise ValueError(f"Lock for '{self.database}' is no longer held")
        return self._fd

    @property
    def held(self) -> bool:
        return self._fd is not None

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    def detach(self) -> None:
        """
        Closes this descriptor without unlocking, leaving the lock with any
        child process that inherited it.
        """
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()


class JobCoordinator(abc.ABC):
    @abc.abstractmethod
    def acquire(self, database: str) -> JobLock:
        pass

    @abc.abstractmethod
    def publish_status(self, database: str, pid: int, started_at: Optional[datetime] = None) -> StatusRecord:
        pass

    @abc.abstractmethod
    def clear_status(self, database: str, pid: Optional[int] = None) -> None:
        pass

    @abc.abstractmethod
    def list_running(self) -> List[StatusRecord]:
        pass


class FileLockCoordinator(JobCoordinator):
    def __init__(self, run_dir: str, probe: Optional[ProcessProbe] = None):
        self.run_dir = run_dir
        self.probe = probe or PsutilProbe()
        os.makedirs(self.run_dir, exist_ok=True)

    def lock_path(self, database: str) -> str:
        return os.path.join(self.run_dir, f"backup-{database}.lock")

    def status_path(self, database: str) -> str:
        return os.path.join(self.run_dir, f"{STATUS_PREFIX}{database}{STATUS_SUFFIX}")

    def acquire(self, database: str) -> JobLock:
        fd = os.open(self.lock_path(database), os.O_RDWR | os.O_CREAT, 0o600)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise AlreadyRunningError(database)
        except OSError:
            os.close(fd)
            raise
        lock = JobLock(database, fd)

        record = self._read_status(self.status_path(database))
        if record is not None and record.pid != os.getpid():
            if self.probe.is_alive(record.pid):
                lock.release()
                raise AlreadyRunningError(database)
            self._remove_stale(record)
        return lock

    def adopt(self, database: str, fd: int) -> JobLock:
        """Wraps a lock descriptor that was acquired by the parent process."""
        os.fstat(fd)
        return JobLock(database, fd)

    def publish_status(self, database: str, pid: int, started_at: Optional[datetime] = None) -> StatusRecord:
        started_at = started_at or datetime.now(timezone.utc)
        record = StatusRecord(
            database=database,
            pid=pid,
            started=started_at.isoformat(timespec="seconds"),
        )
        atomic_write_json(self.status_path(database), record.to_dict(), mode=0o644)
        logger.debug(f"Published status for '{database}' (pid {pid}).")
        return record

    def clear_status(self, database: str, pid: Optional[int] = None) -> None:
        path = self.status_path(database)
        if pid is not None:
            record = self._read_status(path)
            if record is not None and record.pid != pid:
                logger.debug(f"Status for '{database}' now belongs to pid {record.pid}, leaving it.")
                return
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    def list_running(self) -> List[StatusRecord]:
        running = []
        try:
            names = sorted(os.listdir(self.run_dir))
        except FileNotFoundError:
            return running

        for name in names:
            if not (name.startswith(STATUS_PREFIX) and name.endswith(STATUS_SUFFIX)):
                continue
            record = self._read_status(os.path.join(self.run_dir, name))
            if record is None:
                continue
            if self.probe.is_alive(record.pid):
                running.append(record)
            else:
                self._remove_stale(record)
        return running

    def _read_status(self, path: str) -> Optional[StatusRecord]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return StatusRecord.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable status record {path}: {e}")
            return None

    def _remove_stale(self, record: StatusRecord) -> None:
        logger.info(
            f"Removing stale status for '{record.database}': process {record.pid} is gone."
        )
        STALE_STATUS_RECORDS_TOTAL.labels(database_name=record.database).inc()
        self.clear_status(record.database, pid=record.pid)
