import os
import subprocess
import threading
from typing import Dict, List, Optional

from .context import AppContext
from .errors import AlreadyRunningError, UnknownDatabaseError
from .logger import get_logger
from .metrics import (
    BACKUPS_TOTAL, BACKUPS_TRIGGERED_TOTAL, BACKUP_LAST_STATUS, BACKUP_LOCK_CONTENTION_TOTAL
)
from .models import BackupArtifact
from .job import PASSWORD_ENV
from .registry import find_by_id, scan_backups

logger = get_logger(__name__)


def build_job_command(context: AppContext, database: str, lock_fd: Optional[int] = None) -> List[str]:
    settings = context.settings
    cmd = list(settings.job_command) + ["--data-dir", settings.data_dir, "--run-dir", settings.run_dir]
    if lock_fd is not None:
        cmd += ["--lock-fd", str(lock_fd)]
    cmd.append(database)
    return cmd


def trigger_backup(context: AppContext, database: str) -> int:
    """
    Starts a backup job for `database` in its own process and returns its pid
    without waiting for it.

    The per-database lock is taken here and handed to the child, so a second
    trigger fails with AlreadyRunningError for as long as the child lives.
    """
    config = context.load_config()
    if database not in config.databases:
        raise UnknownDatabaseError(database)

    try:
        lock = context.coordinator.acquire(database)
    except AlreadyRunningError:
        BACKUP_LOCK_CONTENTION_TOTAL.labels(database_name=database).inc()
        logger.warning(f"Backup for '{database}' not started: already running.")
        raise

    settings = context.settings
    try:
        env = os.environ.copy()
        env.pop(PASSWORD_ENV, None)
        password = context.vault.get(database)
        if password:
            env[PASSWORD_ENV] = password
        else:
            logger.warning(f"No stored password for '{database}', the job will ask the API for it.")
        env["BAKKER_PORT"] = str(settings.port)
        env["BAKKER_AUTH_TOKEN"] = settings.auth_token

        cmd = build_job_command(context, database, lock_fd=lock.fileno())
        logger.debug(f"Spawning backup job: {' '.join(cmd)}")
        os.makedirs(os.path.dirname(settings.log_path), exist_ok=True)
        with open(settings.log_path, "ab") as log_file:
            proc = subprocess.Popen(
                cmd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                pass_fds=(lock.fileno(),),
                start_new_session=True,
            )
    except Exception:
        lock.release()
        raise

    # Published while we still hold the lock, the child holds it from here on
    context.coordinator.publish_status(database, proc.pid)
    lock.detach()
    BACKUPS_TRIGGERED_TOTAL.labels(database_name=database).inc()
    logger.info(f"Backup triggered for '{database}' (pid {proc.pid}).")

    reaper = threading.Thread(
        target=_reap, args=(context, database, proc), name=f"reap-{database}", daemon=True
    )
    reaper.start()
    return proc.pid


def _reap(context: AppContext, database: str, proc: subprocess.Popen) -> None:
    try:
        returncode = proc.wait()
        status = "completed" if returncode == 0 else "failed"
        if returncode == 0:
            logger.info(f"Backup {database} finished: OK")
        else:
            logger.error(f"Backup {database} finished with exit code {returncode}")
        BACKUPS_TOTAL.labels(database_name=database, status=status).inc()
        BACKUP_LAST_STATUS.labels(database_name=database).set(1 if returncode == 0 else 0)
    finally:
        context.coordinator.clear_status(database, pid=proc.pid)


def list_backups(context: AppContext) -> Dict[str, List[BackupArtifact]]:
    """Backups on disk with their IDs, newest first, grouped by database."""
    artifacts = context.registry.assign_ids(scan_backups(context.settings.backup_dir))
    artifacts.sort(key=lambda a: (a.timestamp, a.filename), reverse=True)

    grouped: Dict[str, List[BackupArtifact]] = {}
    for artifact in artifacts:
        grouped.setdefault(artifact.database, []).append(artifact)
    return grouped


def get_backup(context: AppContext, backup_id: int) -> Optional[BackupArtifact]:
    artifacts = context.registry.assign_ids(scan_backups(context.settings.backup_dir))
    return find_by_id(artifacts, backup_id)


def backup_path(context: AppContext, artifact: BackupArtifact) -> str:
    return os.path.join(context.settings.backup_dir, artifact.filename)


def delete_backup(context: AppContext, backup_id: int) -> bool:
    logger.info(f"Attempting to delete backup_id: {backup_id}")
    artifact = get_backup(context, backup_id)
    if not artifact:
        logger.warning(f"Backup not found for backup_id: {backup_id}")
        return False

    try:
        os.remove(backup_path(context, artifact))
    except FileNotFoundError:
        logger.warning(f"Backup file already gone: {artifact.filename}")
        return False

    logger.info(f"Successfully deleted backup_id: {backup_id} ({artifact.filename})")
    return True
