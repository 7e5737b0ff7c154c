import os
from typing import TYPE_CHECKING

import psutil
from apscheduler.schedulers.background import BackgroundScheduler

from .errors import ConfigValidationError
from .logger import get_logger
from .metrics import DISK_SPACE_AVAILABLE_BYTES, RETENTION_FILES_DELETED_TOTAL
from .registry import scan_backups

if TYPE_CHECKING:
    from .context import AppContext

logger = get_logger(__name__)

STATUS_SWEEP_INTERVAL_SECONDS = 60


def enforce_retention(backup_dir: str, database: str, keep: int) -> int:
    """Keeps the newest `keep` backups of `database` and deletes the rest."""
    backups = sorted(
        (a for a in scan_backups(backup_dir) if a.database == database),
        key=lambda a: a.filename,
    )
    if len(backups) <= keep:
        logger.info(f"Retention OK: {len(backups)} backups found for {database} (limit: {keep})")
        return 0

    to_delete = backups[: len(backups) - keep]
    logger.info(
        f"Cleaning up: {len(backups)} backups found for {database}, "
        f"keeping {keep}, deleting {len(to_delete)}"
    )
    deleted = 0
    for artifact in to_delete:
        try:
            os.remove(os.path.join(backup_dir, artifact.filename))
            deleted += 1
            logger.info(f"Deleted old backup '{artifact.filename}' (count policy).")
        except FileNotFoundError:
            continue

    if deleted:
        RETENTION_FILES_DELETED_TOTAL.labels(database_name=database).inc(deleted)
    return deleted


def enforce_all_retention(context: "AppContext") -> None:
    try:
        config = context.load_config()
    except ConfigValidationError as e:
        logger.error(f"Skipping retention run, config is invalid: {e}")
        return

    logger.info("Running retention policy for all databases.")
    for database in config.databases:
        enforce_retention(context.settings.backup_dir, database, config.retention)


def sweep_stale_status(context: "AppContext") -> None:
    running = context.coordinator.list_running()
    logger.debug(f"Status sweep: {len(running)} backup jobs running.")
    update_disk_space(context.settings.backup_dir)


def update_disk_space(backup_dir: str) -> None:
    try:
        DISK_SPACE_AVAILABLE_BYTES.set(psutil.disk_usage(backup_dir).free)
    except OSError as e:
        logger.warning(f"Could not read disk usage of {backup_dir}: {e}")


def create_scheduler(context: "AppContext") -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone=os.getenv("TZ", "UTC"))
    scheduler.add_job(
        enforce_all_retention,
        "cron",
        hour=1,
        args=[context],
        id="retention_policy_job",
        name="Enforce Retention Policies",
        replace_existing=True,
    )
    scheduler.add_job(
        sweep_stale_status,
        "interval",
        seconds=STATUS_SWEEP_INTERVAL_SECONDS,
        args=[context],
        id="status_sweep_job",
        name="Remove Stale Status Records",
        replace_existing=True,
    )
    logger.info("Scheduled system jobs (retention and status sweep).")
    return scheduler
