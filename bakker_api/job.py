"""
Backup job process: `python -m bakker_api.job DATABASE`.

Started either by the API (which already holds the database lock and passes
it down with --lock-fd) or by cron (which does not, so the job takes the
lock itself). Either way the job publishes its status record, checks that
the server accepts the credentials, dumps the database through gzip, applies retention and always clears its status and
releases the lock on the way out.
"""
import os
import subprocess
import sys
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import quote

import click
import requests

from .config import Settings, load_backup_config, load_settings
from .coordinator import FileLockCoordinator
from .error_parser import parse_backup_error
from .errors import AlreadyRunningError, BakkerError
from .logger import get_logger, setup_logging
from .models import DatabaseEntry
from .scheduler import enforce_retention
from .utils import format_size_mb

logger = get_logger(__name__)

PASSWORD_ENV = "BAKKER_DB_PASSWORD"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ALREADY_RUNNING = 75


class JobError(BakkerError):
    pass


def fetch_password(settings: Settings, database: str) -> str:
    """Password from the parent's environment, or from the API when started by cron."""
    password = os.environ.get(PASSWORD_ENV)
    if password:
        return password

    url = f"http://127.0.0.1:{settings.port}/api/passwords/{quote(database, safe='')}"
    headers = {"Authorization": f"Bearer {settings.auth_token}"} if settings.auth_token else {}
    try:
        response = requests.get(url, headers=headers, timeout=10)
    except requests.RequestException as e:
        raise JobError(f"Could not reach the API to fetch the password: {e}") from e

    if response.status_code == 404:
        raise JobError(f"Password not set. Store a password for '{database}' first.")
    if not response.ok:
        raise JobError(f"Password request for '{database}' failed with status {response.status_code}")
    return response.json()["password"]


def check_connection(settings: Settings, entry: DatabaseEntry, password: str) -> None:
    """Fails fast with a readable reason when the server cannot be reached or refuses us."""
    target = f"{entry.db_name}@{entry.db_host}:{entry.db_port}"
    logger.info(f"Testing database connection to {entry.db_host}:{entry.db_port} as {entry.db_user}...")
    env = os.environ.copy()
    env.pop(PASSWORD_ENV, None)
    env["MYSQL_PWD"] = password
    cmd = [
        settings.client_command,
        "-h", entry.db_host,
        "-P", entry.db_port,
        "-u", entry.db_user,
        "--connect-timeout=10",
        "-e", "SELECT 1",
        entry.db_name,
    ]
    try:
        result = subprocess.run(cmd, env=env, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE)
    except FileNotFoundError as e:
        raise JobError(f"Database client not found: {settings.client_command}") from e

    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace")
        logger.error(stderr.strip())
        raise JobError(f"Failed to connect to database {target}. {parse_backup_error(stderr)}")
    logger.info("Connection successful")


def build_dump_command(settings: Settings, entry: DatabaseEntry) -> List[str]:
    cmd = [
        settings.dump_command,
        "-h", entry.db_host,
        "-P", entry.db_port,
        "-u", entry.db_user,
        entry.db_name,
        "--single-transaction",
        "--skip-lock-tables",
        "--no-tablespaces",
        "--extended-insert",
        "--disable-keys",
        "--max-allowed-packet=512M",
    ]
    # Completely excluded tables
    cmd += [f"--ignore-table={entry.db_name}.{table}" for table in entry.ignored_tables if table]
    # Structure only, no data
    cmd += [f"--ignore-table-data={entry.db_name}.{table}" for table in entry.structure_only_tables if table]
    return cmd


def run_dump(settings: Settings, database: str, entry: DatabaseEntry, password: str) -> str:
    os.makedirs(settings.backup_dir, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    filename = f"{database}_{timestamp}.sql.gz"
    final_path = os.path.join(settings.backup_dir, filename)
    tmp_path = os.path.join(settings.backup_dir, f".{filename}.partial")

    env = os.environ.copy()
    env.pop(PASSWORD_ENV, None)
    env["MYSQL_PWD"] = password
    dump_cmd = build_dump_command(settings, entry)
    logger.info(
        f"Starting export to: {final_path} ({len(entry.ignored_tables)} ignored, "
        f"{len(entry.structure_only_tables)} structure-only)"
    )

    try:
        with open(tmp_path, "wb") as f:
            try:
                p1 = subprocess.Popen(dump_cmd, env=env, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
            except FileNotFoundError as e:
                raise JobError(f"Dump tool not found: {settings.dump_command}") from e
            p2 = subprocess.Popen(["gzip"], stdin=p1.stdout, stdout=f, stderr=subprocess.PIPE)
            p1.stdout.close()

            p1_stderr = p1.stderr.read()
            p2_stderr = p2.stderr.read()
            p1.stderr.close()
            p2.stderr.close()

            p1_rc = p1.wait()
            p2_rc = p2.wait()

        log_output = (p1_stderr + p2_stderr).decode("utf-8", errors="replace")
        if p1_rc != 0:
            logger.error(log_output.strip())
            raise JobError(
                f"Database export failed (exit code: {p1_rc}). {parse_backup_error(log_output)}"
            )
        if p2_rc != 0:
            raise JobError(f"gzip failed with exit code {p2_rc}: {log_output.strip()}")

        os.replace(tmp_path, final_path)
    finally:
        if os.path.exists(tmp_path):
            logger.debug(f"Removing temporary file: {tmp_path}")
            os.remove(tmp_path)

    size = os.path.getsize(final_path)
    logger.info(f"Export completed: {final_path} ({format_size_mb(size)} MB)")
    return final_path


def run_job(settings: Settings, database: str, lock_fd: Optional[int] = None) -> int:
    coordinator = FileLockCoordinator(settings.run_dir)
    if lock_fd is not None:
        lock = coordinator.adopt(database, lock_fd)
    else:
        try:
            lock = coordinator.acquire(database)
        except AlreadyRunningError:
            logger.error(
                f"Another backup is already running (lock: {coordinator.lock_path(database)})"
            )
            return EXIT_ALREADY_RUNNING

    try:
        coordinator.publish_status(database, os.getpid())

        config = load_backup_config(settings)
        entry = config.databases.get(database)
        if entry is None:
            raise JobError(f"No database config found for: {database}")

        password = fetch_password(settings, database)
        check_connection(settings, entry, password)
        run_dump(settings, database, entry, password)

        logger.info("Running retention cleanup...")
        enforce_retention(settings.backup_dir, database, config.retention)
        logger.info("Backup completed successfully")
        return EXIT_OK
    except BakkerError as e:
        logger.error(f"ERROR: {e}")
        return EXIT_FAILED
    except Exception as e:
        logger.error(f"Backup for '{database}' failed: {e}", exc_info=True)
        return EXIT_FAILED
    finally:
        coordinator.clear_status(database, pid=os.getpid())
        lock.release()


@click.command()
@click.argument("database")
@click.option("--data-dir", default=None, help="Data directory (config, backups, logs).")
@click.option("--run-dir", default=None, help="Directory holding lock files and status records.")
@click.option("--lock-fd", type=int, default=None, help="Inherited descriptor of an already acquired lock.")
def main(database: str, data_dir: Optional[str], run_dir: Optional[str], lock_fd: Optional[int]):
    """Back up DATABASE as configured in the bakker config."""
    settings = load_settings()
    updates = {}
    if data_dir:
        updates["data_dir"] = data_dir
    if run_dir:
        updates["run_dir"] = run_dir
    settings = settings.model_copy(update=updates)

    setup_logging(settings.log_path, settings.log_level, to_file=False)
    sys.exit(run_job(settings, database, lock_fd=lock_fd))


if __name__ == "__main__":
    main()
