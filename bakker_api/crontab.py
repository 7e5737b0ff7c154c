import shlex

from .config import Settings
from .logger import get_logger
from .models import BackupConfig
from .utils import atomic_write

logger = get_logger(__name__)

HEADER = "# bakker - auto-generated, do not edit manually"


def render_crontab(config: BackupConfig, settings: Settings) -> str:
    """
    Renders one cron line per schedule. Only the API token and port are put
    into the job environment; jobs fetch their password from the API.
    """
    job_command = " ".join(shlex.quote(part) for part in settings.job_command)
    job_command += (
        f" --data-dir {shlex.quote(settings.data_dir)}"
        f" --run-dir {shlex.quote(settings.run_dir)}"
    )
    log_path = shlex.quote(settings.log_path)

    lines = [
        HEADER,
        "SHELL=/bin/bash",
        "PATH=/usr/local/bin:/usr/bin:/bin",
        f"BAKKER_PORT={settings.port}",
    ]
    if settings.auth_token:
        lines.append(f"BAKKER_AUTH_TOKEN={settings.auth_token}")
    lines.append("")

    for schedule in config.schedules:
        lines.append(
            f"{schedule.cron} root {job_command} {shlex.quote(schedule.database)} >> {log_path} 2>&1"
        )

    # cron ignores a last line without a trailing newline
    lines.append("")
    return "\n".join(lines)


def write_crontab(config: BackupConfig, settings: Settings) -> None:
    atomic_write(settings.crontab_path, render_crontab(config, settings), mode=0o600)
    logger.info(f"Crontab regenerated at {settings.crontab_path} with {len(config.schedules)} entries.")
