import os
import shlex
import sys
from typing import List, Optional

import yaml
from pydantic import BaseModel, ValidationError

from .errors import ConfigValidationError
from .logger import get_logger
from .models import BackupConfig
from .utils import atomic_write

logger = get_logger(__name__)

DEFAULT_LEGACY_SCHEDULE = "0 */6 * * *"
# Legacy environments were backed up under prefixed config names
LEGACY_NAME_PREFIX = "scone_"


class Settings(BaseModel):
    data_dir: str = "/data"
    run_dir: str = "/tmp/bakker"
    crontab_path: str = "/etc/cron.d/bakker"
    encryption_secret: Optional[str] = None
    auth_token: str = ""
    port: int = 3500
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    job_command: List[str] = [sys.executable, "-m", "bakker_api.job"]
    dump_command: str = "mariadb-dump"
    client_command: str = "mariadb"

    @property
    def backup_dir(self) -> str:
        return os.path.join(self.data_dir, "backups")

    @property
    def config_path(self) -> str:
        return os.path.join(self.data_dir, "config", "config.yaml")

    @property
    def password_path(self) -> str:
        return os.path.join(self.data_dir, "config", "passwords.json")

    @property
    def ids_path(self) -> str:
        return os.path.join(self.data_dir, "config", "backup-ids.json")

    @property
    def log_path(self) -> str:
        return os.path.join(self.data_dir, "logs", "backup.log")


def load_settings() -> Settings:
    """Build the runtime settings from environment variables."""
    values = {
        "data_dir": os.getenv("BAKKER_DATA_DIR"),
        "run_dir": os.getenv("BAKKER_RUN_DIR"),
        "crontab_path": os.getenv("BAKKER_CRONTAB_PATH"),
        "encryption_secret": os.getenv("BAKKER_ENCRYPTION_SECRET") or None,
        "auth_token": os.getenv("BAKKER_AUTH_TOKEN"),
        "port": os.getenv("BAKKER_PORT"),
        "log_level": os.getenv("LOG_LEVEL"),
        "scheduler_enabled": os.getenv("BAKKER_SCHEDULER_ENABLED"),
        "dump_command": os.getenv("BAKKER_DUMP_COMMAND"),
        "client_command": os.getenv("BAKKER_CLIENT_COMMAND"),
    }
    job_command = os.getenv("BAKKER_JOB_COMMAND")
    if job_command:
        values["job_command"] = shlex.split(job_command)
    return Settings(**{k: v for k, v in values.items() if v is not None})


def _first_error(e: ValidationError) -> str:
    error = e.errors()[0]
    message = error["msg"]
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    location = ".".join(str(part) for part in error["loc"])
    return f"{location}: {message}" if location else message


def parse_backup_config(data) -> BackupConfig:
    """Validates raw config data, raising ConfigValidationError on the first problem."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigValidationError("Config must be a mapping")
    try:
        return BackupConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigValidationError(_first_error(e)) from e


def migrate_legacy_config(data: dict):
    """
    Converts the old per-environment layout into databases + schedules.

    Each environment `env` becomes the database `scone_{env}`, the name its
    backups and locks were created under. Returns the (possibly new) config
    data and whether a migration happened.
    """
    if not isinstance(data, dict) or "environments" not in data:
        return data, False

    environments = data.get("environments") or {}
    if not isinstance(environments, dict) or not all(
        isinstance(env, dict) for env in environments.values()
    ):
        raise ConfigValidationError("environments must be a mapping of mappings")

    schedule = data.get("schedule") or DEFAULT_LEGACY_SCHEDULE
    databases = {}
    schedules = []
    for env_name, env in environments.items():
        name = f"{LEGACY_NAME_PREFIX}{env_name}"
        databases[name] = {
            "db_host": env.get("db_host"),
            "db_port": str(env.get("db_port") or "3306"),
            "db_name": env.get("db_name"),
            "db_user": env.get("db_user"),
            "ignored_tables": env.get("ignored_tables", []),
            "structure_only_tables": env.get("structure_only_tables", []),
        }
        if env.get("enabled"):
            schedules.append({"database": name, "cron": schedule})

    migrated = {
        "retention": data.get("retention") or 5,
        "databases": databases,
        "schedules": schedules,
    }
    return migrated, True


def load_backup_config(settings: Settings) -> BackupConfig:
    config_path = settings.config_path
    if not os.path.exists(config_path):
        logger.info(f"No config found at {config_path}, using an empty configuration.")
        return BackupConfig()

    with open(config_path, "r") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Error parsing {config_path}: {e}")
            raise ConfigValidationError(f"Invalid YAML in {config_path}") from e

    data, migrated = migrate_legacy_config(data)
    config = parse_backup_config(data)
    if migrated:
        save_backup_config(settings, config)
        logger.info("Config migrated from the environments layout to databases/schedules.")
    return config


def save_backup_config(settings: Settings, config: BackupConfig) -> None:
    content = yaml.safe_dump(config.model_dump(), sort_keys=False)
    atomic_write(settings.config_path, content, mode=0o644)
    logger.debug(
        f"Wrote config with {len(config.databases)} databases and {len(config.schedules)} schedules."
    )
