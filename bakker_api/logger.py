import logging
import logging.handlers
import os
import sys
from typing import Optional

DEFAULT_LOG_FILE_PATH = "/data/logs/backup.log"
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

# Libraries that are chatty at DEBUG and INFO
QUIET_LOGGERS = ("apscheduler", "urllib3")


def _rotating_handler(log_file_path: str, formatter: logging.Formatter) -> logging.Handler:
    os.makedirs(os.path.dirname(log_file_path), exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file_path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT
    )
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_file_path: Optional[str] = None, log_level: Optional[str] = None, to_file: bool = True):
    """
    Configure the logging for the API server or a job process.

    Job processes pass `to_file=False`: their stdout is already appended to
    the log file by whoever launched them.
    """
    level = (log_level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if to_file:
        path = log_file_path or DEFAULT_LOG_FILE_PATH
        try:
            root.addHandler(_rotating_handler(path, formatter))
        except OSError as e:
            root.error(f"Failed to create log file handler for {path}: {e}")

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("bakker_api").setLevel(level)

    logging.info(f"Logging configured with level {level}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
