import json
import os
import re
import tempfile

CONFIG_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def is_valid_config_name(name: str) -> bool:
    """
    Config names end up in file names, lock names and crontab lines, so only
    letters, digits, '_', '.' and '-' are allowed and '..' is rejected.
    """
    return bool(CONFIG_NAME_PATTERN.match(name or "")) and ".." not in name


def atomic_write(path: str, content: str, mode: int = 0o600) -> None:
    """
    Replaces `path` with `content` in one step.

    The data goes to a temporary file in the same directory first, is fsynced
    and then renamed over the target, so readers only ever see the old or the
    new file, never a half-written one.
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=os.path.basename(path))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def atomic_write_json(path: str, data, mode: int = 0o600) -> None:
    atomic_write(path, json.dumps(data, indent=2) + "\n", mode=mode)


def format_size_mb(size: int) -> str:
    return f"{size / 1024 / 1024:.2f}"
