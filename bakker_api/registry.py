import json
import os
import re
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from .logger import get_logger
from .models import BackupArtifact
from .mutation_queue import MutationQueue
from .utils import atomic_write_json

logger = get_logger(__name__)

# {config_name}_{YYYYMMDD_HHMMSS}.sql.gz; greedy so config names may contain '_'
BACKUP_FILENAME = re.compile(r"^(.+)_(\d{8}_\d{6})\.sql\.gz$")


def parse_backup_filename(filename: str) -> Optional[tuple]:
    match = BACKUP_FILENAME.match(filename)
    if not match:
        return None
    try:
        timestamp = datetime.strptime(match.group(2), "%Y%m%d_%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None
    return match.group(1), timestamp


def scan_backups(backup_dir: str) -> List[BackupArtifact]:
    """Builds artifacts from the backup files currently on disk."""
    if not os.path.isdir(backup_dir):
        return []

    artifacts = []
    for filename in os.listdir(backup_dir):
        parsed = parse_backup_filename(filename)
        if not parsed:
            continue
        path = os.path.join(backup_dir, filename)
        try:
            size = os.path.getsize(path)
        except OSError:
            # Removed between listdir and stat
            continue
        database, timestamp = parsed
        artifacts.append(BackupArtifact(filename=filename, database=database, timestamp=timestamp, size=size))
    return artifacts


class BackupIdentityRegistry:
    """
    Hands out small integer IDs for backup files.

    An ID, once given to a filename, stays with it forever and is never
    handed to another filename, even after the file is deleted.
    """

    def __init__(self, path: str, queue: MutationQueue):
        self.path = path
        self._queue = queue

    def _load(self) -> dict:
        if not os.path.exists(self.path):
            return {"nextId": 1, "byFilename": {}}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            by_filename = {str(k): int(v) for k, v in data.get("byFilename", {}).items()}
            next_id = int(data.get("nextId", 1))
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.error(f"Backup ID store {self.path} is unreadable, starting a new one: {e}")
            return {"nextId": 1, "byFilename": {}}
        highest = max(by_filename.values(), default=0)
        return {"nextId": max(next_id, highest + 1, 1), "byFilename": by_filename}

    def _assign(self, artifacts: List[BackupArtifact]) -> List[BackupArtifact]:
        state = self._load()
        by_filename: Dict[str, int] = state["byFilename"]
        next_id: int = state["nextId"]
        claimed = set(by_filename.values())
        changed = False

        for artifact in sorted(artifacts, key=lambda a: a.filename):
            existing = by_filename.get(artifact.filename)
            if existing is not None:
                artifact.id = existing
                next_id = max(next_id, existing + 1)
                continue

            while next_id in claimed:
                next_id += 1
            by_filename[artifact.filename] = next_id
            claimed.add(next_id)
            artifact.id = next_id
            next_id += 1
            changed = True

        if changed or next_id != state["nextId"]:
            atomic_write_json(self.path, {"nextId": next_id, "byFilename": by_filename})
            logger.debug(f"Backup ID store updated, next ID is {next_id}.")
        return artifacts

    def assign_ids(self, artifacts: Iterable[BackupArtifact]) -> List[BackupArtifact]:
        return self._queue.run(self._assign, list(artifacts))


def find_by_id(artifacts: Iterable[BackupArtifact], backup_id: int) -> Optional[BackupArtifact]:
    return next((a for a in artifacts if a.id == backup_id), None)
