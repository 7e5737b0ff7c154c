from dataclasses import dataclass
from typing import Optional

from .config import Settings, load_backup_config
from .coordinator import FileLockCoordinator, JobCoordinator, ProcessProbe
from .models import BackupConfig
from .mutation_queue import MutationQueue
from .registry import BackupIdentityRegistry
from .vault import CredentialVault


@dataclass
class AppContext:
    """Everything a request or job needs, built once by the composition root."""

    settings: Settings
    queue: MutationQueue
    vault: CredentialVault
    registry: BackupIdentityRegistry
    coordinator: JobCoordinator

    @classmethod
    def from_settings(cls, settings: Settings, probe: Optional[ProcessProbe] = None) -> "AppContext":
        queue = MutationQueue()
        return cls(
            settings=settings,
            queue=queue,
            vault=CredentialVault(settings.password_path, settings.encryption_secret, queue),
            registry=BackupIdentityRegistry(settings.ids_path, queue),
            coordinator=FileLockCoordinator(settings.run_dir, probe=probe),
        )

    def load_config(self) -> BackupConfig:
        return load_backup_config(self.settings)

    def close(self) -> None:
        self.queue.shutdown()
