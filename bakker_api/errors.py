class BakkerError(Exception):
    """Base class for all errors raised by bakker."""


class ConfigurationError(BakkerError):
    """The vault has no encryption secret configured."""


class DecryptionError(BakkerError):
    """The password store cannot be decrypted with the configured secret."""


class AlreadyRunningError(BakkerError):
    def __init__(self, database: str):
        super().__init__(f"A backup for '{database}' is already running")
        self.database = database


class ConfigValidationError(BakkerError, ValueError):
    """A backup configuration was rejected before being persisted."""


class UnknownDatabaseError(BakkerError):
    def __init__(self, database: str):
        super().__init__(f"Database '{database}' not found in config")
        self.database = database
