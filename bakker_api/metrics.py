from prometheus_client import Counter, Gauge

BACKUPS_TRIGGERED_TOTAL = Counter(
    "backups_triggered_total",
    "Total number of backup jobs started from the API.",
    ["database_name"]
)

BACKUPS_TOTAL = Counter(
    "backups_total",
    "Total number of finished backup jobs started from the API.",
    ["database_name", "status"]
)

BACKUP_LOCK_CONTENTION_TOTAL = Counter(
    "backup_lock_contention_total",
    "Total number of backup triggers rejected because a job was already running.",
    ["database_name"]
)

STALE_STATUS_RECORDS_TOTAL = Counter(
    "stale_status_records_total",
    "Total number of status records removed because their process was gone.",
    ["database_name"]
)

BACKUP_LAST_STATUS = Gauge(
    "backup_last_status",
    "Status of the last backup (1 for success, 0 for failure).",
    ["database_name"]
)

VAULT_DECRYPTION_FAILING = Gauge(
    "vault_decryption_failing",
    "1 when the password store cannot be decrypted with the configured secret."
)

RETENTION_FILES_DELETED_TOTAL = Counter(
    "retention_files_deleted_total",
    "Total number of files deleted by retention policy.",
    ["database_name"]
)

DISK_SPACE_AVAILABLE_BYTES = Gauge(
    "disk_space_available_bytes",
    "Available disk space for backups in bytes."
)
