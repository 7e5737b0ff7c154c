def parse_backup_error(stderr: str) -> str:
    """
    Parses the stderr output from mariadb-dump and returns a human-readable summary.
    """
    stderr = stderr.lower()

    if "access denied" in stderr:
        return "Authentication error: the user or password was rejected."
    if "unknown database" in stderr:
        return "Database error: the configured database does not exist."
    if "can't connect" in stderr or "connection refused" in stderr:
        return "Connection error: could not reach the database server. Check host and port."
    if "unknown server host" in stderr or "name or service not known" in stderr:
        return "Connection error: the host name could not be resolved."
    if "timeout" in stderr or "timed out" in stderr:
        return "Connection error: timed out while connecting to the server."
    if "no space left" in stderr:
        return "Storage error: the backup disk is full."
    if "command not found" in stderr or "no such file or directory" in stderr:
        return "Setup error: the dump tool is not installed."

    return "Unknown error: the backup failed for an unidentified reason. Check the full log for details."
