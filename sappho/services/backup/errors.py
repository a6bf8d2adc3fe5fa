"""Error hierarchy for backup and restore operations."""


class BackupError(Exception):
    """Base exception for backup engine errors."""

    def __init__(self, message: str, code: str = "BACKUP_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class InvalidBackupNameError(BackupError):
    """Raised when a requested bundle name does not match the bundle pattern."""

    def __init__(self, filename: str):
        super().__init__(f"Invalid backup filename: '{filename}'", "INVALID_NAME")
        self.filename = filename


class BackupNotFoundError(BackupError):
    """Raised when a bundle does not exist on disk."""

    def __init__(self, name: str):
        super().__init__(f"Backup '{name}' not found", "BACKUP_NOT_FOUND")
        self.name = name


class ArchiveWriteError(BackupError):
    """Raised when building a bundle fails."""

    def __init__(self, message: str):
        super().__init__(f"Backup failed: {message}", "ARCHIVE_WRITE_FAILED")


class ArchiveReadError(BackupError):
    """Raised when a bundle cannot be read during restore."""

    def __init__(self, message: str, code: str = "ARCHIVE_READ_FAILED"):
        super().__init__(f"Restore failed: {message}", code)


class ManifestParseError(ArchiveReadError):
    """Raised when the manifest entry of a bundle is not valid JSON."""

    def __init__(self, message: str):
        super().__init__(f"invalid manifest.json: {message}", "MANIFEST_INVALID")


class RestoreWriteError(BackupError):
    """Raised when a restored file cannot be written to its destination."""

    def __init__(self, message: str):
        super().__init__(f"Restore failed: {message}", "RESTORE_WRITE_FAILED")


class BackupInProgressError(BackupError):
    """Raised when a backup or restore is requested while another one runs."""

    def __init__(self):
        super().__init__("Another backup or restore is already in progress", "BACKUP_IN_PROGRESS")


__all__ = [
    "BackupError",
    "InvalidBackupNameError",
    "BackupNotFoundError",
    "ArchiveWriteError",
    "ArchiveReadError",
    "ManifestParseError",
    "RestoreWriteError",
    "BackupInProgressError",
]
