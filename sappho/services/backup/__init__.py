"""Backup and restore engine: bundles, retention and scheduling."""

from sappho.services.backup.errors import (
    ArchiveReadError,
    ArchiveWriteError,
    BackupError,
    BackupInProgressError,
    BackupNotFoundError,
    InvalidBackupNameError,
    ManifestParseError,
    RestoreWriteError,
)
from sappho.services.backup.models import (
    BackupResult,
    BackupStatus,
    BundleInfo,
    RestoreReport,
    RetentionResult,
)
from sappho.services.backup.scheduler import BackupScheduler, ScheduleState
from sappho.services.backup.service import BackupService

__all__ = [
    "ArchiveReadError",
    "ArchiveWriteError",
    "BackupError",
    "BackupInProgressError",
    "BackupNotFoundError",
    "InvalidBackupNameError",
    "ManifestParseError",
    "RestoreWriteError",
    "BackupResult",
    "BackupStatus",
    "BundleInfo",
    "RestoreReport",
    "RetentionResult",
    "BackupScheduler",
    "ScheduleState",
    "BackupService",
]
