"""
Service layer for the Sappho server.

This module provides business logic for:
- Backup bundle creation and restore
- Backup retention
- Scheduled backups
"""

from sappho.services.backup import (
    BackupService,
    BackupScheduler,
    BackupError,
    InvalidBackupNameError,
    BackupNotFoundError,
    BackupInProgressError,
)

__all__ = [
    "BackupService",
    "BackupScheduler",
    "BackupError",
    "InvalidBackupNameError",
    "BackupNotFoundError",
    "BackupInProgressError",
]
