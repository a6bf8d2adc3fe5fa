"""Retention policy enforcement for backup bundles."""
import logging
from pathlib import Path

from sappho.services.backup.errors import BackupError
from sappho.services.backup.models import RetentionResult
from sappho.services.backup.paths import delete_backup, list_backups

logger = logging.getLogger(__name__)


def apply_retention(backup_dir: Path, keep_count: int) -> RetentionResult:
    """Keep the keep_count most recent bundles and delete the rest.

    A bundle that cannot be deleted is logged and skipped; the result counts
    only bundles actually removed.
    """
    keep_count = max(int(keep_count), 0)
    backups = list_backups(backup_dir)

    if len(backups) <= keep_count:
        return RetentionResult(deleted=0)

    deleted = 0
    for backup in backups[keep_count:]:
        try:
            delete_backup(backup_dir, backup.filename)
            deleted += 1
        except (OSError, BackupError) as e:
            logger.error(f"Failed to delete old backup {backup.filename}: {e}")

    logger.info(f"Retention applied: deleted {deleted} old backup(s)")
    return RetentionResult(deleted=deleted)
