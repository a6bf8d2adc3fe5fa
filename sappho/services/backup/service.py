"""
Backup Service - entry point for backup, restore and retention operations.

Builds and restores share one lock: only one of them may touch the live
database at a time, whether it was requested through the API or by the
scheduler. A second request fails fast with BackupInProgressError.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List

from sappho.config import Settings
from sappho.services.backup.builder import ArchiveBuilder
from sappho.services.backup.errors import BackupInProgressError
from sappho.services.backup.models import BackupResult, BundleInfo, RestoreReport, RetentionResult
from sappho.services.backup.paths import delete_backup, list_backups, resolve_backup_path
from sappho.services.backup.restorer import ArchiveRestorer
from sappho.services.backup.retention import apply_retention

logger = logging.getLogger(__name__)


class BackupService:
    """Coordinate bundle creation, restore, listing and retention."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.builder = ArchiveBuilder(settings)
        self.restorer = ArchiveRestorer(settings)
        self._lock = asyncio.Lock()

    @property
    def backup_dir(self) -> Path:
        return Path(self.settings.effective_backups_dir)

    @property
    def busy(self) -> bool:
        """True while a build or restore holds the lock."""
        return self._lock.locked()

    @asynccontextmanager
    async def _exclusive(self):
        if self._lock.locked():
            raise BackupInProgressError()
        async with self._lock:
            yield

    async def create_backup(self, include_covers: bool = True) -> BackupResult:
        async with self._exclusive():
            return await self.builder.create_backup(include_covers)

    async def restore_backup(
        self,
        bundle_path: Path,
        restore_database: bool = True,
        restore_covers: bool = True,
    ) -> RestoreReport:
        async with self._exclusive():
            logger.info(f"Restoring from backup: {Path(bundle_path).name}")
            return await self.restorer.restore_backup(
                bundle_path,
                restore_database=restore_database,
                restore_covers=restore_covers,
            )

    def list_backups(self) -> List[BundleInfo]:
        return list_backups(self.backup_dir)

    def get_backup_path(self, filename: str) -> Path:
        return resolve_backup_path(self.backup_dir, filename)

    def delete_backup(self, filename: str) -> dict:
        return delete_backup(self.backup_dir, filename)

    def apply_retention(self, keep_count: int) -> RetentionResult:
        return apply_retention(self.backup_dir, keep_count)
