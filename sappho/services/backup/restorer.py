"""
Archive restorer - applies a bundle to the live database and cover directory.

Entries are handled strictly one at a time in archive order. Each written file
is streamed to a ``.part`` sibling and renamed into place once fully flushed.
There is no rollback: files restored before a failure stay in place, and the
previous database is left next to the live one as ``<db>.bak``.
"""

import asyncio
import json
import logging
import os
import shutil
import zipfile
import zlib
from pathlib import Path
from typing import Optional

import aiofiles

from sappho.config import Settings
from sappho.services.backup.errors import (
    ArchiveReadError,
    BackupNotFoundError,
    ManifestParseError,
    RestoreWriteError,
)
from sappho.services.backup.layout import ArchiveEntry, EntryKind, iter_entries
from sappho.services.backup.models import RestoreReport

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
MAX_MANIFEST_SIZE = 1024 * 1024
SAFETY_COPY_SUFFIX = ".bak"
PART_SUFFIX = ".part"

# Errors zipfile raises for truncated or corrupt member data
_READ_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, OSError)


class ArchiveRestorer:
    """Restore bundles produced by ArchiveBuilder."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def database_path(self) -> Path:
        return Path(self.settings.effective_database_path)

    @property
    def covers_dir(self) -> Path:
        return Path(self.settings.effective_covers_dir)

    async def restore_backup(
        self,
        bundle_path: Path,
        restore_database: bool = True,
        restore_covers: bool = True,
    ) -> RestoreReport:
        bundle_path = Path(bundle_path)
        if not bundle_path.is_file():
            raise BackupNotFoundError(bundle_path.name)

        try:
            archive = await asyncio.to_thread(zipfile.ZipFile, bundle_path, "r")
        except (zipfile.BadZipFile, OSError) as e:
            raise ArchiveReadError(f"cannot open {bundle_path.name}: {e}") from e

        report = RestoreReport()
        try:
            for entry in iter_entries(archive):
                await self._dispatch(archive, entry, report, restore_database, restore_covers)
        finally:
            archive.close()

        logger.info(f"Restore complete: database={report.database}, covers={report.covers}")
        return report

    async def _dispatch(
        self,
        archive: zipfile.ZipFile,
        entry: ArchiveEntry,
        report: RestoreReport,
        restore_database: bool,
        restore_covers: bool,
    ) -> None:
        if entry.kind is EntryKind.MANIFEST:
            report.manifest = await self._read_manifest(archive, entry)
        elif entry.kind is EntryKind.DATABASE and restore_database:
            await self._restore_database(archive, entry)
            report.database = True
        elif entry.kind is EntryKind.COVER and restore_covers:
            destination = self._cover_destination(entry)
            if destination is None:
                logger.warning(f"Skipping cover entry outside covers directory: {entry.name}")
                await self._drain(archive, entry)
                return
            await self._copy_entry(archive, entry, destination)
            report.covers += 1
        else:
            await self._drain(archive, entry)

    async def _read_manifest(self, archive: zipfile.ZipFile, entry: ArchiveEntry) -> dict:
        if entry.info.file_size > MAX_MANIFEST_SIZE:
            raise ManifestParseError(f"manifest too large ({entry.info.file_size} bytes)")
        try:
            content = await asyncio.to_thread(archive.read, entry.info)
        except _READ_ERRORS as e:
            raise ArchiveReadError(f"cannot read {entry.name}: {e}") from e
        try:
            manifest = json.loads(content.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ManifestParseError(str(e)) from e
        if not isinstance(manifest, dict):
            raise ManifestParseError("expected a JSON object")
        return manifest

    async def _restore_database(self, archive: zipfile.ZipFile, entry: ArchiveEntry) -> None:
        database_path = self.database_path
        if database_path.exists():
            safety_copy = database_path.with_name(database_path.name + SAFETY_COPY_SUFFIX)
            try:
                await asyncio.to_thread(shutil.copy2, database_path, safety_copy)
                logger.info(f"Backed up current database to {safety_copy}")
            except OSError as e:
                logger.warning(f"Could not back up current database before restore: {e}")
        await self._copy_entry(archive, entry, database_path)
        logger.info("Database restored")

    def _cover_destination(self, entry: ArchiveEntry) -> Optional[Path]:
        root = self.covers_dir.resolve()
        destination = (root / entry.cover_name).resolve()
        if destination == root or root not in destination.parents:
            return None
        return destination

    async def _read_chunk(self, source: zipfile.ZipExtFile, entry: ArchiveEntry) -> bytes:
        try:
            return await asyncio.to_thread(source.read, CHUNK_SIZE)
        except _READ_ERRORS as e:
            raise ArchiveReadError(f"cannot extract {entry.name}: {e}") from e

    async def _copy_entry(self, archive: zipfile.ZipFile, entry: ArchiveEntry, destination: Path) -> None:
        """Stream one member to destination, returning once it is on disk.

        Archive-side failures raise ArchiveReadError, destination-side ones
        (disk full, permissions) raise RestoreWriteError.
        """
        try:
            source = await asyncio.to_thread(archive.open, entry.info)
        except _READ_ERRORS as e:
            raise ArchiveReadError(f"cannot extract {entry.name}: {e}") from e

        part_path = destination.with_name(destination.name + PART_SUFFIX)
        try:
            await asyncio.to_thread(destination.parent.mkdir, parents=True, exist_ok=True)
            async with aiofiles.open(part_path, "wb") as out:
                while chunk := await self._read_chunk(source, entry):
                    await out.write(chunk)
                await out.flush()
                await asyncio.to_thread(os.fsync, out.fileno())
            await asyncio.to_thread(os.replace, part_path, destination)
        except OSError as e:
            part_path.unlink(missing_ok=True)
            raise RestoreWriteError(f"cannot write {destination}: {e}") from e
        except BaseException:
            part_path.unlink(missing_ok=True)
            raise
        finally:
            source.close()

    async def _drain(self, archive: zipfile.ZipFile, entry: ArchiveEntry) -> None:
        """Read an ignored member to the end and discard it (verifies its CRC)."""
        if entry.info.is_dir():
            return

        def _consume() -> None:
            with archive.open(entry.info) as source:
                while source.read(CHUNK_SIZE):
                    pass

        try:
            await asyncio.to_thread(_consume)
        except _READ_ERRORS as e:
            raise ArchiveReadError(f"corrupt entry {entry.name}: {e}") from e
