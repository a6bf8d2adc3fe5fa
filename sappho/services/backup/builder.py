"""
Archive builder - writes the database, covers and manifest into one bundle.

The bundle is written under a ``.partial`` name and renamed into place only
after the archive is closed, so listings never see a half-written bundle.
"""

import asyncio
import json
import logging
import os
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from sappho.config import Settings
from sappho.services.backup.errors import ArchiveWriteError
from sappho.services.backup.layout import (
    BACKUP_EXTENSION,
    COVERS_PREFIX,
    DATABASE_ENTRY,
    INCLUDES_COVERS,
    INCLUDES_DATABASE,
    MANIFEST_NAME,
    MANIFEST_VERSION,
    PARTIAL_SUFFIX,
    generate_backup_filename,
)
from sappho.services.backup.models import BackupResult
from sappho.services.backup.paths import ensure_backup_dir, format_bytes

logger = logging.getLogger(__name__)

COMPRESS_LEVEL = 9


def _collect_covers(covers_dir: Path) -> List[Tuple[Path, str]]:
    """Return (source, archive name) pairs for every file under covers_dir."""
    if not covers_dir.is_dir():
        return []
    covers = []
    for fp in sorted(covers_dir.rglob("*")):
        if fp.is_file():
            rel = fp.relative_to(covers_dir).as_posix()
            covers.append((fp, f"{COVERS_PREFIX}{rel}"))
    return covers


def _remove_stale_partials(backup_dir: Path) -> int:
    """Delete ``.partial`` files left by builds that were cancelled or crashed.

    Builds are serialized by BackupService, so no other build owns them.
    """
    removed = 0
    for fp in backup_dir.glob(f"*{BACKUP_EXTENSION}{PARTIAL_SUFFIX}"):
        try:
            fp.unlink()
            removed += 1
        except FileNotFoundError:
            continue
    if removed:
        logger.info(f"Removed {removed} leftover partial backup(s)")
    return removed


def _unique_target(backup_dir: Path, filename: str) -> Path:
    target = backup_dir / filename
    counter = 1
    while target.exists() or target.with_name(target.name + PARTIAL_SUFFIX).exists():
        stem = filename[: -len(BACKUP_EXTENSION)]
        target = backup_dir / f"{stem}-{counter}{BACKUP_EXTENSION}"
        counter += 1
    return target


class ArchiveBuilder:
    """Build backup bundles from the live database and cover directory."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def backup_dir(self) -> Path:
        return Path(self.settings.effective_backups_dir)

    def build_manifest(self, cover_count: int, created: Optional[datetime] = None) -> dict:
        manifest = {
            "version": MANIFEST_VERSION,
            "created": (created or datetime.now(timezone.utc)).isoformat(),
            "includes": [INCLUDES_DATABASE],
        }
        if cover_count > 0:
            manifest["includes"].append(INCLUDES_COVERS)
            manifest["cover_count"] = cover_count
        return manifest

    def _write_bundle(self, partial_path: Path, covers: List[Tuple[Path, str]], manifest: dict) -> None:
        """Write the archive. Runs in a worker thread."""
        database_path = Path(self.settings.effective_database_path)
        with zipfile.ZipFile(
            partial_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=COMPRESS_LEVEL
        ) as zf:
            # ZipFile.write streams the source in chunks
            zf.write(database_path, DATABASE_ENTRY)
            for source, arcname in covers:
                zf.write(source, arcname)
            zf.writestr(MANIFEST_NAME, json.dumps(manifest, indent=2))

        with open(partial_path, "rb") as fh:
            os.fsync(fh.fileno())

    async def create_backup(self, include_covers: bool = True) -> BackupResult:
        """Create a bundle in the backup directory.

        Covers are added only when requested and the cover directory holds at
        least one file; the manifest records what was actually added.
        """
        backup_dir = await asyncio.to_thread(ensure_backup_dir, self.backup_dir)
        await asyncio.to_thread(_remove_stale_partials, backup_dir)
        database_path = Path(self.settings.effective_database_path)
        if not await asyncio.to_thread(database_path.is_file):
            raise ArchiveWriteError(f"database file not found at {database_path}")

        covers: List[Tuple[Path, str]] = []
        if include_covers:
            covers = await asyncio.to_thread(_collect_covers, Path(self.settings.effective_covers_dir))

        created = datetime.now(timezone.utc)
        target = await asyncio.to_thread(_unique_target, backup_dir, generate_backup_filename(created))
        partial_path = target.with_name(target.name + PARTIAL_SUFFIX)
        manifest = self.build_manifest(len(covers), created)

        try:
            await asyncio.to_thread(self._write_bundle, partial_path, covers, manifest)
            await asyncio.to_thread(os.replace, partial_path, target)
        except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as e:
            partial_path.unlink(missing_ok=True)
            logger.error(f"Backup {target.name} failed: {e}")
            raise ArchiveWriteError(str(e)) from e
        except BaseException:
            # Cancellation: a partial the worker thread writes later is cleared by the next build
            partial_path.unlink(missing_ok=True)
            raise

        size = (await asyncio.to_thread(target.stat)).st_size
        logger.info(f"Backup created: {target.name} ({format_bytes(size)})")
        return BackupResult(
            filename=target.name,
            size=size,
            includes_covers=bool(covers),
            created_at=created,
        )
