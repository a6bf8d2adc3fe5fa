"""
Bundle naming and internal layout.

A bundle is a single ZIP file named ``sappho-backup-<timestamp>.zip``:

    manifest.json        {"version", "created", "includes", "cover_count"}
    sappho.db            primary database file
    covers/<path>        one entry per cover image
"""

import posixpath
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, Optional

BACKUP_PREFIX = "sappho-backup-"
BACKUP_EXTENSION = ".zip"
PARTIAL_SUFFIX = ".partial"

MANIFEST_VERSION = "1.0"
MANIFEST_NAME = "manifest.json"
DATABASE_ENTRY = "sappho.db"
# Bundles written by early releases used a misspelled database entry
LEGACY_DATABASE_ENTRIES = ("sapho.db",)
COVERS_PREFIX = "covers/"

INCLUDES_DATABASE = "database"
INCLUDES_COVERS = "covers"


def is_backup_filename(name: str) -> bool:
    """Check if a bare file name follows the bundle naming pattern."""
    return (
        name.startswith(BACKUP_PREFIX)
        and name.endswith(BACKUP_EXTENSION)
        and len(name) > len(BACKUP_PREFIX) + len(BACKUP_EXTENSION)
    )


def generate_backup_filename(now: Optional[datetime] = None) -> str:
    """Build a bundle name from a UTC timestamp, e.g. sappho-backup-2024-01-15T10-00-00.zip"""
    now = now or datetime.now(timezone.utc)
    stamp = now.astimezone(timezone.utc).isoformat().replace(":", "-").replace(".", "-")[:19]
    return f"{BACKUP_PREFIX}{stamp}{BACKUP_EXTENSION}"


class EntryKind(str, Enum):
    MANIFEST = "manifest"
    DATABASE = "database"
    COVER = "cover"
    OTHER = "other"


@dataclass
class ArchiveEntry:
    """One archive member, tagged by what it restores to."""
    kind: EntryKind
    info: zipfile.ZipInfo
    cover_name: Optional[str] = None

    @property
    def name(self) -> str:
        return self.info.filename


def classify_entry(info: zipfile.ZipInfo) -> ArchiveEntry:
    """Decide what an archive member is from its stored path."""
    name = info.filename
    if name == MANIFEST_NAME:
        return ArchiveEntry(EntryKind.MANIFEST, info)
    if name == DATABASE_ENTRY or name in LEGACY_DATABASE_ENTRIES:
        return ArchiveEntry(EntryKind.DATABASE, info)
    if name.startswith(COVERS_PREFIX):
        cover_name = name[len(COVERS_PREFIX):]
        # covers/ with nothing after it is a directory placeholder
        if cover_name and not info.is_dir():
            return ArchiveEntry(EntryKind.COVER, info, cover_name=posixpath.normpath(cover_name))
    return ArchiveEntry(EntryKind.OTHER, info)


def iter_entries(archive: zipfile.ZipFile) -> Iterator[ArchiveEntry]:
    """Yield classified entries in archive order."""
    for info in archive.infolist():
        yield classify_entry(info)
