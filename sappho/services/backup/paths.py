"""
Backup directory access: name validation, listing and deletion.

Every caller-supplied bundle name goes through ``resolve_backup_path`` before
the filesystem is touched, so a request can only ever address a file directly
inside the backup directory.
"""

import json
import logging
import zipfile
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import List, Optional, Tuple

from sappho.services.backup.errors import BackupNotFoundError, InvalidBackupNameError
from sappho.services.backup.layout import MANIFEST_NAME, is_backup_filename
from sappho.services.backup.models import BundleInfo

logger = logging.getLogger(__name__)

_SIZE_UNITS = (
    ("GB", 1024 ** 3, Decimal("0.01")),
    ("MB", 1024 ** 2, Decimal("0.1")),
    ("KB", 1024, Decimal("0.1")),
)


def ensure_backup_dir(backup_dir: Path) -> Path:
    """Get and ensure backups directory exists."""
    backup_dir = Path(backup_dir)
    backup_dir.mkdir(parents=True, exist_ok=True)
    return backup_dir


def format_bytes(size: int) -> str:
    """Format a byte count for humans: 512 B, 1.5 KB, 5.0 MB, 1.00 GB."""
    for unit, factor, places in _SIZE_UNITS:
        if size >= factor:
            value = (Decimal(size) / factor).quantize(places, rounding=ROUND_HALF_UP)
            return f"{value} {unit}"
    return f"{size} B"


def sanitize_backup_filename(filename: str) -> str:
    """Reduce a caller-supplied name to a bare bundle file name.

    Directory components are dropped (both separator styles), so
    ``../../etc/sappho-backup-x.zip`` becomes ``sappho-backup-x.zip``.
    """
    if not isinstance(filename, str) or "\x00" in filename:
        raise InvalidBackupNameError(str(filename))
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    if name in ("", ".", "..") or not is_backup_filename(name):
        raise InvalidBackupNameError(filename)
    return name


def resolve_backup_path(backup_dir: Path, filename: str) -> Path:
    """Resolve a requested bundle name to an existing file inside backup_dir.

    Raises InvalidBackupNameError for names outside the pattern or escaping the
    directory, BackupNotFoundError when the sandboxed path does not exist.
    """
    name = sanitize_backup_filename(filename)
    root = Path(backup_dir).resolve()
    candidate = root / name
    # A symlinked bundle pointing elsewhere is treated as an escape
    if candidate.resolve().parent != root:
        raise InvalidBackupNameError(filename)
    if not candidate.is_file():
        raise BackupNotFoundError(name)
    return candidate


def read_manifest(bundle_path: Path) -> Optional[dict]:
    """Read manifest.json from a bundle, or None if the bundle is unreadable."""
    try:
        with zipfile.ZipFile(bundle_path, "r") as zf:
            if MANIFEST_NAME not in zf.namelist():
                return None
            manifest = json.loads(zf.read(MANIFEST_NAME).decode("utf-8"))
    except (zipfile.BadZipFile, OSError, ValueError, EOFError) as e:
        logger.warning(f"Unreadable backup bundle {bundle_path.name}: {e}")
        return None
    return manifest if isinstance(manifest, dict) else None


def _bundle_info(path: Path) -> Tuple[float, BundleInfo]:
    stat = path.stat()
    manifest = read_manifest(path)
    includes = None
    manifest_version = None
    if manifest is not None:
        raw_includes = manifest.get("includes")
        includes = [str(item) for item in raw_includes] if isinstance(raw_includes, list) else []
        manifest_version = manifest.get("version")
    info = BundleInfo(
        filename=path.name,
        size_bytes=stat.st_size,
        size_formatted=format_bytes(stat.st_size),
        created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        manifest_version=str(manifest_version) if manifest_version is not None else None,
        includes=includes,
    )
    return stat.st_mtime, info


def list_backups(backup_dir: Path) -> List[BundleInfo]:
    """List bundles in backup_dir, most recently modified first."""
    backup_dir = ensure_backup_dir(backup_dir)
    items: List[Tuple[float, BundleInfo]] = []

    for fp in backup_dir.iterdir():
        if not is_backup_filename(fp.name) or not fp.is_file():
            continue
        try:
            items.append(_bundle_info(fp))
        except FileNotFoundError:
            # Deleted between iterdir() and stat()
            continue

    items.sort(key=lambda item: item[0], reverse=True)
    return [info for _, info in items]


def delete_backup(backup_dir: Path, filename: str) -> dict:
    """Delete a single bundle by name."""
    backup_path = resolve_backup_path(backup_dir, filename)
    backup_path.unlink()
    logger.info(f"Backup deleted: {backup_path.name}")
    return {"success": True, "filename": backup_path.name}
