"""
Tests for sappho.services.backup.restorer.ArchiveRestorer.

Covers round-trips with ArchiveBuilder, entry dispatch for hand-built bundles
(manifest first, unrelated entries, directory placeholders), restore options,
and failure handling for missing, corrupt and malicious bundles.
"""
import zipfile

import pytest

from sappho.services.backup.builder import ArchiveBuilder
from sappho.services.backup.errors import (
    ArchiveReadError,
    BackupNotFoundError,
    ManifestParseError,
    RestoreWriteError,
)
from sappho.services.backup.layout import EntryKind, classify_entry
from sappho.services.backup.restorer import ArchiveRestorer
from tests.factories import DB_CONTENT, make_bundle, make_covers, manifest_bytes

NEW_DB = b"SQLite format 3\x00restored"


@pytest.fixture()
def restorer(settings):
    return ArchiveRestorer(settings)


@pytest.fixture()
def bundle_path(tmp_path):
    return tmp_path / "incoming" / "sappho-backup-2024-01-15T10-00-00.zip"


# ---------------------------------------------------------------------------
# Entry classification
# ---------------------------------------------------------------------------


class TestClassifyEntry:
    @pytest.mark.parametrize(
        "name, kind",
        [
            ("manifest.json", EntryKind.MANIFEST),
            ("sappho.db", EntryKind.DATABASE),
            ("sapho.db", EntryKind.DATABASE),
            ("covers/1.jpg", EntryKind.COVER),
            ("covers/", EntryKind.OTHER),
            ("notes.txt", EntryKind.OTHER),
            ("nested/manifest.json", EntryKind.OTHER),
        ],
    )
    def test_kind(self, name, kind):
        assert classify_entry(zipfile.ZipInfo(name)).kind is kind

    def test_cover_name(self):
        entry = classify_entry(zipfile.ZipInfo("covers/12/cover.jpg"))
        assert entry.cover_name == "12/cover.jpg"


# ---------------------------------------------------------------------------
# Round trip
# ---------------------------------------------------------------------------


async def test_round_trip_with_covers(settings, database, restorer):
    covers = make_covers(settings.effective_covers_dir, count=4)
    result = await ArchiveBuilder(settings).create_backup(include_covers=True)

    # Change live state after the backup
    settings.effective_database_path.write_bytes(b"changed since backup")
    for rel in covers:
        (settings.effective_covers_dir / rel).unlink()

    report = await restorer.restore_backup(settings.effective_backups_dir / result.filename)

    assert report.database is True
    assert report.covers == 4
    assert report.manifest["includes"] == ["database", "covers"]
    assert settings.effective_database_path.read_bytes() == DB_CONTENT
    for rel, content in covers.items():
        assert (settings.effective_covers_dir / rel).read_bytes() == content


async def test_round_trip_without_covers(settings, database, restorer):
    result = await ArchiveBuilder(settings).create_backup(include_covers=False)
    report = await restorer.restore_backup(settings.effective_backups_dir / result.filename)
    assert report.database is True
    assert report.covers == 0


async def test_safety_copy_of_live_database(settings, database, restorer, bundle_path):
    make_bundle(bundle_path, [("manifest.json", manifest_bytes()), ("sappho.db", NEW_DB)])

    await restorer.restore_backup(bundle_path)

    safety = settings.effective_database_path.with_name("sappho.db.bak")
    assert safety.read_bytes() == DB_CONTENT
    assert settings.effective_database_path.read_bytes() == NEW_DB


async def test_no_safety_copy_without_live_database(settings, restorer, bundle_path):
    make_bundle(bundle_path, [("sappho.db", NEW_DB)])
    report = await restorer.restore_backup(bundle_path)
    assert report.database is True
    assert not settings.effective_database_path.with_name("sappho.db.bak").exists()
    assert settings.effective_database_path.read_bytes() == NEW_DB


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


async def test_manifest_first_then_database_then_unrelated(settings, database, restorer, bundle_path):
    make_bundle(
        bundle_path,
        [
            ("manifest.json", manifest_bytes()),
            ("sappho.db", NEW_DB),
            ("notes.txt", b"unrelated" * 1000),
        ],
    )

    report = await restorer.restore_backup(bundle_path)

    assert report.manifest == {"version": "1.0", "includes": ["database"]}
    assert report.database is True
    assert report.covers == 0
    assert not (settings.effective_database_path.parent / "notes.txt").exists()


async def test_legacy_database_entry_name(settings, database, restorer, bundle_path):
    make_bundle(bundle_path, [("sapho.db", NEW_DB)])
    report = await restorer.restore_backup(bundle_path)
    assert report.database is True
    assert settings.effective_database_path.read_bytes() == NEW_DB


async def test_covers_directory_placeholder_ignored(settings, restorer, bundle_path):
    bundle_path.parent.mkdir(parents=True)
    with zipfile.ZipFile(bundle_path, "w") as zf:
        zf.writestr(zipfile.ZipInfo("covers/"), b"")
        zf.writestr("covers/a.jpg", b"a")

    report = await restorer.restore_backup(bundle_path)

    assert report.covers == 1
    assert (settings.effective_covers_dir / "a.jpg").read_bytes() == b"a"


async def test_restore_database_disabled(settings, database, restorer, bundle_path):
    make_bundle(bundle_path, [("sappho.db", NEW_DB), ("covers/a.jpg", b"a")])

    report = await restorer.restore_backup(bundle_path, restore_database=False)

    assert report.database is False
    assert report.covers == 1
    assert settings.effective_database_path.read_bytes() == DB_CONTENT
    assert not settings.effective_database_path.with_name("sappho.db.bak").exists()


async def test_restore_covers_disabled(settings, database, restorer, bundle_path):
    make_bundle(bundle_path, [("sappho.db", NEW_DB), ("covers/a.jpg", b"a")])

    report = await restorer.restore_backup(bundle_path, restore_covers=False)

    assert report.database is True
    assert report.covers == 0
    assert not (settings.effective_covers_dir / "a.jpg").exists()


async def test_bundle_without_manifest(settings, restorer, bundle_path):
    make_bundle(bundle_path, [("sappho.db", NEW_DB)])
    report = await restorer.restore_backup(bundle_path)
    assert report.manifest is None


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


async def test_missing_bundle(restorer, tmp_path):
    with pytest.raises(BackupNotFoundError):
        await restorer.restore_backup(tmp_path / "nope.zip")


async def test_not_a_zip(restorer, bundle_path):
    bundle_path.parent.mkdir(parents=True)
    bundle_path.write_bytes(b"this is not a zip file")
    with pytest.raises(ArchiveReadError):
        await restorer.restore_backup(bundle_path)


async def test_invalid_manifest_aborts(settings, database, restorer, bundle_path):
    make_bundle(bundle_path, [("manifest.json", b"{not json"), ("sappho.db", NEW_DB)])

    with pytest.raises(ManifestParseError):
        await restorer.restore_backup(bundle_path)

    # Aborted before the database entry was reached
    assert settings.effective_database_path.read_bytes() == DB_CONTENT


async def test_manifest_must_be_object(restorer, bundle_path):
    make_bundle(bundle_path, [("manifest.json", b"[1, 2]")])
    with pytest.raises(ManifestParseError):
        await restorer.restore_backup(bundle_path)


async def test_corrupt_entry_keeps_earlier_writes(settings, database, restorer, bundle_path):
    payload = b"x" * 50000
    make_bundle(bundle_path, [("sappho.db", NEW_DB), ("covers/a.jpg", payload)])
    # Flip bytes inside the stored data of the last entry
    with zipfile.ZipFile(bundle_path) as zf:
        info = zf.getinfo("covers/a.jpg")
    raw = bytearray(bundle_path.read_bytes())
    data_start = info.header_offset + 30 + len(info.filename.encode()) + len(info.extra)
    for i in range(data_start, data_start + min(info.compress_size, 20)):
        raw[i] ^= 0xFF
    bundle_path.write_bytes(bytes(raw))

    with pytest.raises(ArchiveReadError):
        await restorer.restore_backup(bundle_path)

    # Best effort: the database written before the failure stays
    assert settings.effective_database_path.read_bytes() == NEW_DB
    assert not (settings.effective_covers_dir / "a.jpg").exists()
    assert not (settings.effective_covers_dir / "a.jpg.part").exists()


async def test_cover_traversal_entry_not_written(settings, restorer, bundle_path, tmp_path):
    make_bundle(bundle_path, [("covers/../../escaped.txt", b"evil"), ("covers/ok.jpg", b"ok")])

    report = await restorer.restore_backup(bundle_path)

    assert report.covers == 1
    assert not (tmp_path / "escaped.txt").exists()
    assert not (settings.effective_covers_dir.parent / "escaped.txt").exists()
    assert (settings.effective_covers_dir / "ok.jpg").read_bytes() == b"ok"


async def test_missing_database_dir_created(tmp_path, settings, restorer, bundle_path):
    settings.database_path = str(tmp_path / "fresh" / "sappho.db")
    make_bundle(bundle_path, [("sappho.db", NEW_DB)])
    await restorer.restore_backup(bundle_path)
    assert (tmp_path / "fresh" / "sappho.db").read_bytes() == NEW_DB


async def test_destination_write_failure_reported_as_write_error(tmp_path, settings, restorer, bundle_path):
    # The live database path is a directory, so the final rename fails
    blocked = tmp_path / "blocked" / "sappho.db"
    blocked.mkdir(parents=True)
    settings.database_path = str(blocked)
    make_bundle(bundle_path, [("sappho.db", NEW_DB)])

    with pytest.raises(RestoreWriteError, match="cannot write") as exc_info:
        await restorer.restore_backup(bundle_path)

    assert not isinstance(exc_info.value, ArchiveReadError)
    assert exc_info.value.code == "RESTORE_WRITE_FAILED"
    assert not blocked.with_name("sappho.db.part").exists()
