import os
import sqlite3

import pytest

from conftest import add_item, item_codes, make_marked_snapshot, marker_migrator, steps_before
from workshopdb.core.errors import (
    BackupIOError,
    LockError,
    MigrationEffectError,
    RestoreIOError,
    RestoreValidationError,
    StoreUnavailableError,
)
from workshopdb.core.file_lock import DatabaseFileLock
from workshopdb.storage import restore as restore_module
from workshopdb.storage.backups import BackupKind, BackupService
from workshopdb.storage.handle import QueryHandle
from workshopdb.storage.migration import SchemaMigrator
from workshopdb.storage.restore import RestoreService
from workshopdb.storage.sqlite.introspection import SchemaProbe
from workshopdb.storage.validation import file_table_signatures


def _make_service(live_db, **kwargs):
    handle = QueryHandle(live_db)
    service = RestoreService(live_db, handle, BackupService(live_db), **kwargs)
    return handle, service


def test_restore_round_trip(live_db):
    handle, service = _make_service(live_db)
    backup = service.backups.create_backup()
    at_backup = file_table_signatures(backup.path)
    with handle.transaction() as conn:
        add_item(conn, "NEW-9")

    result = service.restore(backup.path)

    assert handle.is_open
    assert result.migration.applied == []
    assert file_table_signatures(live_db) == at_backup
    assert [row[0] for row in handle.execute("SELECT code FROM items ORDER BY id")] == ["OF-1", "BP-2"]
    handle.close()


def test_restore_keeps_a_copy_of_what_it_replaced(live_db):
    handle, service = _make_service(live_db)
    backup = service.backups.create_backup()
    with handle.transaction() as conn:
        add_item(conn, "NEW-9")
    before = file_table_signatures(live_db)

    result = service.restore(backup.path)
    handle.close()

    assert result.safety_backup is not None
    assert result.safety_backup.name.startswith("pre-restore-backup-")
    assert file_table_signatures(result.safety_backup) == before
    kinds = {r.file_name: r.kind for r in service.backups.list_backups()}
    assert kinds[result.safety_backup.name] is BackupKind.PRE_RESTORE


def test_restore_rejects_missing_file_without_touching_live(live_db, tmp_path):
    handle, service = _make_service(live_db)
    mtime = os.stat(live_db).st_mtime_ns

    with pytest.raises(RestoreValidationError, match="not found"):
        service.restore(tmp_path / "nope.db")

    assert handle.is_open
    assert os.stat(live_db).st_mtime_ns == mtime
    handle.close()
    assert service.backups.list_backups() == []


@pytest.mark.parametrize(
    "content, message",
    [
        (b"", "empty"),
        (b"code,name\nOF-1,Oil filter\n", "Not a SQLite database"),
        (b"SQLite format 3\x00" + b"\x00" * 200, "integrity check"),
    ],
)
def test_restore_rejects_bad_files(live_db, tmp_path, content, message):
    handle, service = _make_service(live_db)
    bad = tmp_path / "bad.db"
    bad.write_bytes(content)

    with pytest.raises(RestoreValidationError, match=message):
        service.restore(bad)

    assert handle.is_open
    handle.close()


def test_queries_during_restore_report_store_unavailable(live_db, monkeypatch):
    handle, service = _make_service(live_db)
    backup = service.backups.create_backup()
    seen = []
    original_copy = restore_module.copy_file_atomic

    def copy_and_probe(src, dst):
        try:
            handle.execute("SELECT 1")
        except StoreUnavailableError as e:
            seen.append(e)
        assert not handle.wait_until_available(timeout=0.01)
        return original_copy(src, dst)

    monkeypatch.setattr(restore_module, "copy_file_atomic", copy_and_probe)
    service.restore(backup.path)

    assert len(seen) == 1
    assert handle.execute("SELECT COUNT(*) FROM items").fetchone()[0] == 2
    handle.close()


def test_restored_old_snapshot_is_migrated(live_db, tmp_path):
    old = tmp_path / "old.db"
    SchemaMigrator(steps_before("items_add_is_active")).run_all(old)
    conn = sqlite3.connect(old)
    with conn:
        add_item(conn, "LEGACY-1")
    conn.close()
    handle, service = _make_service(live_db)

    result = service.restore(old)

    assert "items_add_is_active" in result.migration.applied
    assert SchemaProbe(handle.conn).has_column("items", "isActive")
    assert [tuple(r) for r in handle.execute("SELECT code, isActive FROM items")] == [("LEGACY-1", 1)]
    handle.close()


def test_failed_safety_backup_aborts_restore(live_db, monkeypatch):
    handle, service = _make_service(live_db)
    backup = service.backups.create_backup()
    with handle.transaction() as conn:
        add_item(conn, "NEW-9")
    before = file_table_signatures(live_db)

    def refuse(*args, **kwargs):
        raise BackupIOError("disk full")

    monkeypatch.setattr(service.backups, "create_backup", refuse)

    with pytest.raises(BackupIOError, match="disk full"):
        service.restore(backup.path)

    assert handle.is_open
    assert file_table_signatures(live_db) == before
    handle.close()


def test_failed_copy_leaves_live_file_intact(live_db, monkeypatch):
    handle, service = _make_service(live_db)
    backup = service.backups.create_backup()
    with handle.transaction() as conn:
        add_item(conn, "NEW-9")
    before = file_table_signatures(live_db)

    def broken_copy(src, dst):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(restore_module, "copy_file_atomic", broken_copy)

    with pytest.raises(RestoreIOError, match="No space left"):
        service.restore(backup.path)

    assert handle.is_open
    assert file_table_signatures(live_db) == before
    safety = [r for r in service.backups.list_backups() if r.kind is BackupKind.PRE_RESTORE]
    assert len(safety) == 1
    assert file_table_signatures(safety[0].path) == before
    handle.close()


def test_clear_without_seed_empties_tables(live_db):
    handle, service = _make_service(live_db)
    before = file_table_signatures(live_db)

    result = service.clear_database()

    assert not result.seeded
    assert result.safety_backup.name.startswith("pre-clear-backup-")
    assert file_table_signatures(result.safety_backup) == before
    assert handle.execute("SELECT COUNT(*) FROM items").fetchone()[0] == 0
    assert handle.execute("SELECT COUNT(*) FROM business_config").fetchone()[0] == 1
    handle.close()


def test_clear_resets_to_seed(live_db, tmp_path):
    seed = tmp_path / "seed.db"
    SchemaMigrator().run_all(seed)
    conn = sqlite3.connect(seed)
    with conn:
        add_item(conn, "SEED-1")
    conn.close()
    handle, service = _make_service(live_db, seed_path=seed)

    result = service.clear_database()
    handle.close()

    assert result.seeded
    assert item_codes(live_db) == ["SEED-1"]


def test_restore_waits_for_lock(live_db):
    handle, service = _make_service(live_db, lock_timeout=0.2)
    backup = service.backups.create_backup()

    with DatabaseFileLock(live_db):
        with pytest.raises(LockError):
            service.restore(backup.path)

    assert handle.is_open
    handle.close()


def test_unmigratable_restore_keeps_handle_closed(live_db, tmp_path):
    old = make_marked_snapshot(tmp_path / "old.db")
    handle, service = _make_service(live_db, migrator=marker_migrator())
    before = file_table_signatures(live_db)

    with pytest.raises(MigrationEffectError, match="drop_legacy_marker"):
        service.restore(old)

    assert not handle.is_open
    with pytest.raises(StoreUnavailableError):
        handle.execute("SELECT 1")
    assert item_codes(live_db) == ["LEGACY-1"]
    safety = [r for r in service.backups.list_backups() if r.kind is BackupKind.PRE_RESTORE]
    assert len(safety) == 1
    assert file_table_signatures(safety[0].path) == before


def test_unmigratable_seed_on_clear_keeps_handle_closed(live_db, tmp_path):
    seed = make_marked_snapshot(tmp_path / "seed.db", code="SEED-1")
    handle, service = _make_service(live_db, migrator=marker_migrator(), seed_path=seed)
    before = file_table_signatures(live_db)

    with pytest.raises(MigrationEffectError, match="drop_legacy_marker"):
        service.clear_database()

    assert not handle.is_open
    assert item_codes(live_db) == ["SEED-1"]
    safety = [r for r in service.backups.list_backups() if r.kind is BackupKind.PRE_CLEAR]
    assert len(safety) == 1
    assert file_table_signatures(safety[0].path) == before
