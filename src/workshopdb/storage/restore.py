"""
Replace or reset the live database file.

Both operations follow the same order:

1. (restore only) sanity-check the chosen backup without touching the live file
2. close the :class:`QueryHandle` so nothing holds the live file
3. take a safety backup and verify it matches the live content
4. swap new bytes into place through a temp file and ``os.replace``
5. reopen the handle and run every migration again

If the safety backup cannot be made or verified the live file is left as it
was and the handle is reopened against it.
"""

from __future__ import annotations

import contextlib
import logging
import os
import sqlite3
import tempfile
from dataclasses import dataclass
from pathlib import Path

from workshopdb.core.errors import (
    BackupIOError,
    MigrationEffectError,
    MigrationGuardError,
    RestoreIOError,
    RestoreValidationError,
)
from workshopdb.core.file_lock import DatabaseFileLock
from workshopdb.storage.backups import (
    PRE_CLEAR_PREFIX,
    PRE_RESTORE_PREFIX,
    BackupResult,
    BackupService,
)
from workshopdb.storage.handle import QueryHandle
from workshopdb.storage.migration import MigrationReport, SchemaMigrator
from workshopdb.storage.sqlite_utils import (
    copy_file_atomic,
    delete_sidecars,
    fsync_dir,
    fsync_file,
    has_sqlite_header,
    quick_check,
)
from workshopdb.storage.validation import file_table_signatures

log = logging.getLogger(__name__)

__all__ = ["RestoreResult", "ClearResult", "RestoreService", "validate_backup_file"]


@dataclass(frozen=True)
class RestoreResult:
    path: Path
    restored_from: Path
    safety_backup: Path | None
    migration: MigrationReport

    @property
    def message(self) -> str:
        return f"Database restored from {self.restored_from.name}"


@dataclass(frozen=True)
class ClearResult:
    path: Path
    safety_backup: Path | None
    seeded: bool
    migration: MigrationReport

    @property
    def message(self) -> str:
        source = "the seed database" if self.seeded else "an empty database"
        return f"Database reset to {source}"


def validate_backup_file(path: str | Path) -> Path:
    """
    Check that ``path`` looks like a usable SQLite database.

    Raises:
        RestoreValidationError: If the file is missing, empty, not SQLite or fails ``quick_check``
    """
    path = Path(path)
    if not path.exists():
        raise RestoreValidationError(f"Backup file not found: {path}")
    if not path.is_file():
        raise RestoreValidationError(f"Backup path is not a file: {path}")
    if path.stat().st_size == 0:
        raise RestoreValidationError(f"Backup file is empty: {path}")
    if not has_sqlite_header(path):
        raise RestoreValidationError(f"Not a SQLite database: {path}")
    problem = quick_check(path)
    if problem is not None:
        raise RestoreValidationError(f"Backup failed integrity check ({problem}): {path}")
    return path


def _write_empty_file(path: Path) -> None:
    """Atomically replace ``path`` with a zero-length file (an empty database)."""

    with tempfile.NamedTemporaryFile(
        prefix=path.name + ".", suffix=".tmp", dir=path.parent, delete=False
    ) as tmp:
        tmp_path = Path(tmp.name)
    try:
        fsync_file(tmp_path)
        os.replace(tmp_path, path)
        fsync_dir(path.parent)
    finally:
        if tmp_path.exists():
            with contextlib.suppress(OSError):
                tmp_path.unlink()


class RestoreService:
    """Coordinates backup files, the live file and the open query handle."""

    def __init__(
        self,
        live_path: str | Path,
        handle: QueryHandle,
        backups: BackupService,
        *,
        migrator: SchemaMigrator | None = None,
        seed_path: str | Path | None = None,
        lock_timeout: float = 5.0,
    ):
        self.live_path = Path(live_path)
        self.handle = handle
        self.backups = backups
        self.migrator = migrator or SchemaMigrator()
        self.seed_path = Path(seed_path) if seed_path else None
        self.lock_timeout = lock_timeout

    # ------------------------------------------------------------------
    def restore(self, backup_path: str | Path) -> RestoreResult:
        """
        Replace the live database with ``backup_path``.

        A file that fails :func:`validate_backup_file` is rejected before the
        handle is closed, so no safety backup is written for that attempt and
        the live file keeps its bytes and modification time.

        Raises:
            RestoreValidationError: If the backup fails the sanity check
            BackupIOError: If the safety backup fails (live file untouched)
            RestoreIOError: If the copy into place fails (live file untouched)
            MigrationEffectError: If the restored file cannot be migrated; the
                handle is left closed
        """
        source = validate_backup_file(backup_path)
        if source.resolve() == self.live_path.resolve():
            raise RestoreValidationError("Cannot restore the live database onto itself")

        with DatabaseFileLock(self.live_path, timeout=self.lock_timeout):
            log.info(f"Restoring {self.live_path} from {source}")
            safety = self._quiesce_with_safety_backup(PRE_RESTORE_PREFIX)

            try:
                delete_sidecars(self.live_path)
                copy_file_atomic(source, self.live_path)
            except OSError as e:
                log.error(f"Copying {source} into place failed: {e}", exc_info=True)
                self.handle.reopen(self.live_path)
                raise RestoreIOError(f"Could not copy backup into place: {e}") from e

            report = self._reopen_and_migrate()

        return RestoreResult(
            path=self.live_path,
            restored_from=source,
            safety_backup=safety.path if safety else None,
            migration=report,
        )

    def clear_database(self) -> ClearResult:
        """Back up the live file, then reset it to the seed or an empty database."""

        with DatabaseFileLock(self.live_path, timeout=self.lock_timeout):
            log.info(f"Clearing {self.live_path}")
            safety = self._quiesce_with_safety_backup(PRE_CLEAR_PREFIX)

            seeded = self.seed_path is not None and self.seed_path.is_file()
            try:
                delete_sidecars(self.live_path)
                if seeded:
                    copy_file_atomic(self.seed_path, self.live_path)  # type: ignore[arg-type]
                else:
                    _write_empty_file(self.live_path)
            except OSError as e:
                log.error(f"Resetting {self.live_path} failed: {e}", exc_info=True)
                self.handle.reopen(self.live_path)
                raise RestoreIOError(f"Could not reset the database: {e}") from e

            report = self._reopen_and_migrate()

        return ClearResult(
            path=self.live_path,
            safety_backup=safety.path if safety else None,
            seeded=seeded,
            migration=report,
        )

    # ------------------------------------------------------------------
    def _quiesce_with_safety_backup(self, prefix: str) -> BackupResult | None:
        """Close the handle and capture a verified copy of the live file."""

        self.handle.close()
        if not self.live_path.exists() or self.live_path.stat().st_size == 0:
            log.info(f"Live file {self.live_path} is empty; nothing to back up")
            return None

        try:
            safety = self.backups.create_backup(prefix=prefix)
            if not isinstance(safety, BackupResult):
                raise BackupIOError("Safety backup was not created")
            self._verify_safety_backup(safety.path)
        except (BackupIOError, OSError, sqlite3.Error) as e:
            log.error(f"Safety backup failed; live file left untouched: {e}", exc_info=True)
            self.handle.reopen(self.live_path)
            if isinstance(e, BackupIOError):
                raise
            raise BackupIOError(f"Safety backup could not be verified: {e}") from e

        log.info(f"Safety backup written to {safety.path}")
        return safety

    def _verify_safety_backup(self, path: Path) -> None:
        if path.stat().st_size == 0:
            raise BackupIOError(f"Safety backup is empty: {path}")
        problem = quick_check(path)
        if problem is not None:
            raise BackupIOError(f"Safety backup is unreadable ({problem}): {path}")
        if file_table_signatures(path) != file_table_signatures(self.live_path):
            raise BackupIOError(f"Safety backup content differs from the live file: {path}")

    def _reopen_and_migrate(self) -> MigrationReport:
        self.handle.reopen(self.live_path)
        try:
            return self.migrator.run_all(self.live_path)
        except (MigrationGuardError, MigrationEffectError):
            self.handle.close()
            raise
