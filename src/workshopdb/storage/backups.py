"""
Timestamped whole-file backups of the live database.

Backups are plain SQLite files named ``<prefix>-<UTC timestamp>.db`` in a
``backups`` directory beside the live file:

    data/
        workshop.db
        backups/
            workshop-backup-2026-10-19T03-56-12-123456Z.db
            pre-restore-backup-2026-10-19T04-02-40-481203Z.db
            pre-clear-backup-2026-10-19T04-10-05-007730Z.db

The records returned by :meth:`BackupService.list_backups` are derived from
the directory listing on every call; nothing about backups is stored in the
database itself.
"""

from __future__ import annotations

import logging
import os
import re
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from workshopdb.core.config import BACKUP_DIRNAME
from workshopdb.core.errors import BackupIOError, NotFoundError, PermissionDeniedError
from workshopdb.storage.sqlite_utils import backup_to_delete_mode

log = logging.getLogger(__name__)

__all__ = [
    "BackupDestination",
    "BackupKind",
    "BackupRecord",
    "BackupResult",
    "BackupService",
    "CANCELLED",
    "Cancelled",
    "MANUAL_PREFIX",
    "PRE_RESTORE_PREFIX",
    "PRE_CLEAR_PREFIX",
    "backup_file_name",
]

MANUAL_PREFIX = "workshop-backup"
PRE_RESTORE_PREFIX = "pre-restore-backup"
PRE_CLEAR_PREFIX = "pre-clear-backup"

TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S-%fZ"

_NAME_RE = re.compile(
    r"^(?P<prefix>workshop-backup|pre-restore-backup|pre-clear-backup)"
    r"-(?P<stamp>\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{6}Z)"
    r"(?:-(?P<seq>\d+))?\.db$"
)

# Bounded so a broken filesystem cannot spin forever.
MAX_NAME_ATTEMPTS = 1000


# =============================================================================
# Data Structures
# =============================================================================


class BackupDestination(str, Enum):
    DEFAULT = "default"
    USER_CHOSEN = "user-chosen"


class BackupKind(str, Enum):
    MANUAL = "manual"
    PRE_RESTORE = "pre-restore"
    PRE_CLEAR = "pre-clear"


_KIND_BY_PREFIX = {
    MANUAL_PREFIX: BackupKind.MANUAL,
    PRE_RESTORE_PREFIX: BackupKind.PRE_RESTORE,
    PRE_CLEAR_PREFIX: BackupKind.PRE_CLEAR,
}


class Cancelled(Enum):
    """Outcome of a backup whose destination prompt was dismissed."""

    CANCELLED = "cancelled"


CANCELLED = Cancelled.CANCELLED


@dataclass(frozen=True)
class BackupResult:
    path: Path
    file_name: str
    timestamp: datetime
    size_bytes: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "file_name": self.file_name,
            "timestamp": self.timestamp.isoformat(),
            "size_bytes": self.size_bytes,
        }


@dataclass(frozen=True)
class BackupRecord:
    """One backup file as seen on disk."""

    file_name: str
    path: Path
    size_bytes: int
    created_at: datetime
    kind: BackupKind

    def as_dict(self) -> dict[str, Any]:
        return {
            "file_name": self.file_name,
            "path": str(self.path),
            "size_bytes": self.size_bytes,
            "created_at": self.created_at.isoformat(),
            "kind": self.kind.value,
        }


def backup_file_name(prefix: str, when: datetime, seq: int = 0) -> str:
    """Build a filesystem-safe backup name for ``when`` (converted to UTC)."""

    stamp = when.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)
    suffix = f"-{seq}" if seq else ""
    return f"{prefix}-{stamp}{suffix}.db"


def _reserve(directory: Path, prefix: str, when: datetime) -> Path:
    """Create an empty placeholder under a name nobody else holds."""

    for seq in range(MAX_NAME_ATTEMPTS):
        candidate = directory / backup_file_name(prefix, when, seq)
        try:
            fd = os.open(candidate, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            continue
        os.close(fd)
        return candidate
    raise BackupIOError(f"Could not find a free backup name in {directory}")


# =============================================================================
# Service
# =============================================================================


class BackupService:
    """Create, enumerate and delete backups of one live database file."""

    def __init__(self, live_path: str | Path, backup_dir: str | Path | None = None):
        self.live_path = Path(live_path)
        self.backup_dir = Path(backup_dir) if backup_dir else self.live_path.parent / BACKUP_DIRNAME

    def create_backup(
        self,
        destination: BackupDestination = BackupDestination.DEFAULT,
        *,
        prompt: Callable[[str], str | Path | None] | None = None,
        prefix: str = MANUAL_PREFIX,
    ) -> BackupResult | Cancelled:
        """
        Snapshot the live file through SQLite's online-backup API.

        With ``BackupDestination.USER_CHOSEN`` the ``prompt`` callback receives
        a suggested file name and returns a file or directory path, or ``None``
        when the user cancelled.

        Raises:
            BackupIOError: If the copy cannot be written or verified
        """
        when = datetime.now(timezone.utc)

        if not self.live_path.is_file():
            raise BackupIOError(f"Live database does not exist: {self.live_path}")

        if destination is BackupDestination.USER_CHOSEN:
            if prompt is None:
                raise ValueError("A prompt callback is required for a user-chosen destination")
            chosen = prompt(backup_file_name(prefix, when))
            if chosen is None:
                log.info("Backup cancelled by user")
                return CANCELLED
            chosen = Path(chosen)
            if chosen.is_dir():
                target_dir, target = chosen, None
            else:
                target_dir, target = chosen.parent, chosen
        else:
            target_dir, target = self.backup_dir, None

        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            if target is None:
                target = _reserve(target_dir, prefix, when)
        except OSError as e:
            raise BackupIOError(f"Cannot prepare backup destination {target_dir}: {e}") from e

        try:
            backup_to_delete_mode(self.live_path, target)
            size = target.stat().st_size
        except (OSError, sqlite3.Error) as e:
            log.error(f"Backup to {target} failed: {e}", exc_info=True)
            target.unlink(missing_ok=True)
            raise BackupIOError(f"Backup failed: {e}") from e

        log.info(f"Created backup {target} ({size} bytes)")
        return BackupResult(path=target, file_name=target.name, timestamp=when, size_bytes=size)

    def list_backups(self) -> list[BackupRecord]:
        """Return backup records in the backups directory, newest first."""

        if not self.backup_dir.is_dir():
            return []

        records = []
        for path in self.backup_dir.iterdir():
            match = _NAME_RE.match(path.name)
            if match is None or not path.is_file():
                continue
            try:
                stat = path.stat()
            except OSError as e:
                log.warning(f"Could not read backup {path}: {e}")
                continue
            records.append(
                BackupRecord(
                    file_name=path.name,
                    path=path,
                    size_bytes=stat.st_size,
                    created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    kind=_KIND_BY_PREFIX[match.group("prefix")],
                )
            )

        records.sort(key=lambda r: (r.created_at, r.file_name), reverse=True)
        return records

    def delete_backup(self, path: str | Path) -> None:
        """
        Remove one backup file.

        Raises:
            NotFoundError: If ``path`` does not exist
            PermissionDeniedError: If it is not a backup file or cannot be removed
        """
        path = Path(path)
        if not path.exists():
            raise NotFoundError(f"Backup not found: {path}")
        if not path.is_file() or _NAME_RE.match(path.name) is None:
            raise PermissionDeniedError(f"Not a backup file: {path}")
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise NotFoundError(f"Backup not found: {path}") from e
        except OSError as e:
            raise PermissionDeniedError(f"Cannot delete backup {path}: {e}") from e
        log.info(f"Deleted backup {path}")
