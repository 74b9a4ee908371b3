"""Shared SQLite and file helpers for the lifecycle services."""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import sqlite3
import tempfile
from pathlib import Path

from workshopdb.storage.sqlite.utils import open_db

log = logging.getLogger(__name__)

__all__ = [
    "SQLITE_HEADER",
    "checkpoint_truncate",
    "set_delete_mode",
    "delete_sidecars",
    "fsync_file",
    "fsync_dir",
    "has_sqlite_header",
    "quick_check",
    "backup_to_delete_mode",
    "copy_file_atomic",
]

SQLITE_HEADER = b"SQLite format 3\x00"


def checkpoint_truncate(conn: sqlite3.Connection) -> None:
    """Fold the WAL back into the main file, ignoring unsupported configurations."""

    with contextlib.suppress(sqlite3.Error):
        conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")


def set_delete_mode(conn: sqlite3.Connection) -> None:
    """Configure ``conn`` to use DELETE journal mode when possible."""

    with contextlib.suppress(sqlite3.Error):
        conn.execute("PRAGMA journal_mode=DELETE")


def delete_sidecars(path: str | os.PathLike[str]) -> None:
    """Remove ``-wal``/``-shm``/``-journal`` files adjacent to ``path`` if present."""

    base = str(Path(path))
    for suffix in ("-wal", "-shm", "-journal"):
        try:
            os.remove(base + suffix)
        except FileNotFoundError:
            continue


def fsync_file(path: str | os.PathLike[str]) -> None:
    """Force file data to disk."""
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def fsync_dir(path: str | os.PathLike[str]) -> None:
    """Persist directory entries (no-op where directories cannot be opened)."""
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return
    try:
        with contextlib.suppress(OSError):
            os.fsync(fd)
    finally:
        os.close(fd)


def has_sqlite_header(path: str | os.PathLike[str]) -> bool:
    """Return True when ``path`` starts with the SQLite 3 magic string."""

    try:
        with open(path, "rb") as fh:
            return fh.read(len(SQLITE_HEADER)) == SQLITE_HEADER
    except OSError:
        return False


def quick_check(path: str | os.PathLike[str]) -> str | None:
    """
    Run ``PRAGMA quick_check`` on ``path`` opened read-only.

    Returns ``None`` when the database is healthy, otherwise a description of
    the problem.
    """
    try:
        conn = open_db(path, mode="ro", timeout=5.0)
    except sqlite3.Error as e:
        return f"cannot open database: {e}"
    try:
        row = conn.execute("PRAGMA quick_check").fetchone()
        status = str(row[0]) if row else None
        if status is None or status.lower() != "ok":
            return f"quick_check reported: {status}"
        return None
    except sqlite3.Error as e:
        return f"cannot read database: {e}"
    finally:
        conn.close()


def backup_to_delete_mode(
    src_path: str | os.PathLike[str], dst_path: str | os.PathLike[str]
) -> Path:
    """
    Copy ``src_path`` into ``dst_path`` through SQLite's online-backup API.

    The copy is made page by page from a consistent read transaction, so it is
    never torn even while another connection is writing. The result is written
    to a temporary file beside ``dst_path``, checked, switched to DELETE journal
    mode, fsynced and then renamed over ``dst_path``.
    """

    dst_path = Path(dst_path)
    dst_dir = dst_path.parent
    dst_dir.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        prefix=dst_path.name + ".", suffix=".tmp", dir=dst_dir, delete=False
    ) as tmp:
        tmp_path = Path(tmp.name)

    src = open_db(src_path, mode="ro")
    try:
        dst = sqlite3.connect(str(tmp_path), isolation_level=None)
        try:
            src.backup(dst)
            set_delete_mode(dst)
            row = dst.execute("PRAGMA quick_check").fetchone()
            if not row or str(row[0]).lower() != "ok":
                raise sqlite3.DatabaseError(f"Backup integrity check failed: {row[0] if row else None}")
        finally:
            dst.close()
        delete_sidecars(tmp_path)
        fsync_file(tmp_path)
        os.replace(tmp_path, dst_path)
        fsync_dir(dst_dir)
    finally:
        src.close()
        if tmp_path.exists():
            with contextlib.suppress(OSError):
                tmp_path.unlink()
    return dst_path


def copy_file_atomic(src_path: str | os.PathLike[str], dst_path: str | os.PathLike[str]) -> Path:
    """
    Copy ``src_path`` byte-for-byte over ``dst_path`` without a torn result.

    Bytes land in a temp file in the destination directory first; only a
    fully written and fsynced copy is renamed into place.
    """

    dst_path = Path(dst_path)
    dst_dir = dst_path.parent
    dst_dir.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        prefix=dst_path.name + ".", suffix=".tmp", dir=dst_dir, delete=False
    ) as tmp:
        tmp_path = Path(tmp.name)

    try:
        shutil.copyfile(src_path, tmp_path)
        fsync_file(tmp_path)
        os.replace(tmp_path, dst_path)
        fsync_dir(dst_dir)
        log.debug(f"Copied {src_path} -> {dst_path}")
    finally:
        if tmp_path.exists():
            with contextlib.suppress(OSError):
                tmp_path.unlink()
    return dst_path
