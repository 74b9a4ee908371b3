# WorkshopDB
# Copyright © 2025 Osvaldo J. Vega Rodríguez
# Licensed under CC BY-NC-SA 4.0 International
# http://creativecommons.org/licenses/by-nc-sa/4.0/

"""Lock file that keeps two lifecycle operations from overlapping."""

from __future__ import annotations

import logging
import os
import sys
import time
from pathlib import Path

from workshopdb.core.errors import LockError

STALE_LOCK_AGE_SECONDS = 2 * 60 * 60  # 2 hours

log = logging.getLogger(__name__)

__all__ = ["DatabaseFileLock", "STALE_LOCK_AGE_SECONDS"]


class DatabaseFileLock:
    """
    Exclusive lock for backup/restore/clear operations on the live database.

    The lock is a sibling file (``workshop.db.lock``) created with
    ``O_CREAT | O_EXCL`` and holding the owner PID and a timestamp. A lock
    whose PID is no longer running, or that carries no PID and is older than
    :data:`STALE_LOCK_AGE_SECONDS`, is treated as stale and replaced.

    Usage:
        with DatabaseFileLock(live_path):
            # ... replace the live file ...
    """

    def __init__(self, db_path: str | Path, *, timeout: float = 5.0):
        self.db_path = Path(db_path)
        self.lock_path = self.db_path.with_suffix(self.db_path.suffix + ".lock")
        self.timeout = timeout
        self.lock_file: int | None = None
        self._acquired = False

    def acquire(self, timeout: float | None = None) -> bool:
        """
        Attempt to acquire the lock.

        Raises:
            LockError: If the lock cannot be acquired within ``timeout`` seconds
        """
        timeout = self.timeout if timeout is None else timeout
        start_time = time.time()
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)

        while True:
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
                os.write(fd, f"{os.getpid()}\n{time.time()}\n".encode("utf-8"))
                self.lock_file = fd
                self._acquired = True
                log.debug(f"Acquired database lock: {self.lock_path}")
                return True

            except FileExistsError as exc:
                if self._is_stale_lock():
                    log.warning(f"Removing stale lock file: {self.lock_path}")
                    self.lock_path.unlink(missing_ok=True)
                    continue

                if time.time() - start_time >= timeout:
                    holder = self._get_lock_holder_info()
                    log.error("Timeout acquiring database lock lock=%s holder=%s", self.lock_path, holder)
                    raise LockError(
                        f"Another backup or restore is in progress.\n\n"
                        f"Lock file: {self.lock_path}\n{holder}"
                    ) from exc

                time.sleep(0.1)

            except OSError as e:
                raise LockError(f"Failed to acquire database lock: {e}") from e

    def release(self) -> None:
        """Release the lock if held."""
        if not self._acquired:
            return

        try:
            if self.lock_file is not None:
                try:
                    os.close(self.lock_file)
                except OSError as e:
                    log.debug(f"Error closing lock file descriptor: {e}")
                finally:
                    self.lock_file = None
            self.lock_path.unlink(missing_ok=True)
            log.debug(f"Released database lock: {self.lock_path}")
        finally:
            self._acquired = False

    @property
    def acquired(self) -> bool:
        return self._acquired

    def _is_stale_lock(self) -> bool:
        metadata = self._read_lock_metadata()
        if metadata is None:
            return False

        pid, timestamp = metadata
        if pid is not None:
            if pid == os.getpid():
                # A lock left behind by this process is never reentrant here
                return False
            return not self._process_exists(pid)

        if timestamp is not None:
            return time.time() - timestamp >= STALE_LOCK_AGE_SECONDS

        log.warning("Lock metadata missing for %s; treating as stale", self.lock_path)
        return True

    def _read_lock_metadata(self) -> tuple[int | None, float | None] | None:
        """Return (pid, timestamp) tuple from lock file when available."""
        try:
            with open(self.lock_path, encoding="utf-8") as f:
                lines = f.readlines()
        except OSError:
            return None

        if not lines:
            return None

        pid: int | None = None
        timestamp: float | None = None
        try:
            pid = int(lines[0].strip())
        except ValueError:
            log.debug("Invalid PID entry in %s: %r", self.lock_path, lines[0])
        if len(lines) >= 2:
            try:
                timestamp = float(lines[1].strip())
            except ValueError:
                log.debug("Invalid timestamp entry in %s: %r", self.lock_path, lines[1])
        return pid, timestamp

    @staticmethod
    def _process_exists(pid: int) -> bool:
        if sys.platform == "win32":
            import ctypes

            kernel32 = ctypes.windll.kernel32
            PROCESS_QUERY_LIMITED_INFORMATION = 0x1000
            handle = kernel32.OpenProcess(PROCESS_QUERY_LIMITED_INFORMATION, False, pid)
            if handle:
                kernel32.CloseHandle(handle)
                return True
            return False

        try:
            # Signal 0 only probes for existence
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except OSError:
            # EPERM means the process exists but belongs to someone else
            return True
        return True

    def _get_lock_holder_info(self) -> str:
        metadata = self._read_lock_metadata()
        if metadata is None:
            return "Lock holder information unavailable"
        pid, timestamp = metadata
        if pid is not None and timestamp is not None:
            return f"Locked by PID {pid} (lock age: {time.time() - timestamp:.0f}s)"
        if pid is not None:
            return f"Locked by PID {pid}"
        return "Lock metadata missing"

    def __enter__(self) -> DatabaseFileLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
