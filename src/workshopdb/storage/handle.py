"""
The single query handle on the live database.

One coordinator owns the :class:`QueryHandle` and passes it by reference to
whatever needs query access. The restore path closes it before overwriting
the live file and reopens it afterwards; any query issued in between fails
with :class:`~workshopdb.core.errors.StoreUnavailableError`.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from workshopdb.core.errors import StoreUnavailableError
from workshopdb.storage.sqlite.utils import DEFAULT_PRAGMAS, open_db, transaction
from workshopdb.storage.sqlite_utils import checkpoint_truncate

log = logging.getLogger(__name__)

__all__ = ["QueryHandle"]


class QueryHandle:
    """Owner of the application's connection to the live database file."""

    def __init__(self, path: str | Path, *, connect: bool = True):
        self.path = Path(path)
        self._conn: sqlite3.Connection | None = None
        self._available = threading.Condition()
        if connect:
            self._open()

    # ------------------------------------------------------------------
    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def conn(self) -> sqlite3.Connection:
        """The open connection; raises while the store is quiesced."""
        conn = self._conn
        if conn is None:
            raise StoreUnavailableError(f"Database is temporarily unavailable: {self.path}")
        return conn

    def execute(self, sql: str, params: Sequence[Any] | dict[str, Any] = ()) -> sqlite3.Cursor:
        return self.conn.execute(sql, params)

    def executemany(self, sql: str, rows: Sequence[Sequence[Any]]) -> sqlite3.Cursor:
        return self.conn.executemany(sql, rows)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with transaction(self.conn) as conn:
            yield conn

    # ------------------------------------------------------------------
    def _open(self) -> None:
        conn = open_db(self.path, mode="rwc", apply_pragmas=True, pragmas=DEFAULT_PRAGMAS)
        with self._available:
            self._conn = conn
            self._available.notify_all()
        log.debug(f"Opened query handle on {self.path}")

    def close(self) -> None:
        """Checkpoint and close the connection so nothing holds the live file."""
        with self._available:
            conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            checkpoint_truncate(conn)
        finally:
            conn.close()
        log.debug(f"Closed query handle on {self.path}")

    def reopen(self, path: str | Path | None = None) -> None:
        """Open a fresh connection, optionally against a different file."""
        self.close()
        if path is not None:
            self.path = Path(path)
        self._open()

    def wait_until_available(self, timeout: float) -> bool:
        """Block up to ``timeout`` seconds for the handle to be open again."""
        with self._available:
            return self._available.wait_for(lambda: self._conn is not None, timeout=timeout)

    def __enter__(self) -> QueryHandle:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"QueryHandle({str(self.path)!r}, {state})"
