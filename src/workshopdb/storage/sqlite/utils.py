"""
Utility helpers for the SQLite-backed store.

Connection helpers, pragmas, cursor/transaction context managers.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any, cast

__all__ = ["open_db", "set_pragmas", "transaction", "DEFAULT_PRAGMAS"]

DEFAULT_PRAGMAS: Mapping[str, object] = {
    "foreign_keys": True,
    "journal_mode": "WAL",
    "synchronous": "NORMAL",
    "busy_timeout_ms": 10000,
}


# ---- Connections ------------------------------------------------------------


def open_db(
    path: str | Path,
    *,
    mode: str = "rwc",
    apply_pragmas: bool = False,
    pragmas: Mapping[str, object] | None = None,
    timeout: float = 30.0,
) -> sqlite3.Connection:
    """
    Open a SQLite database in autocommit mode with ``sqlite3.Row`` rows.

    mode: "ro" (read-only), "rw", "rwc" (create if needed). Default: "rwc".
    Transactions are explicit; use :func:`transaction`.
    """
    uri = f"{Path(path).resolve(strict=False).as_uri()}?mode={mode}"
    conn = sqlite3.connect(
        uri,
        uri=True,
        timeout=timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    if apply_pragmas:
        set_pragmas(conn, DEFAULT_PRAGMAS if pragmas is None else pragmas)
    return conn


def _to_int(value: object) -> int:
    """Best-effort conversion to ``int`` for pragmatic pragmas."""

    return int(cast(Any, value))


def set_pragmas(conn: sqlite3.Connection, opts: Mapping[str, object]) -> None:
    """Apply selected pragmas.

    Only keys present in ``opts`` are applied. Supported keys include
    ``foreign_keys``, ``journal_mode``, ``synchronous`` and ``busy_timeout_ms``.
    """

    norm = {str(key).lower(): value for key, value in opts.items()}
    for key, value in norm.items():
        if key == "foreign_keys":
            conn.execute(f"PRAGMA foreign_keys={'ON' if value else 'OFF'}")
        elif key == "journal_mode":
            conn.execute(f"PRAGMA journal_mode={value}")
        elif key == "synchronous":
            conn.execute(f"PRAGMA synchronous={value}")
        elif key == "busy_timeout_ms":
            conn.execute(f"PRAGMA busy_timeout={_to_int(value)}")


# ---- Transactions -------------------------------------------------


@contextmanager
def transaction(
    conn: sqlite3.Connection,
    *,
    begin: str = "BEGIN IMMEDIATE",
) -> Iterator[sqlite3.Connection]:
    """
    Transaction wrapper that commits on success and rolls back on error.
    Uses BEGIN IMMEDIATE by default to reduce write contention.
    """

    conn.execute(begin)
    try:
        yield conn
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
