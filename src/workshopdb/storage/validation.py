"""Deterministic content signatures for comparing database files."""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from workshopdb.storage.sqlite.introspection import SchemaProbe, quote_ident
from workshopdb.storage.sqlite.utils import open_db

log = logging.getLogger(__name__)

__all__ = [
    "compute_schema_signature",
    "compute_table_signature",
    "compute_table_signatures",
    "file_table_signatures",
    "file_schema_signature",
]


def _stable_hash(obj: Any) -> str:
    payload = json.dumps(obj, separators=(",", ":"), ensure_ascii=False, default=repr)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def compute_schema_signature(conn: sqlite3.Connection) -> str:
    """Hash every table and index definition in ``sqlite_master``."""

    rows = conn.execute(
        """
        SELECT type, name, tbl_name, sql
          FROM sqlite_master
         WHERE name NOT LIKE 'sqlite_%'
         ORDER BY type, name
        """
    ).fetchall()
    return _stable_hash([[row[0], row[1], row[2], row[3]] for row in rows])


def compute_table_signature(conn: sqlite3.Connection, table: str) -> str:
    """Hash the columns and all rows of ``table`` in rowid order."""

    columns = SchemaProbe(conn).column_names(table)
    rows = conn.execute(f"SELECT * FROM {quote_ident(table)} ORDER BY rowid").fetchall()
    normalized = [
        [value.hex() if isinstance(value, bytes) else value for value in tuple(row)] for row in rows
    ]
    return _stable_hash({"columns": columns, "rows": normalized})


def compute_table_signatures(conn: sqlite3.Connection) -> dict[str, str]:
    probe = SchemaProbe(conn)
    return {table: compute_table_signature(conn, table) for table in sorted(probe.table_names())}


def file_table_signatures(path: str | Path) -> dict[str, str]:
    """Open ``path`` read-only and return its per-table signatures."""

    conn = open_db(path, mode="ro", timeout=5.0)
    try:
        return compute_table_signatures(conn)
    finally:
        conn.close()


def file_schema_signature(path: str | Path) -> str:
    conn = open_db(path, mode="ro", timeout=5.0)
    try:
        return compute_schema_signature(conn)
    finally:
        conn.close()
