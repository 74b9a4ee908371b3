"""
Typed schema-shape predicates used by migration guards.

Every method here is read-only: it only consults ``sqlite_master`` and the
``PRAGMA table_info``/``index_list``/``foreign_key_list`` family.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass

__all__ = ["SchemaProbe", "ForeignKey", "quote_ident"]


def quote_ident(name: str) -> str:
    """Quote an SQL identifier."""

    return '"' + name.replace('"', '""') + '"'


@dataclass(frozen=True)
class ForeignKey:
    table: str
    from_column: str
    to_table: str
    to_column: str | None


class SchemaProbe:
    """Read-only view of the current schema shape of one connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def table_names(self) -> set[str]:
        rows = self.conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
        ).fetchall()
        return {row[0] for row in rows}

    def table_exists(self, table: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (table,)
        ).fetchone()
        return row is not None

    def column_names(self, table: str) -> list[str]:
        """Return the columns of ``table`` in declaration order (empty if absent)."""

        rows = self.conn.execute(f"PRAGMA table_info({quote_ident(table)})").fetchall()
        return [row[1] for row in rows]

    def has_column(self, table: str, column: str) -> bool:
        return column in self.column_names(table)

    def column_is_not_null(self, table: str, column: str) -> bool:
        for row in self.conn.execute(f"PRAGMA table_info({quote_ident(table)})").fetchall():
            if row[1] == column:
                return bool(row[3])
        return False

    def index_exists(self, index: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type='index' AND name=?", (index,)
        ).fetchone()
        return row is not None

    def index_names(self, table: str) -> list[str]:
        rows = self.conn.execute(f"PRAGMA index_list({quote_ident(table)})").fetchall()
        return [row[1] for row in rows]

    def index_definitions(self, table: str) -> list[str]:
        """
        Return the ``CREATE INDEX`` statements of explicitly created indexes.

        Automatic indexes backing UNIQUE/PRIMARY KEY constraints have no SQL and
        are recreated by the table definition itself.
        """

        rows = self.conn.execute(
            "SELECT sql FROM sqlite_master WHERE type='index' AND tbl_name=? AND sql IS NOT NULL "
            "ORDER BY name",
            (table,),
        ).fetchall()
        return [row[0] for row in rows]

    def foreign_keys(self, table: str) -> list[ForeignKey]:
        rows = self.conn.execute(f"PRAGMA foreign_key_list({quote_ident(table)})").fetchall()
        return [ForeignKey(table, row[3], row[2], row[4]) for row in rows]

    def column_references(self, table: str, column: str, to_table: str) -> bool:
        """True when ``table.column`` has a foreign key into ``to_table``."""

        return any(
            fk.from_column == column and fk.to_table == to_table for fk in self.foreign_keys(table)
        )
