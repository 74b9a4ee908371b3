"""Bulk inventory import from CSV, TSV, Excel or JSON files."""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from workshopdb.core.errors import InventoryImportError
from workshopdb.storage.handle import QueryHandle
from workshopdb.storage.sqlite.introspection import quote_ident

log = logging.getLogger(__name__)

__all__ = [
    "REQUIRED_COLUMNS",
    "SUPPORTED_SUFFIXES",
    "ImportSummary",
    "load_inventory_frame",
    "import_items",
    "read_table",
]

REQUIRED_COLUMNS = ("code", "name", "category", "unitPrice")
SUPPORTED_SUFFIXES = (".csv", ".tsv", ".txt", ".xlsx", ".json")

HEADER_ALIASES: dict[str, str] = {
    "code": "code",
    "itemcode": "code",
    "sku": "code",
    "name": "name",
    "itemname": "name",
    "category": "category",
    "unitprice": "unitPrice",
    "price": "unitPrice",
    "rate": "unitPrice",
}


@dataclass(frozen=True)
class ImportSummary:
    inserted: int
    updated: int

    @property
    def total(self) -> int:
        return self.inserted + self.updated


def _normalize_column_name(name: object) -> str:
    return re.sub(r"[^a-z0-9]", "", str(name).lower())


def _standardize_headers(df: pd.DataFrame) -> pd.DataFrame:
    rename_map = {}
    for col in df.columns:
        canonical = HEADER_ALIASES.get(_normalize_column_name(col))
        if canonical and canonical not in rename_map.values():
            rename_map[col] = canonical
    return df.rename(columns=rename_map)


def _read_raw(path: Path) -> pd.DataFrame:
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(path, dtype=str, skip_blank_lines=True)
    if suffix in {".tsv", ".txt"}:
        return pd.read_csv(path, sep="\t", dtype=str, skip_blank_lines=True)
    if suffix == ".xlsx":
        return pd.read_excel(path, sheet_name=0, dtype=str, engine="openpyxl")
    if suffix == ".json":
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise InventoryImportError("JSON file must contain an array of objects")
        return pd.DataFrame.from_records(data).astype("string")
    raise InventoryImportError(
        f"Unsupported file format '{suffix or path.name}'. Supported: CSV, XLSX, TSV, JSON"
    )


def load_inventory_frame(path: str | Path) -> pd.DataFrame:
    """
    Read an inventory file into a frame with ``code, name, category, unitPrice``.

    Raises:
        InventoryImportError: If the file cannot be parsed, is empty, lacks a
            required column or has rows with missing or non-numeric values
    """
    path = Path(path)
    if not path.is_file():
        raise InventoryImportError(f"File not found: {path}")

    try:
        df = _read_raw(path)
    except InventoryImportError:
        raise
    except (ValueError, OSError) as e:
        raise InventoryImportError(f"Could not parse {path.name}: {e}") from e

    df = _standardize_headers(df).dropna(how="all")
    if df.empty:
        raise InventoryImportError("File is empty or contains no data")

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise InventoryImportError(f"Missing required column(s): {', '.join(missing)}")

    df = df.loc[:, list(REQUIRED_COLUMNS)].copy()
    for col in ("code", "name", "category"):
        df[col] = df[col].astype("string").str.strip()
    df["unitPrice"] = pd.to_numeric(df["unitPrice"], errors="coerce")

    blank = df[["code", "name", "category"]].fillna("") == ""
    bad_rows = df.index[blank.any(axis=1) | df["unitPrice"].isna()]
    if len(bad_rows):
        # header is line 1 in text formats
        lines = ", ".join(str(int(i) + 2) for i in bad_rows[:10])
        raise InventoryImportError(f"Rows with missing or invalid values: {lines}")

    duplicated = df["code"].duplicated(keep="last")
    if duplicated.any():
        log.warning(f"{int(duplicated.sum())} duplicate item code(s) in {path.name}; keeping last")
        df = df.loc[~duplicated].copy()

    df["unitPrice"] = df["unitPrice"].astype(float)
    return df.reset_index(drop=True)


def import_items(handle: QueryHandle, frame: pd.DataFrame) -> ImportSummary:
    """Insert or update ``items`` rows keyed by ``code`` in one transaction."""

    rows = [
        (str(code), str(name), str(category), float(price))
        for code, name, category, price in frame.loc[:, list(REQUIRED_COLUMNS)].itertuples(
            index=False, name=None
        )
    ]
    codes = [row[0] for row in rows]

    with handle.transaction() as conn:
        existing: set[str] = set()
        # stay under SQLite's bound-parameter limit
        for start in range(0, len(codes), 500):
            chunk = codes[start : start + 500]
            placeholders = ",".join("?" * len(chunk))
            existing.update(
                r[0]
                for r in conn.execute(
                    f"SELECT code FROM items WHERE code IN ({placeholders})", chunk
                ).fetchall()
            )
        conn.executemany(
            """
            INSERT INTO items (code, name, category, unitPrice)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(code) DO UPDATE SET
                name = excluded.name,
                category = excluded.category,
                unitPrice = excluded.unitPrice,
                updatedAt = CURRENT_TIMESTAMP
            """,
            rows,
        )

    summary = ImportSummary(inserted=len(rows) - len(existing), updated=len(existing))
    log.info(f"Imported {summary.total} item(s): {summary.inserted} new, {summary.updated} updated")
    return summary


def read_table(conn: sqlite3.Connection, table: str) -> pd.DataFrame:
    """Return every row of ``table`` ordered by rowid."""

    return pd.read_sql_query(f"SELECT * FROM {quote_ident(table)} ORDER BY rowid", conn)
