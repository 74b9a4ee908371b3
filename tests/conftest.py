import sqlite3
from pathlib import Path

import pytest

from workshopdb.storage.migration import MIGRATIONS, MigrationStep, SchemaMigrator


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch):
    for name in (
        "WORKSHOPDB_MODE",
        "WORKSHOPDB_DATA_DIR",
        "WORKSHOPDB_SEED_PATH",
        "WORKSHOPDB_BACKUP_DIR",
        "WORKSHOPDB_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


def steps_before(name: str):
    """Return the shipped migrations that precede the step called ``name``."""

    names = [step.name for step in MIGRATIONS]
    return MIGRATIONS[: names.index(name)]


def add_item(conn: sqlite3.Connection, code: str, *, name: str = "Oil filter", price: float = 250.0):
    conn.execute(
        "INSERT INTO items (code, name, category, unitPrice) VALUES (?, ?, ?, ?)",
        (code, name, "Parts", price),
    )


def item_codes(path: Path) -> list[str]:
    conn = sqlite3.connect(path)
    try:
        return [row[0] for row in conn.execute("SELECT code FROM items ORDER BY id")]
    finally:
        conn.close()


@pytest.fixture
def live_db(tmp_path: Path) -> Path:
    """A fully migrated live database with two items in ``tmp_path/data``."""

    path = tmp_path / "data" / "workshop.db"
    path.parent.mkdir()
    SchemaMigrator().run_all(path)
    conn = sqlite3.connect(path)
    with conn:
        add_item(conn, "OF-1")
        add_item(conn, "BP-2", name="Brake pad", price=900.0)
    conn.close()
    return path


def marker_migrator() -> SchemaMigrator:
    """Shipped migrations plus a step that only breaks on files holding ``legacy_marker``."""

    cleanup = MigrationStep(
        "drop_legacy_marker",
        lambda probe: not probe.table_exists("legacy_marker"),
        lambda conn: conn.execute("SELECT nope FROM legacy_marker"),
    )
    return SchemaMigrator(MIGRATIONS + (cleanup,))


def make_marked_snapshot(path: Path, code: str = "LEGACY-1") -> Path:
    """A migrated database carrying ``legacy_marker`` and one item."""

    SchemaMigrator().run_all(path)
    conn = sqlite3.connect(path)
    with conn:
        conn.execute("CREATE TABLE legacy_marker (id INTEGER PRIMARY KEY)")
        add_item(conn, code)
    conn.close()
    return path
