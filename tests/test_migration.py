import sqlite3
from pathlib import Path

import pytest

from conftest import add_item, steps_before
from workshopdb.core.errors import MigrationEffectError, MigrationGuardError
from workshopdb.storage.migration import (
    LEGACY_OWNER_EMAIL,
    MIGRATIONS,
    MigrationStep,
    SchemaMigrator,
    StepState,
    TableRebuild,
    rebuild_table,
    structural_rebuild,
)
from workshopdb.storage.sqlite.introspection import SchemaProbe
from workshopdb.storage.validation import file_schema_signature, file_table_signatures

ALL_TABLES = {"items", "invoices", "line_items", "users", "business_config"}


def _connect(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    return conn


def _add_invoice(conn: sqlite3.Connection, number: str, *, user_id: int | None = None) -> int:
    columns = "invoiceNumber, invoiceDate, customerName, netTotal"
    values = [number, "2024-03-01", "R. Sharma", 1180.0]
    if user_id is not None:
        columns += ", userId"
        values.append(user_id)
    cur = conn.execute(
        f"INSERT INTO invoices ({columns}) VALUES ({', '.join('?' * len(values))})", values
    )
    return int(cur.lastrowid)


def test_fresh_file_gets_every_table(tmp_path):
    path = tmp_path / "workshop.db"

    report = SchemaMigrator().run_all(path)

    assert report.failed is None
    assert report.applied == [step.name for step in MIGRATIONS]
    conn = _connect(path)
    probe = SchemaProbe(conn)
    assert ALL_TABLES <= probe.table_names()
    assert probe.column_references("invoices", "userId", "users")
    assert probe.column_is_not_null("invoices", "userId")
    assert probe.has_column("line_items", "remarks")
    assert conn.execute("SELECT id FROM business_config").fetchall()[0][0] == 1
    conn.close()


def test_second_pass_changes_nothing(tmp_path):
    path = tmp_path / "workshop.db"
    SchemaMigrator().run_all(path)
    before = file_schema_signature(path)

    report = SchemaMigrator().run_all(path)

    assert report.applied == []
    assert {outcome.state for outcome in report.outcomes} == {StepState.NOT_APPLICABLE}
    assert file_schema_signature(path) == before


def test_items_without_is_active_gain_the_column(tmp_path):
    path = tmp_path / "workshop.db"
    SchemaMigrator(steps_before("items_add_is_active")).run_all(path)
    conn = _connect(path)
    with conn:
        add_item(conn, "OF-1", name="Oil filter", price=250.0)
        add_item(conn, "SP-7", name="Spark plug", price=120.5)
    conn.close()

    SchemaMigrator().run_all(path)

    conn = _connect(path)
    rows = conn.execute(
        "SELECT code, name, category, unitPrice, isActive FROM items ORDER BY id"
    ).fetchall()
    conn.close()
    assert [tuple(row) for row in rows] == [
        ("OF-1", "Oil filter", "Parts", 250.0, 1),
        ("SP-7", "Spark plug", "Parts", 120.5, 1),
    ]


def test_user_id_rebuild_creates_legacy_owner(tmp_path):
    path = tmp_path / "workshop.db"
    SchemaMigrator(steps_before("invoices_add_user_id")).run_all(path)
    conn = _connect(path)
    with conn:
        add_item(conn, "OF-1")
        first = _add_invoice(conn, "INV-001")
        _add_invoice(conn, "INV-002")
        conn.execute(
            "INSERT INTO line_items (invoiceId, itemId, quantity, unitPrice, lineTotal) "
            "VALUES (?, 1, 2, 250, 500)",
            (first,),
        )
    conn.close()

    report = SchemaMigrator().run_all(path)

    assert "invoices_add_user_id" in report.applied
    conn = _connect(path)
    owner = conn.execute("SELECT id, email, isActive FROM users").fetchall()
    assert [(row["email"], row["isActive"]) for row in owner] == [(LEGACY_OWNER_EMAIL, 0)]
    user_ids = {row[0] for row in conn.execute("SELECT userId FROM invoices")}
    assert user_ids == {owner[0]["id"]}
    assert conn.execute("SELECT COUNT(*) FROM invoices").fetchone()[0] == 2
    assert conn.execute("SELECT COUNT(*) FROM line_items").fetchone()[0] == 1
    assert conn.execute("PRAGMA foreign_key_check").fetchall() == []
    conn.close()


def test_user_id_rebuild_prefers_existing_users_and_keeps_indexes(tmp_path):
    path = tmp_path / "workshop.db"
    SchemaMigrator(steps_before("invoices_add_user_id")).run_all(path)
    conn = _connect(path)
    with conn:
        conn.execute(
            "INSERT INTO users (id, email, passwordHash, name) VALUES (7, 'a@x.in', 'h', 'A'), "
            "(9, 'b@x.in', 'h', 'B')"
        )
        _add_invoice(conn, "INV-001")
    conn.close()

    SchemaMigrator().run_all(path)

    conn = _connect(path)
    assert conn.execute("SELECT userId FROM invoices").fetchone()[0] == 7
    assert conn.execute("SELECT COUNT(*) FROM users").fetchone()[0] == 2
    assert "idx_invoices_invoice_date" in SchemaProbe(conn).index_names("invoices")
    conn.close()


def test_crash_mid_run_converges_on_next_start(tmp_path):
    path = tmp_path / "workshop.db"

    def crash(conn):
        conn.execute("INSERT INTO no_such_table VALUES (1)")

    broken = MigrationStep("simulated_crash", lambda probe: False, crash)
    migrator = SchemaMigrator(steps_before("items_add_is_active") + (broken,))

    with pytest.raises(MigrationEffectError) as excinfo:
        migrator.run_all(path)

    assert excinfo.value.step == "simulated_crash"
    report = excinfo.value.report
    assert report.failed.name == "simulated_crash"
    assert report.failed.state is StepState.FAILED
    assert len(report.applied) == 4

    conn = _connect(path)
    with conn:
        add_item(conn, "OF-1")
    conn.close()

    SchemaMigrator().run_all(path)
    SchemaMigrator().run_all(path)

    conn = _connect(path)
    assert ALL_TABLES <= SchemaProbe(conn).table_names()
    assert [tuple(r) for r in conn.execute("SELECT code, isActive FROM items")] == [("OF-1", 1)]
    conn.close()


def test_failed_rebuild_rolls_back_and_retries_cleanly(tmp_path):
    path = tmp_path / "workshop.db"
    SchemaMigrator(steps_before("invoices_add_user_id")).run_all(path)
    conn = _connect(path)
    with conn:
        _add_invoice(conn, "INV-001")
    conn.close()
    before = file_table_signatures(path)

    shipped = next(step for step in MIGRATIONS if step.name == "invoices_add_user_id")
    dangling = structural_rebuild(
        "invoices_add_user_id",
        shipped.guard,
        TableRebuild(
            table="invoices",
            create_sql="""
            CREATE TABLE {table} (
                id INTEGER PRIMARY KEY,
                invoiceNumber TEXT NOT NULL UNIQUE,
                invoiceDate TEXT NOT NULL,
                customerName TEXT NOT NULL,
                customerPhone TEXT,
                customerEmail TEXT,
                grossAmount REAL NOT NULL DEFAULT 0,
                gstAmount REAL NOT NULL DEFAULT 0,
                netTotal REAL NOT NULL DEFAULT 0,
                gstPercentage REAL NOT NULL DEFAULT 18,
                status TEXT NOT NULL DEFAULT 'Final',
                notes TEXT,
                createdAt TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                updatedAt TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                vehicleNumber TEXT,
                vehicleModel TEXT,
                isAmendment INTEGER NOT NULL DEFAULT 0,
                originalInvoiceId INTEGER REFERENCES invoices(id),
                userId INTEGER NOT NULL REFERENCES users(id)
            )
            """,
            defaults={"userId": "999"},
        ),
    )

    with pytest.raises(MigrationEffectError, match="foreign key check failed"):
        SchemaMigrator((dangling,)).run_all(path)

    assert file_table_signatures(path) == before
    conn = _connect(path)
    assert not SchemaProbe(conn).table_exists("invoices__rebuild")
    conn.close()

    SchemaMigrator().run_all(path)
    conn = _connect(path)
    assert conn.execute("SELECT COUNT(*) FROM invoices WHERE userId IS NOT NULL").fetchone()[0] == 1
    conn.close()


def test_rebuild_refuses_to_drop_columns(tmp_path):
    conn = sqlite3.connect(tmp_path / "workshop.db", isolation_level=None)
    conn.execute("CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT, extra TEXT)")
    plan = TableRebuild(table="notes", create_sql="CREATE TABLE {table} (id INTEGER PRIMARY KEY, body TEXT)")

    with pytest.raises(sqlite3.OperationalError, match="would drop columns: extra"):
        rebuild_table(conn, plan)

    assert SchemaProbe(conn).column_names("notes") == ["id", "body", "extra"]
    conn.close()


def test_effect_without_visible_change_is_an_error(tmp_path):
    noop = MigrationStep("noop", lambda probe: probe.table_exists("ghost"), lambda conn: None)

    with pytest.raises(MigrationEffectError, match="change not present"):
        SchemaMigrator((noop,)).run_all(tmp_path / "workshop.db")


def test_guard_query_failure_is_reported(tmp_path):
    def broken_guard(probe):
        probe.conn.execute("SELECT missing FROM nowhere")
        return False

    step = MigrationStep("broken_guard", broken_guard, lambda conn: None)

    with pytest.raises(MigrationGuardError, match="broken_guard"):
        SchemaMigrator((step,)).run_all(tmp_path / "workshop.db")


def test_duplicate_step_names_are_rejected():
    with pytest.raises(ValueError, match="create_items_table"):
        SchemaMigrator(MIGRATIONS + MIGRATIONS[:1])
