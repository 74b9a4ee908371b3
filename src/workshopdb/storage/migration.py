"""
Idempotent schema migrations for the live workshop database.

There is no persisted version ledger. Every start walks the fixed, hand-ordered
:data:`MIGRATIONS` list and asks each step's guard whether its change is
already present in the live schema; only missing changes are applied. A
shipped step's guard and effect are never edited; new steps are appended.

Step shapes:
- create-table: the first historical shape of a table
- additive-column: a single ``ALTER TABLE .. ADD COLUMN``
- create-index
- structural-rebuild: create-copy-drop-rename driven by a :class:`TableRebuild`
  plan, for changes ``ALTER TABLE`` cannot express (NOT NULL foreign keys,
  primary-key changes)
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from workshopdb.core.errors import MigrationEffectError, MigrationGuardError
from workshopdb.storage.sqlite.introspection import SchemaProbe, quote_ident
from workshopdb.storage.sqlite.utils import open_db, transaction

log = logging.getLogger(__name__)

__all__ = [
    "StepState",
    "MigrationStep",
    "StepOutcome",
    "MigrationReport",
    "TableRebuild",
    "SchemaMigrator",
    "MIGRATIONS",
    "rebuild_table",
    "table_exists",
    "has_column",
    "index_exists",
    "not_null_reference",
    "create_table",
    "add_column",
    "create_index",
    "structural_rebuild",
]

Guard = Callable[[SchemaProbe], bool]
Effect = Callable[[sqlite3.Connection], None]


# =============================================================================
# Data Structures
# =============================================================================


class StepState(str, Enum):
    NOT_APPLICABLE = "not_applicable"
    APPLICABLE = "applicable"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"


@dataclass(frozen=True)
class MigrationStep:
    """One ordered schema change.

    ``guard`` returns True when the change is already present and must be free
    of side effects; ``effect`` applies the change.
    """

    name: str
    guard: Guard
    effect: Effect
    kind: str = "additive-column"


@dataclass
class StepOutcome:
    name: str
    state: StepState
    error: str | None = None


@dataclass
class MigrationReport:
    """Per-step outcome of one :meth:`SchemaMigrator.run_all` pass."""

    path: Path
    outcomes: list[StepOutcome] = field(default_factory=list)

    @property
    def applied(self) -> list[str]:
        return [o.name for o in self.outcomes if o.state is StepState.APPLIED]

    @property
    def skipped(self) -> list[str]:
        return [o.name for o in self.outcomes if o.state is StepState.NOT_APPLICABLE]

    @property
    def failed(self) -> StepOutcome | None:
        return next((o for o in self.outcomes if o.state is StepState.FAILED), None)


@dataclass(frozen=True)
class TableRebuild:
    """
    Old-to-new column mapping for one structural rebuild.

    ``create_sql`` is the complete new table definition with a ``{table}``
    placeholder for the shadow table name. Columns present in both the old
    table and the new shape are carried over unchanged; columns only in the
    new shape take the SQL expression in ``defaults`` (evaluated per old row)
    or, when absent there, the column's declared default. ``setup`` statements
    run inside the same transaction before any row is copied.
    """

    table: str
    create_sql: str
    defaults: Mapping[str, str] = field(default_factory=dict)
    setup: tuple[str, ...] = ()


# =============================================================================
# Guards
# =============================================================================


def table_exists(table: str) -> Guard:
    def guard(probe: SchemaProbe) -> bool:
        return probe.table_exists(table)

    guard.__name__ = f"table_exists[{table}]"
    return guard


def has_column(table: str, column: str) -> Guard:
    def guard(probe: SchemaProbe) -> bool:
        return probe.has_column(table, column)

    guard.__name__ = f"has_column[{table}.{column}]"
    return guard


def index_exists(index: str) -> Guard:
    def guard(probe: SchemaProbe) -> bool:
        return probe.index_exists(index)

    guard.__name__ = f"index_exists[{index}]"
    return guard


def not_null_reference(table: str, column: str, to_table: str) -> Guard:
    def guard(probe: SchemaProbe) -> bool:
        return probe.column_references(table, column, to_table) and probe.column_is_not_null(
            table, column
        )

    guard.__name__ = f"not_null_reference[{table}.{column}->{to_table}]"
    return guard


# =============================================================================
# Effects
# =============================================================================


def _run_statements(statements: Sequence[str]) -> Effect:
    def effect(conn: sqlite3.Connection) -> None:
        with transaction(conn):
            for statement in statements:
                conn.execute(statement)

    return effect


def rebuild_table(conn: sqlite3.Connection, plan: TableRebuild) -> None:
    """
    Rebuild ``plan.table`` into the shape described by ``plan.create_sql``.

    Foreign-key enforcement is switched off for the duration, the whole
    create-copy-drop-rename sequence runs in one transaction, every explicit
    index of the original table is recreated and ``PRAGMA foreign_key_check``
    must come back empty before the commit. On failure the transaction is
    rolled back and the error is raised with enforcement left off; callers
    discard the connection.
    """

    probe = SchemaProbe(conn)
    table = plan.table
    shadow = f"{table}__rebuild"

    old_columns = probe.column_names(table)
    if not old_columns:
        raise sqlite3.OperationalError(f"no such table: {table}")
    index_sql = probe.index_definitions(table)

    conn.execute("PRAGMA foreign_keys=OFF")
    with transaction(conn):
        for statement in plan.setup:
            conn.execute(statement)

        conn.execute(plan.create_sql.format(table=quote_ident(shadow)))
        new_columns = probe.column_names(shadow)

        dropped = [c for c in old_columns if c not in new_columns]
        if dropped:
            raise sqlite3.OperationalError(
                f"rebuild of {table} would drop columns: {', '.join(dropped)}"
            )

        targets: list[str] = []
        sources: list[str] = []
        for column in new_columns:
            if column in old_columns:
                targets.append(quote_ident(column))
                sources.append(quote_ident(column))
            elif column in plan.defaults:
                targets.append(quote_ident(column))
                sources.append(plan.defaults[column])

        conn.execute(
            f"INSERT INTO {quote_ident(shadow)} ({', '.join(targets)}) "
            f"SELECT {', '.join(sources)} FROM {quote_ident(table)}"
        )
        conn.execute(f"DROP TABLE {quote_ident(table)}")
        conn.execute(f"ALTER TABLE {quote_ident(shadow)} RENAME TO {quote_ident(table)}")
        for statement in index_sql:
            conn.execute(statement)

        violations = conn.execute("PRAGMA foreign_key_check").fetchall()
        if violations:
            sample = ", ".join(f"{row[0]}#{row[1]}->{row[2]}" for row in violations[:5])
            raise sqlite3.IntegrityError(
                f"foreign key check failed after rebuilding {table}: {len(violations)} violation(s) ({sample})"
            )
    conn.execute("PRAGMA foreign_keys=ON")
    log.info(f"Rebuilt table {table} ({len(new_columns)} columns, {len(index_sql)} indexes)")


# =============================================================================
# Step Constructors
# =============================================================================


def create_table(name: str, table: str, *statements: str) -> MigrationStep:
    return MigrationStep(name, table_exists(table), _run_statements(statements), kind="create-table")


def add_column(name: str, table: str, column: str, definition: str) -> MigrationStep:
    statement = f"ALTER TABLE {quote_ident(table)} ADD COLUMN {quote_ident(column)} {definition}"
    return MigrationStep(name, has_column(table, column), _run_statements([statement]))


def create_index(name: str, index: str, table: str, columns: str) -> MigrationStep:
    statement = f"CREATE INDEX IF NOT EXISTS {quote_ident(index)} ON {quote_ident(table)}({columns})"
    return MigrationStep(name, index_exists(index), _run_statements([statement]), kind="create-index")


def structural_rebuild(name: str, guard: Guard, plan: TableRebuild) -> MigrationStep:
    def effect(conn: sqlite3.Connection) -> None:
        rebuild_table(conn, plan)

    return MigrationStep(name, guard, effect, kind="structural-rebuild")


# =============================================================================
# Shipped Migrations (append only)
# =============================================================================

_TIMESTAMPS = """
    createdAt TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updatedAt TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP"""

_INVOICES_WITH_OWNER = f"""
CREATE TABLE {{table}} (
    id INTEGER PRIMARY KEY,
    invoiceNumber TEXT NOT NULL UNIQUE,
    invoiceDate TEXT NOT NULL,
    customerName TEXT NOT NULL,
    customerPhone TEXT,
    customerEmail TEXT,
    vehicleNumber TEXT,
    vehicleModel TEXT,
    grossAmount REAL NOT NULL DEFAULT 0,
    gstAmount REAL NOT NULL DEFAULT 0,
    netTotal REAL NOT NULL DEFAULT 0,
    gstPercentage REAL NOT NULL DEFAULT 18,
    status TEXT NOT NULL DEFAULT 'Final',
    notes TEXT,
    isAmendment INTEGER NOT NULL DEFAULT 0,
    originalInvoiceId INTEGER REFERENCES invoices(id),
    userId INTEGER NOT NULL REFERENCES users(id),{_TIMESTAMPS}
)
"""

LEGACY_OWNER_EMAIL = "legacy-owner@workshop.local"

MIGRATIONS: tuple[MigrationStep, ...] = (
    create_table(
        "create_items_table",
        "items",
        f"""
        CREATE TABLE items (
            id INTEGER PRIMARY KEY,
            code TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            category TEXT NOT NULL,
            unitPrice REAL NOT NULL DEFAULT 0,{_TIMESTAMPS}
        )
        """,
    ),
    create_table(
        "create_invoices_table",
        "invoices",
        f"""
        CREATE TABLE invoices (
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
            notes TEXT,{_TIMESTAMPS}
        )
        """,
    ),
    create_table(
        "create_line_items_table",
        "line_items",
        """
        CREATE TABLE line_items (
            id INTEGER PRIMARY KEY,
            invoiceId INTEGER NOT NULL REFERENCES invoices(id) ON DELETE CASCADE,
            itemId INTEGER NOT NULL REFERENCES items(id),
            quantity REAL NOT NULL,
            unitPrice REAL NOT NULL,
            lineTotal REAL NOT NULL,
            createdAt TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
    ),
    create_table(
        "create_users_table",
        "users",
        f"""
        CREATE TABLE users (
            id INTEGER PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            passwordHash TEXT NOT NULL,
            name TEXT NOT NULL,
            role TEXT NOT NULL DEFAULT 'staff',
            isActive INTEGER NOT NULL DEFAULT 1,{_TIMESTAMPS}
        )
        """,
    ),
    add_column("items_add_is_active", "items", "isActive", "INTEGER NOT NULL DEFAULT 1"),
    add_column("invoices_add_vehicle_number", "invoices", "vehicleNumber", "TEXT"),
    add_column("invoices_add_vehicle_model", "invoices", "vehicleModel", "TEXT"),
    add_column("invoices_add_is_amendment", "invoices", "isAmendment", "INTEGER NOT NULL DEFAULT 0"),
    add_column(
        "invoices_add_original_invoice_id",
        "invoices",
        "originalInvoiceId",
        "INTEGER REFERENCES invoices(id)",
    ),
    create_index("create_invoice_date_index", "idx_invoices_invoice_date", "invoices", "invoiceDate"),
    structural_rebuild(
        "invoices_add_user_id",
        not_null_reference("invoices", "userId", "users"),
        TableRebuild(
            table="invoices",
            create_sql=_INVOICES_WITH_OWNER,
            defaults={"userId": "(SELECT MIN(id) FROM users)"},
            setup=(
                f"""
                INSERT INTO users (email, passwordHash, name, role, isActive)
                SELECT '{LEGACY_OWNER_EMAIL}', '!', 'Legacy Owner', 'admin', 0
                WHERE EXISTS (SELECT 1 FROM invoices) AND NOT EXISTS (SELECT 1 FROM users)
                """,
            ),
        ),
    ),
    add_column("line_items_add_remarks", "line_items", "remarks", "TEXT"),
    create_table(
        "create_business_config_table",
        "business_config",
        f"""
        CREATE TABLE business_config (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            gstin TEXT,
            logoPath TEXT,{_TIMESTAMPS}
        )
        """,
        "INSERT OR IGNORE INTO business_config (id) VALUES (1)",
    ),
    create_index("create_invoice_status_index", "idx_invoices_status", "invoices", "status"),
    create_index("create_line_item_invoice_index", "idx_line_items_invoice", "line_items", "invoiceId"),
)


# =============================================================================
# Runner
# =============================================================================


class SchemaMigrator:
    """Apply :data:`MIGRATIONS` (or a custom ordered list) to a database file."""

    def __init__(self, steps: Sequence[MigrationStep] = MIGRATIONS):
        names = [step.name for step in steps]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ValueError(f"Duplicate migration names: {sorted(duplicates)}")
        self.steps = tuple(steps)

    def run_all(self, path: str | Path) -> MigrationReport:
        """
        Run every step whose guard reports the change as missing.

        The pass stops at the first failing step; the exception carries the
        partial :class:`MigrationReport` as ``exc.report``.

        Raises:
            MigrationGuardError: If an introspection query fails
            MigrationEffectError: If a step fails or does not take effect
        """
        db_path = Path(path)
        report = MigrationReport(path=db_path)
        log.info(f"Checking schema of {db_path} ({len(self.steps)} migration steps)")

        conn = open_db(
            db_path,
            mode="rwc",
            apply_pragmas=True,
            pragmas={"foreign_keys": True, "busy_timeout_ms": 10000},
        )
        try:
            probe = SchemaProbe(conn)
            current = None
            try:
                for current in self.steps:
                    report.outcomes.append(self._run_step(conn, probe, current))
                current = None
                self._check_integrity(conn)
            except (MigrationGuardError, MigrationEffectError) as e:
                if current is not None:
                    report.outcomes.append(StepOutcome(current.name, StepState.FAILED, str(e)))
                e.report = report  # type: ignore[attr-defined]
                raise
        finally:
            conn.close()

        if report.applied:
            log.info(f"Applied {len(report.applied)} migration(s): {', '.join(report.applied)}")
        else:
            log.info("Schema is up to date")
        return report

    @staticmethod
    def _check_integrity(conn: sqlite3.Connection) -> None:
        status = conn.execute("PRAGMA quick_check").fetchone()
        if not status or str(status[0]).lower() != "ok":
            raise MigrationEffectError(
                "integrity_check", f"quick_check reported {status[0] if status else None}"
            )

    def _evaluate(self, probe: SchemaProbe, step: MigrationStep) -> bool:
        try:
            return bool(step.guard(probe))
        except sqlite3.Error as e:
            log.error(f"Guard for migration {step.name} failed: {e}")
            raise MigrationGuardError(step.name, str(e)) from e

    def _run_step(
        self, conn: sqlite3.Connection, probe: SchemaProbe, step: MigrationStep
    ) -> StepOutcome:
        if self._evaluate(probe, step):
            log.debug(f"Migration {step.name}: already applied")
            return StepOutcome(step.name, StepState.NOT_APPLICABLE)

        log.debug(f"Migration {step.name}: {StepState.APPLICABLE.value}")
        log.info(f"Applying migration {step.name} ({step.kind}): {StepState.APPLYING.value}")
        try:
            step.effect(conn)
        except sqlite3.Error as e:
            log.error(f"Migration {step.name} failed: {e}", exc_info=True)
            raise MigrationEffectError(step.name, str(e)) from e

        if not self._evaluate(probe, step):
            log.error(f"Migration {step.name} ran but its guard still reports it missing")
            raise MigrationEffectError(step.name, "change not present after applying")
        return StepOutcome(step.name, StepState.APPLIED)
