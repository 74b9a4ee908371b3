# WorkshopDB
# Copyright © 2025 Osvaldo J. Vega Rodríguez
# Licensed under CC BY-NC-SA 4.0 International
# http://creativecommons.org/licenses/by-nc-sa/4.0/

"""
The database contract exposed to the rest of the application.

:meth:`DatabaseLifecycle.ensure_database_ready` is the startup path and raises
on failure; the host must not continue without a ready database. Every other
public method is an on-demand operation and returns an
:class:`~workshopdb.services.types.OperationResult` instead of raising, so a
failed backup never takes the running application down. A restore or clear
whose migration fails comes back with ``fatal`` set and drops readiness, so
:meth:`DatabaseLifecycle.open_handle` refuses until the next successful
:meth:`DatabaseLifecycle.ensure_database_ready`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from workshopdb.core.config import DeploymentMode, Settings, load_settings
from workshopdb.core.errors import (
    MigrationEffectError,
    MigrationGuardError,
    StoreUnavailableError,
    WorkshopDBError,
)
from workshopdb.core.file_lock import DatabaseFileLock
from workshopdb.io.inventory import import_items, load_inventory_frame
from workshopdb.services.types import ImportData, MessageData, OperationResult
from workshopdb.storage.backups import CANCELLED, BackupDestination, BackupService
from workshopdb.storage.handle import QueryHandle
from workshopdb.storage.locator import default_seed_path, ensure_exists, resolve_live_path
from workshopdb.storage.migration import SchemaMigrator
from workshopdb.storage.restore import RestoreService

log = logging.getLogger(__name__)

__all__ = ["DatabaseLifecycle", "ok", "fail"]


# A restored or reset file that cannot be migrated must not be queried again
# until ensure_database_ready() succeeds.
FATAL_ERRORS = (MigrationGuardError, MigrationEffectError)


def ok(data: Any = None) -> OperationResult:
    return {"success": True, "data": data, "error": None, "error_type": None, "fatal": False}


def fail(error: BaseException) -> OperationResult:
    return {
        "success": False,
        "data": None,
        "error": str(error),
        "error_type": type(error).__name__,
        "fatal": isinstance(error, FATAL_ERRORS),
    }


class DatabaseLifecycle:
    """Owns the live path, the query handle and the backup/restore services."""

    def __init__(self, settings: Settings | None = None, *, migrator: SchemaMigrator | None = None):
        self.settings = settings or load_settings()
        self.migrator = migrator or SchemaMigrator()
        self.live_path = resolve_live_path(self.settings.mode, self.settings)
        self.backups = BackupService(self.live_path, self.settings.backup_dir)
        self.handle: QueryHandle | None = None
        self._ready = False

    @property
    def seed_path(self) -> Path | None:
        if self.settings.seed_path is not None:
            return self.settings.seed_path
        if self.settings.mode is DeploymentMode.INSTALLED:
            return default_seed_path()
        return None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------
    def ensure_database_ready(self) -> Path:
        """
        Make sure the live file exists and is fully migrated.

        Raises:
            ConfigurationError: If the data directory is unusable
            MigrationGuardError: If the schema cannot be inspected
            MigrationEffectError: If a migration step fails
        """
        self._ready = False
        log.info(f"Preparing database at {self.live_path} ({self.settings.mode.value} mode)")
        outcome = ensure_exists(self.live_path, self.seed_path)
        log.debug(f"Live file check: {outcome.value}")
        self.migrator.run_all(self.live_path)
        self._ready = True
        return self.live_path

    def open_handle(self) -> QueryHandle:
        """Return the query handle, opening it on first use."""

        if not self._ready:
            raise StoreUnavailableError("Database has not been prepared; call ensure_database_ready()")
        if self.handle is None:
            self.handle = QueryHandle(self.live_path)
        elif not self.handle.is_open:
            self.handle.reopen(self.live_path)
        return self.handle

    def close(self) -> None:
        if self.handle is not None:
            self.handle.close()

    # ------------------------------------------------------------------
    # On-demand operations
    # ------------------------------------------------------------------
    def _run(self, name: str, operation: Callable[[], Any]) -> OperationResult:
        try:
            return ok(operation())
        except FATAL_ERRORS as e:
            self._ready = False
            self.close()
            log.critical(f"{name} left the database unmigrated; handle refused until ready again: {e}")
            return fail(e)
        except WorkshopDBError as e:
            log.error(f"{name} failed: {e}")
            return fail(e)
        except Exception as e:
            log.error(f"{name} failed unexpectedly: {e}", exc_info=True)
            return fail(e)

    def _restore_service(self) -> RestoreService:
        return RestoreService(
            self.live_path,
            self.open_handle(),
            self.backups,
            migrator=self.migrator,
            seed_path=self.seed_path,
            lock_timeout=self.settings.lock_timeout,
        )

    def create_backup(
        self,
        destination: BackupDestination = BackupDestination.DEFAULT,
        *,
        prompt: Callable[[str], str | Path | None] | None = None,
    ) -> OperationResult:
        def operation() -> dict[str, Any]:
            with DatabaseFileLock(self.live_path, timeout=self.settings.lock_timeout):
                result = self.backups.create_backup(destination, prompt=prompt)
            if result is CANCELLED:
                return {"cancelled": True}
            return result.as_dict()  # type: ignore[union-attr]

        return self._run("Backup", operation)

    def list_backups(self) -> OperationResult:
        return self._run("Listing backups", lambda: [r.as_dict() for r in self.backups.list_backups()])

    def restore_backup(self, path: str | Path) -> OperationResult:
        def operation() -> MessageData:
            result = self._restore_service().restore(path)
            return {
                "message": result.message,
                "path": str(result.path),
                "safety_backup": str(result.safety_backup) if result.safety_backup else None,
                "applied_migrations": result.migration.applied,
            }

        return self._run("Restore", operation)

    def delete_backup(self, path: str | Path) -> OperationResult:
        def operation() -> MessageData:
            self.backups.delete_backup(path)
            return {"message": f"Deleted backup {Path(path).name}"}

        return self._run("Deleting backup", operation)

    def clear_database(self) -> OperationResult:
        def operation() -> MessageData:
            result = self._restore_service().clear_database()
            return {
                "message": result.message,
                "path": str(result.path),
                "safety_backup": str(result.safety_backup) if result.safety_backup else None,
                "applied_migrations": result.migration.applied,
            }

        return self._run("Clearing database", operation)

    def import_inventory(self, path: str | Path) -> OperationResult:
        def operation() -> ImportData:
            frame = load_inventory_frame(path)
            summary = import_items(self.open_handle(), frame)
            return {"inserted": summary.inserted, "updated": summary.updated, "total": summary.total}

        return self._run("Inventory import", operation)
