# WorkshopDB
# Copyright © 2025 Osvaldo J. Vega Rodríguez
# Licensed under CC BY-NC-SA 4.0 International
# http://creativecommons.org/licenses/by-nc-sa/4.0/

"""Exception hierarchy for database lifecycle operations."""

from __future__ import annotations

from pathlib import Path

__all__ = [
    "WorkshopDBError",
    "ConfigurationError",
    "SeedMissingError",
    "MigrationGuardError",
    "MigrationEffectError",
    "BackupIOError",
    "RestoreValidationError",
    "RestoreIOError",
    "NotFoundError",
    "PermissionDeniedError",
    "StoreUnavailableError",
    "LockError",
    "InventoryImportError",
]


class WorkshopDBError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(WorkshopDBError):
    """Raised when no writable live database path can be resolved."""


class SeedMissingError(WorkshopDBError):
    """Raised when an installed deployment has no seed database to copy."""

    def __init__(self, seed_path: Path | None):
        self.seed_path = seed_path
        super().__init__(f"Seed database not found: {seed_path}")


class MigrationGuardError(WorkshopDBError):
    """Raised when a schema introspection query itself fails."""

    def __init__(self, step: str, message: str):
        self.step = step
        super().__init__(f"Guard for migration '{step}' failed: {message}")


class MigrationEffectError(WorkshopDBError):
    """Raised when a migration step could not be applied."""

    def __init__(self, step: str, message: str):
        self.step = step
        super().__init__(f"Migration '{step}' failed: {message}")


class BackupIOError(WorkshopDBError):
    """Raised when a backup copy could not be written or verified."""


class RestoreValidationError(WorkshopDBError):
    """Raised when a chosen backup fails the sanity check."""


class RestoreIOError(WorkshopDBError):
    """Raised when copying a backup into place fails."""


class NotFoundError(WorkshopDBError):
    """Raised when a backup file does not exist."""


class PermissionDeniedError(WorkshopDBError):
    """Raised when a backup file is locked or cannot be removed."""


class StoreUnavailableError(WorkshopDBError):
    """Raised for queries issued while the query handle is closed."""


class LockError(WorkshopDBError):
    """Raised when the lifecycle lock cannot be acquired."""


class InventoryImportError(WorkshopDBError):
    """Raised when an inventory file cannot be parsed or is incomplete."""
