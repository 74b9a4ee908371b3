"""Runtime settings for the database lifecycle manager.

Values come from ``WORKSHOPDB_*`` environment variables so the desktop shell,
the admin CLI and the tests can all point the core at different locations
without touching code.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

__all__ = [
    "APP_NAME",
    "DATABASE_FILENAME",
    "BACKUP_DIRNAME",
    "SEED_RESOURCE",
    "DeploymentMode",
    "Settings",
    "detect_mode",
    "load_settings",
]

APP_NAME = "WorkshopDB"
DATABASE_FILENAME = "workshop.db"
BACKUP_DIRNAME = "backups"
SEED_RESOURCE = ("resources", "seed.db")

MODE_ENV = "WORKSHOPDB_MODE"
DATA_DIR_ENV = "WORKSHOPDB_DATA_DIR"
SEED_PATH_ENV = "WORKSHOPDB_SEED_PATH"
BACKUP_DIR_ENV = "WORKSHOPDB_BACKUP_DIR"
LOG_LEVEL_ENV = "WORKSHOPDB_LOG_LEVEL"


class DeploymentMode(str, Enum):
    """Where the live database is expected to live."""

    DEVELOPMENT = "development"
    INSTALLED = "installed"


def detect_mode() -> DeploymentMode:
    """Return the deployment mode from the environment or the runtime."""

    raw = os.environ.get(MODE_ENV, "").strip().lower()
    if raw:
        try:
            return DeploymentMode(raw)
        except ValueError:
            logging.getLogger(__name__).warning(
                "Ignoring unknown %s=%r; falling back to runtime detection", MODE_ENV, raw
            )
    if getattr(sys, "frozen", False):
        return DeploymentMode.INSTALLED
    return DeploymentMode.DEVELOPMENT


def _env_path(name: str) -> Path | None:
    value = os.environ.get(name, "").strip()
    return Path(value).expanduser() if value else None


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one process."""

    mode: DeploymentMode
    data_dir: Path | None = None
    seed_path: Path | None = None
    backup_dir: Path | None = None
    log_level: int = logging.INFO
    lock_timeout: float = 5.0


def load_settings(mode: DeploymentMode | None = None) -> Settings:
    """Build :class:`Settings` from ``WORKSHOPDB_*`` environment variables."""

    level_name = os.environ.get(LOG_LEVEL_ENV, "INFO").strip().upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    return Settings(
        mode=mode or detect_mode(),
        data_dir=_env_path(DATA_DIR_ENV),
        seed_path=_env_path(SEED_PATH_ENV),
        backup_dir=_env_path(BACKUP_DIR_ENV),
        log_level=level,
    )
