"""
Resolve the live database path and make sure it is usable before startup.

Development checkouts keep the database at ``<project root>/data/workshop.db``.
Installed (frozen) builds use a per-user writable data directory:

- Windows: ``%APPDATA%\\WorkshopDB``
- macOS: ``~/Library/Application Support/WorkshopDB``
- Linux: ``$XDG_DATA_HOME/WorkshopDB`` (``~/.local/share/WorkshopDB``)

``WORKSHOPDB_DATA_DIR`` overrides both.
"""

from __future__ import annotations

import logging
import os
import platform
from enum import Enum
from pathlib import Path

from workshopdb.core.config import (
    APP_NAME,
    DATABASE_FILENAME,
    SEED_RESOURCE,
    DeploymentMode,
    Settings,
    detect_mode,
)
from workshopdb.core.errors import ConfigurationError, SeedMissingError
from workshopdb.storage.sqlite_utils import copy_file_atomic
from workshopdb.utils import project_root, resource_path

log = logging.getLogger(__name__)

__all__ = [
    "EnsureOutcome",
    "detect_mode",
    "user_data_dir",
    "resolve_live_path",
    "default_seed_path",
    "ensure_exists",
]


class EnsureOutcome(str, Enum):
    EXISTING = "existing"
    SEEDED = "seeded"
    DEFERRED = "deferred"


def user_data_dir(app_name: str = APP_NAME) -> Path:
    """Return the per-user writable data directory for ``app_name``."""

    system = platform.system().lower()
    home = Path.home()

    if system == "windows":
        appdata = os.environ.get("APPDATA")
        if not appdata:
            raise ConfigurationError("APPDATA is not set; cannot locate the user data directory")
        return Path(appdata) / app_name
    if system == "darwin":
        return home / "Library" / "Application Support" / app_name
    return Path(os.environ.get("XDG_DATA_HOME", str(home / ".local" / "share"))) / app_name


def resolve_live_path(mode: DeploymentMode | None = None, settings: Settings | None = None) -> Path:
    """
    Return the canonical live database path for ``mode``.

    Raises:
        ConfigurationError: If no data directory can be determined
    """
    if settings is not None and settings.data_dir is not None:
        base = settings.data_dir
    else:
        mode = mode or (settings.mode if settings is not None else detect_mode())
        if mode is DeploymentMode.INSTALLED:
            base = user_data_dir()
        else:
            base = Path(project_root()) / "data"
    return (base / DATABASE_FILENAME).expanduser().resolve(strict=False)


def default_seed_path() -> Path:
    """Location of the bundled ``resources/seed.db``."""

    return Path(resource_path(*SEED_RESOURCE))


def _copy_seed(path: Path, seed_path: Path | None) -> None:
    if seed_path is None or not seed_path.is_file():
        raise SeedMissingError(seed_path)
    copy_file_atomic(seed_path, path)


def ensure_exists(path: str | Path, seed_path: str | Path | None = None) -> EnsureOutcome:
    """
    Guarantee that ``path`` can be opened as the live database.

    An existing file is left alone. Otherwise the seed is copied byte-for-byte
    into place when one is given; a missing seed only logs a warning and the
    file is created by the first write.

    Raises:
        ConfigurationError: If the parent directory cannot be created. The
            underlying ``OSError`` is chained; it is reported as a configuration
            problem because no writable live path can be resolved.
    """
    path = Path(path)
    if path.exists():
        if not path.is_file():
            raise ConfigurationError(f"Live database path is not a file: {path}")
        return EnsureOutcome.EXISTING

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"Cannot create data directory {path.parent}: {e}") from e

    if seed_path is None:
        log.info(f"No seed configured; {path} will be created on first write")
        return EnsureOutcome.DEFERRED

    try:
        _copy_seed(path, Path(seed_path))
    except SeedMissingError as e:
        log.warning(f"{e}; starting with an empty schema")
        return EnsureOutcome.DEFERRED
    except OSError as e:
        raise ConfigurationError(f"Cannot copy seed database to {path}: {e}") from e

    log.info(f"Seeded {path} from {seed_path}")
    return EnsureOutcome.SEEDED
