# WorkshopDB
# Copyright © 2025 Osvaldo J. Vega Rodríguez
# Licensed under CC BY-NC-SA 4.0 International
# http://creativecommons.org/licenses/by-nc-sa/4.0/

"""Rotating log files for the launcher and the admin tool."""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from workshopdb.core.config import APP_NAME

__all__ = ["setup_production_logging", "get_log_directory"]

MAIN_LOG = "workshopdb.log"
ERROR_LOG = "errors.log"

_DETAILED = logging.Formatter(
    "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
_SIMPLE = logging.Formatter("%(levelname)-8s | %(name)s | %(message)s")


def _rotating(path: Path, *, max_mb: int, keep: int, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=max_mb * 1024 * 1024, backupCount=keep, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(_DETAILED)
    return handler


def setup_production_logging(
    app_name: str = APP_NAME,
    console_level: int = logging.INFO,
    log_dir: Path | None = None,
) -> Path:
    """
    Route ``workshopdb`` logging to rotating files and the console.

    ``workshopdb.log`` receives every package record from DEBUG up (5 MB,
    five generations). ``errors.log`` receives ERROR and above from any
    logger (2 MB, three generations). Calling this again replaces the
    handlers installed by the previous call.

    Args:
        app_name: Directory name used under the platform log location
        console_level: Threshold for records echoed to stdout
        log_dir: Write here instead of the platform location

    Returns:
        The directory holding both log files
    """
    log_dir = log_dir or _get_log_directory(app_name)
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    root_logger.handlers.clear()
    root_logger.addHandler(_rotating(log_dir / ERROR_LOG, max_mb=2, keep=3, level=logging.ERROR))

    pkg_logger = logging.getLogger("workshopdb")
    pkg_logger.setLevel(logging.DEBUG)
    pkg_logger.handlers.clear()
    pkg_logger.addHandler(_rotating(log_dir / MAIN_LOG, max_mb=5, keep=5, level=logging.DEBUG))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(_SIMPLE)
    pkg_logger.addHandler(console_handler)

    # Drop lock acquire/release records below WARNING
    logging.getLogger("workshopdb.core.file_lock").setLevel(logging.WARNING)

    log = logging.getLogger(__name__)
    log.info(f"{app_name} logging initialized in {log_dir}")
    log.info(f"Platform: {sys.platform}, Python: {sys.version.split()[0]}")

    return log_dir


def _get_log_directory(app_name: str) -> Path:
    """
    Windows: %LOCALAPPDATA%\\<app>\\logs; macOS: ~/Library/Logs/<app>;
    elsewhere: $XDG_DATA_HOME/<app>/logs.
    """
    home = Path.home()

    if sys.platform == "win32":
        base = Path(os.environ.get("LOCALAPPDATA", home / "AppData" / "Local"))
        return base / app_name / "logs"
    if sys.platform == "darwin":
        return home / "Library" / "Logs" / app_name

    xdg_data_home = os.environ.get("XDG_DATA_HOME") or home / ".local" / "share"
    return Path(xdg_data_home) / app_name / "logs"


def get_log_directory(app_name: str = APP_NAME) -> Path:
    """Where :func:`setup_production_logging` writes by default."""
    return _get_log_directory(app_name)
