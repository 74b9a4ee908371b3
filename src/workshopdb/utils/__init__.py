"""Utility helpers for the WorkshopDB package."""

import os
import sys


def resource_path(*parts: str) -> str:
    """Return absolute path to a bundled resource.

    When running from a PyInstaller bundle, data files are extracted to a
    temporary directory available via ``sys._MEIPASS``. During normal
    development, resources live in the project root. This helper constructs a
    path that works in both cases.
    """

    base = getattr(
        sys, "_MEIPASS", os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", ".."))
    )
    return os.path.join(base, *parts)


def project_root() -> str:
    """Return the source checkout root (three levels above this package)."""

    return os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", ".."))
