"""Result shapes returned across the application boundary."""

from __future__ import annotations

from typing import Any, TypedDict

__all__ = [
    "OperationResult",
    "MessageData",
    "ImportData",
]


class OperationResult(TypedDict):
    success: bool
    data: Any
    error: str | None
    error_type: str | None
    fatal: bool


class MessageData(TypedDict, total=False):
    message: str
    path: str
    safety_backup: str | None
    applied_migrations: list[str]


class ImportData(TypedDict):
    inserted: int
    updated: int
    total: int
