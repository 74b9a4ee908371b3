"""File import helpers."""
