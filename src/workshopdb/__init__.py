"""Lifecycle management for the workshop invoicing database."""

__version__ = "1.2.0"
