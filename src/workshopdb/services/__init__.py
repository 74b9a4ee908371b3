"""Application-facing services built on the storage layer."""

from workshopdb.services.lifecycle import DatabaseLifecycle

__all__ = ["DatabaseLifecycle"]
