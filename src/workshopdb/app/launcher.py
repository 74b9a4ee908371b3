"""Startup sequence for the workshop application."""

from __future__ import annotations

import logging
import sys

from workshopdb import __version__
from workshopdb.core.config import APP_NAME, Settings, load_settings
from workshopdb.core.errors import WorkshopDBError
from workshopdb.core.logging_config import setup_production_logging
from workshopdb.services.lifecycle import DatabaseLifecycle

log = logging.getLogger(__name__)


class WorkshopLauncher:
    """Prepare the database, then hand a ready query handle to the host."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or load_settings()
        self.lifecycle = DatabaseLifecycle(self.settings)

    def start(self) -> DatabaseLifecycle:
        """
        Run the locator and every migration, then open the query handle.

        Nothing opens a handle if the schema could not be brought up to date.
        """
        path = self.lifecycle.ensure_database_ready()
        handle = self.lifecycle.open_handle()
        log.info(f"Database ready at {path} ({handle!r})")
        return self.lifecycle


def main() -> int:
    """Prepare the database and report whether startup succeeded."""

    settings = load_settings()
    try:
        setup_production_logging(app_name=APP_NAME, console_level=settings.log_level)
    except Exception as e:
        logging.basicConfig(level=logging.INFO)
        log.error(f"Failed to setup production logging: {e}", exc_info=True)

    log.info(f"Starting {APP_NAME} {__version__}")
    try:
        lifecycle = WorkshopLauncher(settings).start()
    except WorkshopDBError as e:
        log.critical(f"Fatal startup error: {e}", exc_info=True)
        print(f"{APP_NAME} could not open its database:\n  {e}", file=sys.stderr)
        return 1

    lifecycle.close()
    log.info(f"{APP_NAME} exited normally")
    return 0


if __name__ == "__main__":  # pragma: no cover - import guard
    sys.exit(main())
