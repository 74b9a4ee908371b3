import logging
import sys

from workshopdb.core.logging_config import get_log_directory, setup_production_logging


def test_setup_writes_package_and_error_logs(tmp_path):
    root = logging.getLogger()
    pkg = logging.getLogger("workshopdb")
    saved = (list(root.handlers), root.level, list(pkg.handlers), pkg.level)
    try:
        log_dir = setup_production_logging(log_dir=tmp_path / "logs")
        logging.getLogger("workshopdb.storage.backups").info("backup written")
        logging.getLogger("workshopdb.storage.restore").error("restore failed")
        for handler in root.handlers + pkg.handlers:
            handler.flush()

        main_log = (log_dir / "workshopdb.log").read_text(encoding="utf-8")
        error_log = (log_dir / "errors.log").read_text(encoding="utf-8")
    finally:
        for handler in root.handlers + pkg.handlers:
            handler.close()
        root.handlers[:] = saved[0]
        root.setLevel(saved[1])
        pkg.handlers[:] = saved[2]
        pkg.setLevel(saved[3])

    assert "WorkshopDB logging initialized" in main_log
    assert "backup written" in main_log
    assert "restore failed" in error_log
    assert "backup written" not in error_log


def test_log_directory_on_linux(monkeypatch, tmp_path):
    monkeypatch.setattr(sys, "platform", "linux")
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))

    assert get_log_directory() == tmp_path / "WorkshopDB" / "logs"
