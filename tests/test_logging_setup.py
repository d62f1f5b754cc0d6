# tests/test_logging_setup.py

from __future__ import annotations

import logging
from pathlib import Path

from duekeeper.logging_setup import _ConsoleNoiseFilter, setup_logging


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "msg", None, None)


def test_console_filter_hides_timer_chatter() -> None:
    f = _ConsoleNoiseFilter()

    assert f.filter(_record("duekeeper.tasks.task_api", logging.INFO))
    assert not f.filter(_record("duekeeper.tasks.task_scheduler", logging.INFO))
    assert not f.filter(_record("duekeeper.tasks.sweeper", logging.INFO))
    assert f.filter(_record("duekeeper.tasks.task_scheduler", logging.WARNING))
    assert not f.filter(_record("urllib3", logging.WARNING))
    assert f.filter(_record("urllib3", logging.ERROR))


def test_setup_logging_writes_file_and_does_not_stack_handlers(tmp_path: Path) -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging(log_dir=tmp_path, app_name="dk-test")
        log_file = setup_logging(log_dir=tmp_path, app_name="dk-test")

        ours = [h for h in root.handlers if getattr(h, "_duekeeper", False)]
        assert len(ours) == 2
        # Handlers installed by someone else survive.
        assert all(h in root.handlers for h in saved_handlers)

        logging.getLogger("duekeeper.tasks.task_scheduler").debug("rearm tick")
        for h in ours:
            h.flush()
        assert log_file == tmp_path / "dk-test.log"
        assert "rearm tick" in log_file.read_text(encoding="utf-8")
    finally:
        for h in [h for h in root.handlers if getattr(h, "_duekeeper", False)]:
            root.removeHandler(h)
            h.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
