# src/duekeeper/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Background timer loggers: every tick lands in the file, only problems reach the console.
_TIMER_LOGGERS = ("duekeeper.tasks.task_scheduler", "duekeeper.tasks.sweeper")

_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s [%(threadName)s] %(name)s: %(message)s"


class _ConsoleNoiseFilter(logging.Filter):
    """Keep the REPL readable while the overdue timers run in background threads."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not record.name.startswith("duekeeper."):
            return record.levelno >= logging.ERROR
        if record.name.startswith(_TIMER_LOGGERS):
            return record.levelno >= logging.WARNING
        return True


def setup_logging(
    *,
    log_dir: str | Path,
    app_name: str = "duekeeper",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Install a filtered stderr handler and a full file handler (<log_dir>/<app_name>.log).

    Handlers from an earlier call are replaced, so calling it twice does not duplicate output.
    Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{app_name}.log"

    root = logging.getLogger()
    root.setLevel(min(console_level, file_level))
    for h in [h for h in root.handlers if getattr(h, "_duekeeper", False)]:
        root.removeHandler(h)
        h.close()

    fmt = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.addFilter(_ConsoleNoiseFilter())

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(file_level)

    for h in (console, file_handler):
        h.setFormatter(fmt)
        h._duekeeper = True  # type: ignore[attr-defined]
        root.addHandler(h)

    return log_file
