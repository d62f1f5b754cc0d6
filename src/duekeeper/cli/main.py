# src/duekeeper/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, starts the overdue scheduler (optional),
then runs the console REPL in the main thread.
"""

from __future__ import annotations

import logging
import signal
import threading

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_file = setup_logging(log_dir=settings.data_dir, app_name=settings.app_name, console_level=console_level)

    logger.info("Starting %s... (log file %s)", settings.app_name, log_file)

    state = create_initial_state(settings=settings)

    if settings.scheduler_enabled:
        state.scheduler.start(settings.base_interval_minutes)
    else:
        logger.info("Overdue scheduler disabled; use /sweep to check manually.")

    # Use an Event so main can wait without a busy while-loop.
    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()
        if settings.console_enabled:
            # Unblocks input() in the console loop.
            raise KeyboardInterrupt

    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle_signal)

    try:
        if settings.console_enabled:
            run_console_loop(state)
        else:
            logger.info("Console disabled. Running the overdue scheduler only. Press Ctrl+C to stop.")
            stop_main.wait()
    finally:
        state.scheduler.stop()
        state.task_store.close()
        logger.info("Bye.")


if __name__ == "__main__":
    main()
