# src/duekeeper/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- Every value has a default, so nothing is required at import time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .tasks.overdue import reference_tz

ENV_PREFIX = "DUEKEEPER"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path

    # ---- Overdue scheduler ----
    scheduler_enabled: bool
    base_interval_minutes: float
    timezone: str

    # ---- Console ----
    console_enabled: bool
    default_user_id: str

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "duekeeper") or "duekeeper"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/duekeeper"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        scheduler_enabled = _env_bool(_k("SCHEDULER_ENABLED"), True)
        base_interval_minutes = _env_float(_k("BASE_INTERVAL_MINUTES"), 30.0)
        if base_interval_minutes <= 0:
            base_interval_minutes = 30.0

        # Single reference zone for "start of day"; UTC unless the deployment decides otherwise.
        timezone = _env(_k("TIMEZONE"), "UTC").strip() or "UTC"
        reference_tz(timezone)  # fail fast on unknown zone names

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)
        default_user_id = _env(_k("USER_ID"), "local").strip() or "local"

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
            scheduler_enabled=scheduler_enabled,
            base_interval_minutes=base_interval_minutes,
            timezone=timezone,
            console_enabled=console_enabled,
            default_user_id=default_user_id,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
