"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``."""

    platform_id = (platform or sys.platform).lower()
    environ = dict(env or os.environ)
    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "TaskMaster"
EXPORT_VERSION = "1.2-pro"


DATA_DIR = get_default_data_dir(APP_NAME)
LOG_DIR = DATA_DIR / "logs"

DB_PATH = DATA_DIR / "taskmaster.db"
LOG_PATH = LOG_DIR / "taskmaster.log"

TASK_STORE = "tasks"
SETTINGS_STORE = "settings"
SETTINGS_KEY = "main-settings"


@dataclass(frozen=True)
class EnginePolicy:
    # Repeating tasks further out than this are hidden from "all" and category tabs.
    recurring_horizon_days: int = 15
    duplicate_threshold: float = 0.5
    history_max_size: int = 50
    default_page_size: int = 10
    reorder_gap: float = 1000.0
    reminder_window_seconds: int = 60


ENGINE = EnginePolicy()


@dataclass(frozen=True)
class AutoSaveSettings:
    enabled: bool = True
    delay_sec: float = 2.0


AUTOSAVE = AutoSaveSettings()


@dataclass(frozen=True)
class LoggingSettings:
    enabled: bool = True
    path: Path = LOG_PATH
    max_bytes: int = 1_000_000
    backup_count: int = 3


LOGGING = LoggingSettings()


__all__ = [
    "APP_NAME",
    "AUTOSAVE",
    "DATA_DIR",
    "DB_PATH",
    "ENGINE",
    "EXPORT_VERSION",
    "LOGGING",
    "LOG_DIR",
    "LOG_PATH",
    "SETTINGS_KEY",
    "SETTINGS_STORE",
    "TASK_STORE",
    "AutoSaveSettings",
    "EnginePolicy",
    "LoggingSettings",
    "get_default_data_dir",
]
