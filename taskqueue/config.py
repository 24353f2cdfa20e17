"""Environment-driven configuration for the task queue."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

APP_DIR_NAME = "mcp-taskmanager"
DEFAULT_FILE_NAME = "tasks.json"

FILE_PATH_ENV = "TASK_MANAGER_FILE_PATH"
LOG_LEVEL_ENV = "TASK_MANAGER_LOG_LEVEL"
LOG_FILE_ENV = "TASK_MANAGER_LOG_FILE"


def app_data_dir() -> Path:
    """Platform-appropriate directory for the task file."""
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / APP_DIR_NAME
    if sys.platform == "win32":
        appdata = os.getenv("APPDATA")
        base = Path(appdata) if appdata else home / "AppData" / "Roaming"
        return base / APP_DIR_NAME
    xdg_data_home = os.getenv("XDG_DATA_HOME")
    if xdg_data_home:
        return Path(xdg_data_home) / APP_DIR_NAME
    return home / ".local" / "share" / APP_DIR_NAME


def resolve_file_path(file_path: Optional[str | Path] = None) -> Path:
    """Pick the task file: explicit argument, then environment, then platform default."""
    if file_path:
        return Path(file_path).expanduser()
    env_path = os.getenv(FILE_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return app_data_dir() / DEFAULT_FILE_NAME


def log_level() -> str:
    return os.getenv(LOG_LEVEL_ENV, "INFO").upper()


def log_file() -> Optional[Path]:
    value = os.getenv(LOG_FILE_ENV)
    return Path(value).expanduser() if value else None
