"""File path resolution using platformdirs.

Paths use platform-appropriate directories:
  macOS: ~/Library/Application Support/tracksync/
  Linux: ~/.local/share/tracksync/
  Windows: %LOCALAPPDATA%/tracksync/
"""

from pathlib import Path

import platformdirs

APP_NAME = "tracksync"


def get_data_dir() -> Path:
    """Return the directory for persistent data (the SQLite database)."""
    return Path(platformdirs.user_data_dir(APP_NAME, appauthor=False))


def get_default_db_path() -> Path:
    """Return the default SQLite database file path."""
    return get_data_dir() / "tracksync.db"


def ensure_dirs_exist() -> None:
    """Create all required directories if they don't exist."""
    get_data_dir().mkdir(parents=True, exist_ok=True)
