"""Centralized path management for Unbrowse.

All state (config, database, logs) is stored under a single base directory.
The base directory can be overridden with the UNBROWSE_HOME environment variable.

Default locations:
- Linux/macOS: ~/.unbrowse
- Windows: %USERPROFILE%\\.unbrowse
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "UNBROWSE_HOME"


@lru_cache(maxsize=1)
def get_unbrowse_home() -> Path:
    """Get the base directory for all Unbrowse data.

    Resolution order:
    1. UNBROWSE_HOME environment variable (if set)
    2. Platform default (~/.unbrowse)

    Returns:
        Path to the Unbrowse home directory.
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()

    return Path.home() / ".unbrowse"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_unbrowse_home() / "config.toml"


def get_database_path() -> Path:
    """Get the default SQLite database path."""
    return get_unbrowse_home() / "data" / "unbrowse.db"


def get_logs_path() -> Path:
    """Get the JSONL log directory."""
    return get_unbrowse_home() / "logs"
