"""Centralized path management for pomocop.

All state (config, database, logs) is stored under a single base directory.
The base directory can be overridden with the POMOCOP_HOME environment variable.

Default locations:
- Linux/macOS: ~/.pomocop
- Windows: %USERPROFILE%\\.pomocop
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "POMOCOP_HOME"


@lru_cache(maxsize=1)
def get_pomocop_home() -> Path:
    """Get the base directory for all pomocop data.

    Resolution order:
    1. POMOCOP_HOME environment variable (if set)
    2. Platform default (~/.pomocop)
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()

    return Path.home() / ".pomocop"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_pomocop_home() / "config.toml"


def get_database_path() -> Path:
    """Get the session database path."""
    return get_pomocop_home() / "data" / "pomocop.db"


def get_logs_path() -> Path:
    """Get the logs directory path."""
    return get_pomocop_home() / "logs"
