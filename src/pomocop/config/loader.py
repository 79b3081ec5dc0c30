"""Configuration loading from TOML files and environment variables."""

import os
import tomllib
from pathlib import Path
from typing import Any

from pomocop.config.models import ConfigError, PomocopConfig
from pomocop.config.paths import get_config_path

DATABASE_PATH_ENV = "POMOCOP_DATABASE_PATH"


def _get_default_config_paths() -> list[Path]:
    """Get ordered list of default config file locations."""
    return [
        Path("config.toml"),  # Current directory
        get_config_path(),  # ~/.pomocop/config.toml (or POMOCOP_HOME)
        Path("/etc/pomocop/config.toml"),  # System-wide
    ]


def _resolve_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Fill values from environment variables where the file leaves them unset."""
    if database_path := os.environ.get(DATABASE_PATH_ENV):
        store = config.setdefault("store", {})
        if store.get("database_path") is None:
            store["database_path"] = database_path
    return config


def find_config_path(path: Path | None = None) -> Path | None:
    """Resolve the config file to use, or None when no file exists.

    Raises:
        FileNotFoundError: If an explicit ``path`` does not exist.
    """
    if path is not None:
        config_path = Path(path).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        return config_path

    for default_path in _get_default_config_paths():
        expanded = default_path.expanduser()
        if expanded.exists():
            return expanded
    return None


def load_config(path: Path | None = None) -> PomocopConfig:
    """Load configuration from TOML file.

    Args:
        path: Explicit path to config file. If None, searches default
            locations and falls back to built-in defaults.

    Returns:
        Validated PomocopConfig instance.

    Raises:
        FileNotFoundError: If an explicit path does not exist.
        ConfigError: If the file is not valid TOML.
        pydantic.ValidationError: If values fail validation.
    """
    config_path = find_config_path(path)

    raw_config: dict[str, Any] = {}
    if config_path is not None:
        try:
            with config_path.open("rb") as f:
                raw_config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    raw_config = _resolve_env_overrides(raw_config)

    return PomocopConfig.model_validate(raw_config)


def get_default_config() -> PomocopConfig:
    """Get a default configuration for development/testing."""
    return PomocopConfig()
