"""Configuration module."""

from pomocop.config.loader import find_config_path, get_default_config, load_config
from pomocop.config.models import (
    ConfigError,
    LoggingConfig,
    PhasesConfig,
    PomocopConfig,
    RetrySettings,
    SchedulerConfig,
    StoreConfig,
)
from pomocop.config.paths import (
    get_config_path,
    get_database_path,
    get_logs_path,
    get_pomocop_home,
)

__all__ = [
    "ConfigError",
    "LoggingConfig",
    "PhasesConfig",
    "PomocopConfig",
    "RetrySettings",
    "SchedulerConfig",
    "StoreConfig",
    "find_config_path",
    "get_config_path",
    "get_database_path",
    "get_default_config",
    "get_logs_path",
    "get_pomocop_home",
    "load_config",
]
