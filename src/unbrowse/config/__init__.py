"""Configuration module."""

from unbrowse.config.loader import get_default_config, load_config
from unbrowse.config.models import (
    DatabaseConfig,
    ExecutionConfig,
    SentryConfig,
    ServerConfig,
    UnbrowseConfig,
)
from unbrowse.config.paths import (
    get_config_path,
    get_database_path,
    get_logs_path,
    get_unbrowse_home,
)

__all__ = [
    "DatabaseConfig",
    "ExecutionConfig",
    "SentryConfig",
    "ServerConfig",
    "UnbrowseConfig",
    "get_config_path",
    "get_database_path",
    "get_default_config",
    "get_logs_path",
    "get_unbrowse_home",
    "load_config",
]
