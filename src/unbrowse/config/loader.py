"""Configuration loading from TOML files and environment variables."""

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import SecretStr

from unbrowse.config.models import UnbrowseConfig
from unbrowse.config.paths import get_config_path

# Checked in order; the first one set wins
CREDENTIAL_KEY_ENV_VARS = ("UNBROWSE_CREDENTIAL_KEY", "UNBROWSE_PASSWORD")


def _get_default_config_paths() -> list[Path]:
    """Get ordered list of default config file locations."""
    return [
        Path("config.toml"),  # Current directory
        get_config_path(),  # ~/.unbrowse/config.toml (or UNBROWSE_HOME)
        Path("/etc/unbrowse/config.toml"),  # System-wide
    ]


def _resolve_env_secrets(config: dict[str, Any]) -> dict[str, Any]:
    """Resolve secrets from environment variables where not set in config."""
    if config.get("credential_key") is None:
        for env_var in CREDENTIAL_KEY_ENV_VARS:
            value = os.environ.get(env_var)
            if value:
                config["credential_key"] = SecretStr(value)
                break

    sentry = config.get("sentry")
    if isinstance(sentry, dict) and sentry.get("dsn") is None:
        if dsn := os.environ.get("SENTRY_DSN"):
            sentry["dsn"] = SecretStr(dsn)
    return config


def load_config(path: Path | None = None) -> UnbrowseConfig:
    """Load configuration from TOML file.

    Args:
        path: Explicit path to config file. If None, searches default locations.
            When no file exists in any default location, defaults are used.

    Returns:
        Validated UnbrowseConfig instance.

    Raises:
        FileNotFoundError: If an explicit config path does not exist.
        ValueError: If config file is invalid.
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        for default_path in _get_default_config_paths():
            expanded = default_path.expanduser()
            if expanded.exists():
                config_path = expanded
                break

    raw_config: dict[str, Any] = {}
    if config_path is not None:
        with config_path.open("rb") as f:
            raw_config = tomllib.load(f)

    raw_config = _resolve_env_secrets(raw_config)

    return UnbrowseConfig.model_validate(raw_config)


def get_default_config() -> UnbrowseConfig:
    """Get a default configuration for development/testing."""
    return UnbrowseConfig()
