"""Tests for configuration loading and models."""

import pytest
from pydantic import SecretStr, ValidationError

from conftest import SECRET
from unbrowse.config import (
    ExecutionConfig,
    UnbrowseConfig,
    get_default_config,
    get_unbrowse_home,
    load_config,
)
from unbrowse.config.loader import _resolve_env_secrets
from unbrowse.config.models import DEFAULT_LOGIN_KEYWORDS


class TestExecutionConfig:
    """Tests for ExecutionConfig model."""

    def test_defaults(self):
        config = ExecutionConfig()
        assert config.timeout_seconds == 30
        assert config.transform_timeout_seconds == 5
        assert config.max_concurrency == 16
        assert config.max_calls_per_execution == 4
        assert config.max_response_chars == 30_000
        assert config.env_allowlist == []
        assert config.sandbox_memory_mb == 512
        assert config.sandbox_cpu_seconds == 30
        assert config.sandbox_max_processes == 1
        assert config.allow_plaintext_credentials is False
        assert config.login_keywords == DEFAULT_LOGIN_KEYWORDS

    def test_login_keywords_are_not_shared(self):
        first = ExecutionConfig()
        first.login_keywords.append("oauth")
        assert "oauth" not in ExecutionConfig().login_keywords

    @pytest.mark.parametrize("field", ["timeout_seconds", "transform_timeout_seconds"])
    def test_timeouts_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            ExecutionConfig(**{field: 0})

    @pytest.mark.parametrize(
        "field",
        [
            "max_concurrency",
            "max_calls_per_execution",
            "max_response_chars",
            "sandbox_memory_mb",
            "sandbox_cpu_seconds",
            "sandbox_max_processes",
        ],
    )
    def test_limits_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            ExecutionConfig(**{field: 0})


class TestUnbrowseConfig:
    def test_defaults(self):
        config = get_default_config()
        assert isinstance(config, UnbrowseConfig)
        assert config.credential_key is None
        assert config.server.host == "127.0.0.1"
        assert config.server.port == 8080
        assert config.server.trust_user_header is False
        assert config.database.url is None

    def test_credential_key_is_secret(self):
        config = UnbrowseConfig(credential_key="hunter2")
        assert isinstance(config.credential_key, SecretStr)
        assert "hunter2" not in repr(config)
        assert config.credential_key.get_secret_value() == "hunter2"


class TestLoadConfig:
    def test_load_from_file(self, config_file, tmp_path):
        config = load_config(config_file)

        assert config.credential_key.get_secret_value() == SECRET
        assert config.database.path == tmp_path / "unbrowse.db"
        assert config.execution.timeout_seconds == 10
        assert config.execution.max_response_chars == 5000
        assert config.execution.max_calls_per_execution == 4

    def test_missing_explicit_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.toml")

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("[execution]\nmax_concurrency = 0\n")

        with pytest.raises(ValidationError):
            load_config(path)

    def test_defaults_when_no_file_exists(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("UNBROWSE_HOME", str(tmp_path / "home"))
        monkeypatch.delenv("UNBROWSE_CREDENTIAL_KEY", raising=False)
        monkeypatch.delenv("UNBROWSE_PASSWORD", raising=False)
        get_unbrowse_home.cache_clear()
        try:
            config = load_config()
        finally:
            get_unbrowse_home.cache_clear()

        assert config.credential_key is None
        assert config.execution == ExecutionConfig()


class TestResolveEnvSecrets:
    def test_credential_key_from_env(self, monkeypatch):
        monkeypatch.setenv("UNBROWSE_CREDENTIAL_KEY", "from-env")

        resolved = _resolve_env_secrets({})

        assert resolved["credential_key"].get_secret_value() == "from-env"

    def test_fallback_env_var(self, monkeypatch):
        monkeypatch.delenv("UNBROWSE_CREDENTIAL_KEY", raising=False)
        monkeypatch.setenv("UNBROWSE_PASSWORD", "fallback")

        resolved = _resolve_env_secrets({})

        assert resolved["credential_key"].get_secret_value() == "fallback"

    def test_file_value_wins(self, monkeypatch):
        monkeypatch.setenv("UNBROWSE_CREDENTIAL_KEY", "from-env")

        resolved = _resolve_env_secrets({"credential_key": "from-file"})

        assert resolved["credential_key"] == "from-file"
