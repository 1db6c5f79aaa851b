"""Configuration models using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator

from unbrowse.config.paths import get_database_path

DEFAULT_LOGIN_KEYWORDS = [
    "login",
    "log in",
    "signin",
    "sign in",
    "sign-in",
    "auth",
    "authenticate",
]


class ExecutionConfig(BaseModel):
    """Configuration for the ability execution pipeline.

    Timeouts are per execution attempt. The transform sandbox gets its own,
    shorter budget since it never touches the network.
    """

    timeout_seconds: float = 30.0
    transform_timeout_seconds: float = 5.0
    max_concurrency: int = 16
    max_calls_per_execution: int = 4
    max_response_chars: int = 30_000
    # Environment variables the script sandbox may see; everything else is dropped
    env_allowlist: list[str] = []
    # OS limits for the script interpreter
    sandbox_memory_mb: int = 512
    sandbox_cpu_seconds: int = 30
    sandbox_max_processes: int = 1
    # Legacy plain-text credential values (not an encrypted envelope)
    allow_plaintext_credentials: bool = False
    login_keywords: list[str] = Field(
        default_factory=lambda: list(DEFAULT_LOGIN_KEYWORDS)
    )

    @field_validator("timeout_seconds", "transform_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value

    @field_validator(
        "max_concurrency",
        "max_calls_per_execution",
        "max_response_chars",
        "sandbox_memory_mb",
        "sandbox_cpu_seconds",
        "sandbox_max_processes",
    )
    @classmethod
    def _positive_limit(cls, value: int) -> int:
        if value < 1:
            raise ValueError("limits must be at least 1")
        return value


class DatabaseConfig(BaseModel):
    """Configuration for the ability catalog and credential store database."""

    path: Path = Field(default_factory=get_database_path)
    url: str | None = None


class ServerConfig(BaseModel):
    """Configuration for HTTP server."""

    host: str = "127.0.0.1"
    port: int = 8080
    # Accept X-User-Id as identity; only safe behind a trusted proxy
    trust_user_header: bool = False


class SentryConfig(BaseModel):
    """Configuration for Sentry error reporting."""

    dsn: SecretStr | None = None
    environment: str = "production"
    release: str | None = None
    traces_sample_rate: float = 0.0
    profiles_sample_rate: float = 0.0
    # Request headers can carry user credentials
    send_default_pii: bool = False
    debug: bool = False


class UnbrowseConfig(BaseModel):
    """Root configuration model."""

    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    sentry: SentryConfig | None = None
    # Server-held decryption secret; callers may supply their own per request
    credential_key: SecretStr | None = None
    log_level: str | None = None
