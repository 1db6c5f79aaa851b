"""Execution pipeline public types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from unbrowse.abilities.types import LoginAbility


class ErrorKind(StrEnum):
    """Failure taxonomy; every failed result carries exactly one kind."""

    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    MISSING_CREDENTIALS = "missing_credentials"
    DECRYPTION_FAILED = "decryption_failed"
    EXECUTION_FAULT = "execution_fault"
    TIMEOUT = "timeout"
    UPSTREAM_AUTH_FAILURE = "upstream_auth_failure"
    UPSTREAM_CLIENT_FAILURE = "upstream_client_failure"
    UPSTREAM_SERVER_FAILURE = "upstream_server_failure"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE_KINDS


_RETRYABLE_KINDS = frozenset(
    {ErrorKind.EXECUTION_FAULT, ErrorKind.TIMEOUT, ErrorKind.UPSTREAM_SERVER_FAILURE}
)


@dataclass(slots=True)
class ExecutionRequest:
    """One execution of one ability on behalf of one user."""

    ability_id: str
    user_id: str
    params: dict[str, Any] = field(default_factory=dict)
    transform_code: str | None = None


@dataclass(slots=True)
class RawResponse:
    """Upstream response as seen by the host, body already read."""

    status_code: int
    headers: dict[str, str]
    body: Any


@dataclass(slots=True)
class SandboxOutcome:
    """Result of running an ability's logic: a response or a fault."""

    response: RawResponse | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    calls: int = 0

    @classmethod
    def fault(cls, message: str, *, calls: int = 0) -> SandboxOutcome:
        return cls(error=message, error_kind=ErrorKind.EXECUTION_FAULT, calls=calls)

    @classmethod
    def timeout(cls, seconds: float, *, calls: int = 0) -> SandboxOutcome:
        return cls(
            error=f"Execution timed out after {seconds:g}s",
            error_kind=ErrorKind.TIMEOUT,
            calls=calls,
        )


@dataclass(slots=True)
class ExecutionResult:
    """Envelope returned to callers. Never carries ability logic or secrets."""

    success: bool
    status_code: int | None = None
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    executed_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    error: str | None = None
    error_kind: ErrorKind | None = None
    credentials_expired: bool = False
    login_abilities: list[LoginAbility] = field(default_factory=list)
    transformed: bool = False
    truncated: bool = False
    execution_time_ms: int | None = None

    @property
    def retryable(self) -> bool:
        return self.error_kind is not None and self.error_kind.retryable

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        status_code: int | None = None,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> ExecutionResult:
        return cls(
            success=False,
            status_code=status_code,
            body=body,
            headers=dict(headers or {}),
            error=message,
            error_kind=kind,
        )

    def to_dict(self) -> dict[str, Any]:
        """Wire envelope."""
        payload: dict[str, Any] = {
            "success": self.success,
            "result": {
                "statusCode": self.status_code,
                "body": self.body,
                "headers": dict(self.headers),
                "executedAt": self.executed_at.isoformat().replace("+00:00", "Z"),
                "executionTimeMs": self.execution_time_ms,
            },
            "retryable": self.retryable,
            "transformed": self.transformed,
        }
        if self.truncated:
            payload["truncated"] = True
        if self.error is not None:
            payload["error"] = self.error
            payload["errorKind"] = str(self.error_kind) if self.error_kind else None
        if self.credentials_expired:
            payload["credentialsExpired"] = True
            payload["loginAbilities"] = [a.to_dict() for a in self.login_abilities]
        return payload
