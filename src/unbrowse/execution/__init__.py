"""Ability execution pipeline."""

from unbrowse.execution.engine import AbilityExecutionEngine
from unbrowse.execution.headers import (
    FORBIDDEN_HEADERS,
    FORBIDDEN_HEADERS_VERSION,
    HeaderLayer,
    compose_headers,
)
from unbrowse.execution.recovery import FailureRecoveryCoordinator
from unbrowse.execution.sandbox import (
    SandboxError,
    SandboxExecutor,
    SandboxLimits,
    ScriptRunner,
)
from unbrowse.execution.shaper import MAX_RESPONSE_CHARS, ResponseShaper
from unbrowse.execution.transform import ResponseTransformer
from unbrowse.execution.types import (
    ErrorKind,
    ExecutionRequest,
    ExecutionResult,
    RawResponse,
    SandboxOutcome,
)

__all__ = [
    "FORBIDDEN_HEADERS",
    "FORBIDDEN_HEADERS_VERSION",
    "MAX_RESPONSE_CHARS",
    "AbilityExecutionEngine",
    "ErrorKind",
    "ExecutionRequest",
    "ExecutionResult",
    "FailureRecoveryCoordinator",
    "HeaderLayer",
    "RawResponse",
    "ResponseShaper",
    "ResponseTransformer",
    "SandboxError",
    "SandboxExecutor",
    "SandboxLimits",
    "SandboxOutcome",
    "ScriptRunner",
    "compose_headers",
]
