"""Ability subsystem public types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

TOKEN_SEPARATOR = "::"


class AbilityDefinitionError(ValueError):
    """Raised when an ability definition is malformed or inconsistent."""


def split_token(token: str) -> tuple[str, str]:
    """Split a ``domain::Header`` token on the first separator.

    Tokens without a separator are treated as a bare header name with an
    empty domain.
    """
    domain, sep, header = token.partition(TOKEN_SEPARATOR)
    if not sep:
        return "", token.strip()
    return domain.strip(), header.strip()


@dataclass(slots=True, frozen=True)
class InputField:
    """One parameter of an ability's input schema."""

    name: str
    type: str = "string"
    required: bool = False
    default: Any = None
    description: str = ""


@dataclass(slots=True, frozen=True)
class StaticHeader:
    """Header fixed at authoring time.

    ``value`` may contain ``{param}`` placeholders, filled from the
    validated parameters at execution time.
    """

    name: str
    value: str


@dataclass(slots=True, frozen=True)
class RequestTemplate:
    """Declarative request-construction logic."""

    method: str
    url: str
    query: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    body_format: Literal["json", "form", "raw"] = "json"


@dataclass(slots=True, frozen=True)
class ScriptLogic:
    """Procedural request-construction logic run in the script sandbox.

    The source must define ``wrapper(payload, fetch)`` (or the configured
    entrypoint) and return the response produced by ``fetch``.
    """

    source: str
    entrypoint: str = "wrapper"


ExecutableLogic = RequestTemplate | ScriptLogic


@dataclass(slots=True, frozen=True)
class AbilityDescriptor:
    """Immutable definition of one reverse-engineered API call."""

    ability_id: str
    service_name: str
    name: str
    description: str
    method: str
    url_template: str
    logic: ExecutableLogic
    input_schema: dict[str, InputField] = field(default_factory=dict)
    static_headers: tuple[StaticHeader, ...] = ()
    dynamic_header_keys: tuple[str, ...] = ()
    dependency_order: tuple[str, ...] = ()
    missing_dependencies: tuple[str, ...] = ()
    credential_scope: str | None = None

    @property
    def requires_dynamic_headers(self) -> bool:
        return bool(self.dynamic_header_keys)

    @property
    def expiry_scope(self) -> str:
        """Scope passed to the credential store when credentials go stale."""
        return self.credential_scope or self.service_name

    @property
    def credential_domains(self) -> list[str]:
        domains: list[str] = []
        for token in self.dynamic_header_keys:
            domain, _ = split_token(token)
            if domain and domain not in domains:
                domains.append(domain)
        return domains


@dataclass(slots=True, frozen=True)
class AbilitySummary:
    """Catalog search hit; carries no logic or header material."""

    ability_id: str
    name: str
    description: str
    service_name: str = ""
    requires_dynamic_headers: bool = False


@dataclass(slots=True, frozen=True)
class LoginAbility:
    """Login suggestion returned to the caller after an auth failure."""

    id: str
    name: str
    description: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name, "description": self.description}
