"""Shared test fixtures and factories."""

from collections.abc import AsyncGenerator, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import pytest
from typer.testing import CliRunner

from unbrowse.abilities import (
    AbilityDescriptor,
    AbilitySummary,
    matches_intent,
    parse_ability,
)
from unbrowse.credentials import CredentialRecord, encrypt_value
from unbrowse.db.engine import Database

SECRET = "correct horse battery staple"


# =============================================================================
# Fakes
# =============================================================================


@dataclass
class FakeCatalog:
    """In-memory catalog that records search calls."""

    abilities: dict[str, AbilityDescriptor] = field(default_factory=dict)
    summaries: list[AbilitySummary] = field(default_factory=list)
    searches: list[tuple[str, str, tuple[str, ...]]] = field(default_factory=list)
    fail_search: bool = False

    def add(self, definition: dict[str, Any]) -> AbilityDescriptor:
        descriptor = parse_ability(definition)
        self.abilities[descriptor.ability_id] = descriptor
        self.summaries.append(
            AbilitySummary(
                ability_id=descriptor.ability_id,
                name=descriptor.name,
                description=descriptor.description,
                service_name=descriptor.service_name,
                requires_dynamic_headers=descriptor.requires_dynamic_headers,
            )
        )
        return descriptor

    async def get_ability(
        self, ability_id: str, user_id: str
    ) -> AbilityDescriptor | None:
        return self.abilities.get(ability_id)

    async def search_abilities_by_service_and_intent(
        self,
        user_id: str,
        service_name: str,
        keywords: Sequence[str],
    ) -> list[AbilitySummary]:
        self.searches.append((user_id, service_name, tuple(keywords)))
        if self.fail_search:
            raise RuntimeError("search backend unavailable")
        return [
            s
            for s in self.summaries
            if s.service_name == service_name and matches_intent(s, keywords)
        ]


@dataclass
class FakeCredentialStore:
    """In-memory credential store that records every call."""

    records: list[CredentialRecord] = field(default_factory=list)
    domain_lookups: list[tuple[str, str]] = field(default_factory=list)
    expire_calls: list[tuple[str, str]] = field(default_factory=list)
    fail_expire: bool = False

    def add(self, user_id: str, token: str, value: str, *, expired: bool = False) -> None:
        domain, _, _ = token.partition("::")
        self.records.append(
            CredentialRecord(
                user_id=user_id,
                domain=domain,
                key=token,
                encrypted_value=encrypt_value(value, SECRET),
                expired=expired,
            )
        )

    async def get_credentials_for_domain(
        self, user_id: str, domain: str
    ) -> list[CredentialRecord]:
        self.domain_lookups.append((user_id, domain))
        return [
            r
            for r in self.records
            if r.user_id == user_id and r.domain == domain and not r.expired
        ]

    async def expire_credentials(self, user_id: str, scope: str) -> int:
        self.expire_calls.append((user_id, scope))
        if self.fail_expire:
            raise RuntimeError("store unavailable")
        return 0

    async def store_credential(
        self, user_id: str, domain: str, key: str, encrypted_value: str
    ) -> None:
        self.records.append(
            CredentialRecord(
                user_id=user_id, domain=domain, key=key, encrypted_value=encrypted_value
            )
        )


@dataclass
class RecordingTransport:
    """Collects outbound requests and answers them with a handler."""

    handler: Callable[[httpx.Request], httpx.Response]
    requests: list[httpx.Request] = field(default_factory=list)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def json_response(
    status_code: int = 200, payload: Any = None, **headers: str
) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=payload, headers=headers or None)

    return handler


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def secret() -> str:
    return SECRET


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def credential_store() -> FakeCredentialStore:
    return FakeCredentialStore()


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Create a temporary config file pointing at a temporary database."""
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        f"""
credential_key = "{SECRET}"

[database]
path = "{tmp_path / "unbrowse.db"}"

[execution]
timeout_seconds = 10
max_response_chars = 5000
"""
    )
    return config_path


@pytest.fixture
async def database(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """Create a temporary test database."""
    db = Database(database_path=tmp_path / "test.db")
    await db.connect()
    await db.create_all()

    yield db

    await db.disconnect()


# =============================================================================
# Ability definitions
# =============================================================================


@pytest.fixture
def top_voices_definition() -> dict[str, Any]:
    return {
        "ability_id": "get-token-top-voices",
        "service_name": "tokens-api",
        "ability_name": "get_token_top_voices",
        "description": "List the most active voices for a token",
        "requires_dynamic_headers": False,
        "input_schema": {
            "type": "object",
            "properties": {
                "token_symbol": {"type": "string"},
                "limit": {"type": "integer", "default": 10},
            },
            "required": ["token_symbol"],
        },
        "static_headers": [{"key": "api.tokens.example::Accept", "value": "application/json"}],
        "request_template": {
            "method": "GET",
            "url": "https://api.tokens.example/rest/v1/top_voices",
            "query": {"token_symbol": "eq.{token_symbol}", "limit": "{limit}"},
        },
    }


@pytest.fixture
def authorized_definition() -> dict[str, Any]:
    return {
        "ability_id": "list-orders",
        "service_name": "example-service",
        "ability_name": "list_orders",
        "description": "List recent orders",
        "dynamic_header_keys": ["www.example.com::Authorization"],
        "static_headers": {"www.example.com::X-Client": "web"},
        "request_template": {
            "method": "GET",
            "url": "https://www.example.com/api/orders",
        },
    }


@pytest.fixture
def login_definition() -> dict[str, Any]:
    return {
        "ability_id": "example-login",
        "service_name": "example-service",
        "ability_name": "login",
        "description": "Sign in with email and password",
        "request_template": {
            "method": "POST",
            "url": "https://www.example.com/api/session",
            "body": {"email": "{email}", "password": "{password}"},
        },
    }
