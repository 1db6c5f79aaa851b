"""Shared runtime bootstrap helpers for CLI entrypoints."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from unbrowse.config import UnbrowseConfig, load_config
from unbrowse.db import Database, SqlAbilityCatalog, SqlCredentialStore
from unbrowse.execution import AbilityExecutionEngine


@dataclass(slots=True)
class RuntimeBootstrap:
    """Composed runtime dependencies for CLI command handlers."""

    config: UnbrowseConfig
    database: Database
    catalog: SqlAbilityCatalog
    credential_store: SqlCredentialStore

    def credential_key(self, override: str | None = None) -> str | None:
        if override:
            return override
        if self.config.credential_key is not None:
            return self.config.credential_key.get_secret_value()
        return None

    def create_engine(self) -> AbilityExecutionEngine:
        return AbilityExecutionEngine(
            self.catalog,
            self.credential_store,
            config=self.config.execution,
            credential_key=self.credential_key(),
        )


def build_runtime(config: UnbrowseConfig) -> RuntimeBootstrap:
    database = Database.from_config(config.database)
    return RuntimeBootstrap(
        config=config,
        database=database,
        catalog=SqlAbilityCatalog(database),
        credential_store=SqlCredentialStore(database),
    )


@asynccontextmanager
async def open_runtime(
    config_path: Path | None = None,
    *,
    initialize_sentry: bool = True,
) -> AsyncIterator[RuntimeBootstrap]:
    """Load config and hold a connected database for the duration."""
    config = load_config(config_path)
    if initialize_sentry:
        from unbrowse.observability import init_sentry

        init_sentry(config.sentry)

    runtime = build_runtime(config)
    await runtime.database.connect()
    try:
        yield runtime
    finally:
        await runtime.database.disconnect()
