"""FastAPI application for the ability execution service."""

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from unbrowse.server.routes import abilities, health

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from unbrowse.db import Database
    from unbrowse.execution import AbilityExecutionEngine

logger = logging.getLogger(__name__)


class UnbrowseServer:
    """Owns the FastAPI app and the lifecycle of the engine and database."""

    def __init__(
        self,
        engine: "AbilityExecutionEngine",
        database: "Database | None" = None,
        *,
        trust_user_header: bool = False,
    ):
        self._engine = engine
        self._database = database
        self._trust_user_header = trust_user_header
        self._app = self._create_app()

    @property
    def app(self) -> FastAPI:
        """Get the FastAPI application."""
        return self._app

    def _create_app(self) -> FastAPI:
        @asynccontextmanager
        async def lifespan(app: FastAPI) -> "AsyncIterator[None]":
            logger.info("server_starting")
            if self._database is not None:
                await self._database.connect()

            yield

            logger.info("server_stopping")
            await self._engine.aclose()
            if self._database is not None:
                await self._database.disconnect()

        app = FastAPI(
            title="Unbrowse",
            description="Ability execution API",
            version="0.1.0",
            lifespan=lifespan,
        )

        app.state.server = self
        app.state.engine = self._engine
        app.state.database = self._database
        app.state.trust_user_header = self._trust_user_header

        app.include_router(health.router, tags=["health"])
        app.include_router(abilities.router, tags=["abilities"])

        return app


def create_app(
    engine: "AbilityExecutionEngine",
    database: "Database | None" = None,
    *,
    trust_user_header: bool = False,
) -> FastAPI:
    """Create the FastAPI application."""
    return UnbrowseServer(
        engine=engine, database=database, trust_user_header=trust_user_header
    ).app
