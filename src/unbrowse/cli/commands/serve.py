"""Server command for running the execution API."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer


def register(app: typer.Typer) -> None:
    """Register the serve command."""

    @app.command()
    def serve(
        config: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="Path to configuration file",
            ),
        ] = None,
        host: Annotated[
            str | None,
            typer.Option(
                "--host",
                "-h",
                help="Host to bind to (defaults to server.host)",
            ),
        ] = None,
        port: Annotated[
            int | None,
            typer.Option(
                "--port",
                "-p",
                help="Port to bind to (defaults to server.port)",
            ),
        ] = None,
    ) -> None:
        """Start the ability execution server."""
        try:
            asyncio.run(_run_server(config, host, port))
        except KeyboardInterrupt:
            # Use print here since logging may not be configured yet
            print("\nServer stopped")


async def _run_server(
    config_path: Path | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    import uvicorn

    from unbrowse.cli.runtime import build_runtime
    from unbrowse.config import load_config
    from unbrowse.logging import configure_logging
    from unbrowse.observability import init_sentry
    from unbrowse.server.app import create_app

    config = load_config(config_path)
    configure_logging(level=config.log_level, use_rich=True, log_to_file=True)

    init_sentry(config.sentry, server_mode=True)

    runtime = build_runtime(config)
    app = create_app(
        runtime.create_engine(),
        runtime.database,
        trust_user_header=config.server.trust_user_header,
    )

    uvicorn_config = uvicorn.Config(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
        log_level="info",
        log_config=None,  # Use shared logging config, not uvicorn's
    )
    await uvicorn.Server(uvicorn_config).serve()
