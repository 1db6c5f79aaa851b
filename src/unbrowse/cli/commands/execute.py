"""Execute an ability from the command line."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated, Any

import typer

from unbrowse.cli.console import console, error


def parse_param(raw: str) -> tuple[str, Any]:
    """Parse ``name=value``; values that parse as JSON keep their type."""
    name, sep, value = raw.partition("=")
    if not sep or not name.strip():
        raise typer.BadParameter(f"expected name=value, got: {raw}")
    try:
        parsed: Any = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    return name.strip(), parsed


def register(app: typer.Typer) -> None:
    """Register the execute command."""

    @app.command()
    def execute(
        ability_id: Annotated[str, typer.Argument(help="Ability to execute")],
        user: Annotated[
            str,
            typer.Option("--user", "-u", help="User the ability runs on behalf of"),
        ],
        param: Annotated[
            list[str] | None,
            typer.Option("--param", "-p", help="Parameter as name=value (repeatable)"),
        ] = None,
        params_json: Annotated[
            str | None,
            typer.Option("--params-json", help="Parameters as a JSON object"),
        ] = None,
        transform: Annotated[
            str | None,
            typer.Option("--transform", "-t", help="Transform code applied to the body"),
        ] = None,
        credential_key: Annotated[
            str | None,
            typer.Option(
                "--credential-key",
                envvar="UNBROWSE_CREDENTIAL_KEY",
                help="Secret used to decrypt stored credentials",
            ),
        ] = None,
        config: Annotated[
            Path | None,
            typer.Option("--config", "-c", help="Path to configuration file"),
        ] = None,
    ) -> None:
        """Execute an ability and print the result envelope."""
        params: dict[str, Any] = {}
        if params_json:
            try:
                loaded = json.loads(params_json)
            except json.JSONDecodeError as e:
                error(f"Invalid --params-json: {e}")
                raise typer.Exit(1) from None
            if not isinstance(loaded, dict):
                error("--params-json must be a JSON object")
                raise typer.Exit(1)
            params.update(loaded)
        for raw in param or []:
            name, value = parse_param(raw)
            params[name] = value

        envelope = asyncio.run(
            _execute(config, ability_id, user, params, transform, credential_key)
        )
        console.print_json(data=envelope)
        if not envelope["success"]:
            raise typer.Exit(1)


async def _execute(
    config_path: Path | None,
    ability_id: str,
    user_id: str,
    params: dict[str, Any],
    transform_code: str | None,
    credential_key: str | None,
) -> dict[str, Any]:
    from unbrowse.cli.runtime import open_runtime
    from unbrowse.execution import ExecutionRequest

    async with open_runtime(config_path) as runtime:
        async with runtime.create_engine() as engine:
            result = await engine.execute(
                ExecutionRequest(
                    ability_id=ability_id,
                    user_id=user_id,
                    params=params,
                    transform_code=transform_code,
                ),
                credential_key=runtime.credential_key(credential_key),
            )
    return result.to_dict()
