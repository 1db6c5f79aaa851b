"""Ability catalog commands."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from unbrowse.cli.console import create_table, console, error, success


def register(app: typer.Typer) -> None:
    """Register the abilities command group."""
    abilities_app = typer.Typer(help="Ability catalog commands")

    @abilities_app.command("import")
    def abilities_import(
        path: Annotated[
            Path,
            typer.Argument(help="JSON file with one or more ability definitions"),
        ],
        owner: Annotated[
            str | None,
            typer.Option(
                "--owner",
                help="Restrict the abilities to this user (default: visible to all)",
            ),
        ] = None,
        config: Annotated[
            Path | None,
            typer.Option("--config", "-c", help="Path to configuration file"),
        ] = None,
    ) -> None:
        """Import ability definitions into the catalog."""
        from unbrowse.abilities import AbilityDefinitionError
        from unbrowse.db import load_definitions

        try:
            definitions = load_definitions(path)
        except (OSError, ValueError) as e:
            error(f"Could not read {path}: {e}")
            raise typer.Exit(1) from None

        try:
            imported = asyncio.run(_import(config, definitions, owner))
        except AbilityDefinitionError as e:
            error(f"Invalid ability definition: {e}")
            raise typer.Exit(1) from None

        table = create_table("Imported abilities", [("Ability", "cyan")])
        for ability_id in imported:
            table.add_row(ability_id)
        console.print(table)
        success(f"Imported {len(imported)} abilit{'y' if len(imported) == 1 else 'ies'}")

    app.add_typer(abilities_app, name="abilities")


async def _import(
    config_path: Path | None,
    definitions: list[dict],
    owner: str | None,
) -> list[str]:
    from unbrowse.cli.runtime import open_runtime
    from unbrowse.db import import_abilities

    async with open_runtime(config_path) as runtime:
        return await import_abilities(
            runtime.catalog, definitions, owner_user_id=owner
        )
