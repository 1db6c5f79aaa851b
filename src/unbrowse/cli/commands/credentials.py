"""Credential store commands."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from unbrowse.cli.console import dim, error, success


def register(app: typer.Typer) -> None:
    """Register the credentials command group."""
    credentials_app = typer.Typer(help="Encrypted credential commands")

    @credentials_app.command("store")
    def credentials_store(
        user: Annotated[str, typer.Option("--user", "-u", help="Owning user")],
        key: Annotated[
            str,
            typer.Option("--key", "-k", help="Credential token, e.g. api.example.com::Authorization"),
        ],
        value: Annotated[
            str,
            typer.Option(
                "--value",
                prompt=True,
                hide_input=True,
                help="Credential value (prompted when omitted)",
            ),
        ],
        credential_key: Annotated[
            str | None,
            typer.Option(
                "--credential-key",
                envvar="UNBROWSE_CREDENTIAL_KEY",
                help="Secret used to encrypt the value",
            ),
        ] = None,
        config: Annotated[
            Path | None,
            typer.Option("--config", "-c", help="Path to configuration file"),
        ] = None,
    ) -> None:
        """Encrypt and store a credential."""
        from unbrowse.abilities import split_token

        domain, header = split_token(key)
        if not domain or not header:
            error("--key must use the domain::Header form")
            raise typer.Exit(1)

        if not asyncio.run(_store(config, user, domain, key, value, credential_key)):
            error("No credential key configured; pass --credential-key")
            raise typer.Exit(1)
        success(f"Stored {key} for {user}")

    @credentials_app.command("expire")
    def credentials_expire(
        user: Annotated[str, typer.Option("--user", "-u", help="Owning user")],
        scope: Annotated[
            str,
            typer.Option("--scope", "-s", help="Credential scope (domain) to expire"),
        ],
        config: Annotated[
            Path | None,
            typer.Option("--config", "-c", help="Path to configuration file"),
        ] = None,
    ) -> None:
        """Mark every credential in a scope as expired."""
        count = asyncio.run(_expire(config, user, scope))
        if count:
            success(f"Expired {count} credential(s) in {scope}")
        else:
            dim(f"No active credentials in {scope}")

    app.add_typer(credentials_app, name="credentials")


async def _store(
    config_path: Path | None,
    user_id: str,
    domain: str,
    key: str,
    value: str,
    credential_key: str | None,
) -> bool:
    from unbrowse.cli.runtime import open_runtime
    from unbrowse.credentials import encrypt_value

    async with open_runtime(config_path) as runtime:
        secret = runtime.credential_key(credential_key)
        if not secret:
            return False
        await runtime.credential_store.store_credential(
            user_id, domain, key, encrypt_value(value, secret)
        )
    return True


async def _expire(config_path: Path | None, user_id: str, scope: str) -> int:
    from unbrowse.cli.runtime import open_runtime

    async with open_runtime(config_path) as runtime:
        return await runtime.credential_store.expire_credentials(user_id, scope)
