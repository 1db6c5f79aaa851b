"""CLI command modules."""

from unbrowse.cli.commands import abilities, credentials, database, execute, serve

__all__ = [
    "abilities",
    "credentials",
    "database",
    "execute",
    "serve",
]
