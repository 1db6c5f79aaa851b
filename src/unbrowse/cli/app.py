"""Main CLI application."""

import typer

from unbrowse.cli.commands import abilities, credentials, database, execute, serve

app = typer.Typer(
    name="unbrowse",
    help="Unbrowse - execute captured API abilities with stored credentials",
    no_args_is_help=True,
)

serve.register(app)
execute.register(app)
abilities.register(app)
credentials.register(app)
database.register(app)


if __name__ == "__main__":
    app()
