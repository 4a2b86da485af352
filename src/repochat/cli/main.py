"""repochat CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from repochat.cli.ask import ask_cmd
from repochat.cli.projects import (
    history_cmd,
    import_cmd,
    projects_cmd,
    remove_cmd,
    sync_cmd,
)
from repochat.cli.repos import repos_cmd
from repochat.log import configure_logging


def _installed_version() -> str:
    try:
        return importlib.metadata.version("repochat")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"repochat {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="repochat",
    help=(
        "repochat — chat with a code repository.\n\n"
        "  repochat import   Index a GitHub repository (or local directory).\n"
        "  repochat ask      Ask questions, answered from the indexed code."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logs."),
    ] = False,
) -> None:
    """repochat — chat with a code repository."""
    configure_logging(verbose)


app.command("import")(import_cmd)
app.command("sync")(sync_cmd)
app.command("projects")(projects_cmd)
app.command("remove")(remove_cmd)
app.command("ask")(ask_cmd)
app.command("history")(history_cmd)
app.command("repos")(repos_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed repochat version."""
    typer.echo(f"repochat {_installed_version()}")


if __name__ == "__main__":
    app()
