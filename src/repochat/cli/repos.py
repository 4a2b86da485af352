"""repochat repos: list GitHub repositories available for import."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.markup import escape
from rich.table import Table

from repochat.cli.common import console, github_token_set
from repochat.cli.errors import err_no_github_token, err_source_unavailable
from repochat.errors import SourceUnavailable
from repochat.sources.github import Credentials, make_source_client


def repos_cmd(
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", min=1, max=100, help="Maximum repositories to list."),
    ] = 30,
) -> None:
    """List repositories visible to GITHUB_TOKEN, recently updated first."""
    if not github_token_set():
        console.print(err_no_github_token())
        raise typer.Exit(1)

    client = make_source_client(Credentials.from_env())
    try:
        repos = client.list_repositories(per_page=limit)
    except SourceUnavailable as exc:
        console.print(err_source_unavailable(str(exc)))
        raise typer.Exit(1)

    if not repos:
        console.print("[dim]No repositories found.[/]")
        return

    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
    table.add_column("Repository")
    table.add_column("Visibility", style="dim")
    table.add_column("★", justify="right")
    table.add_column("URL", style="dim")
    for r in repos:
        table.add_row(escape(r.name), "private" if r.private else "public", str(r.stars), r.url)
    console.print(table)
