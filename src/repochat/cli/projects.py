"""repochat project commands: import, sync, projects, remove, history.

Indexing runs in the background; these commands wait for it (with a spinner)
so the process does not exit mid-run, then report the final status.

Usage:
  repochat import https://github.com/owner/repo
  repochat sync <project-id>
  repochat projects
  repochat remove <project-id> --yes
  repochat history <project-id>
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from repochat.cli.common import (
    DEFAULT_USER,
    DbOption,
    UserOption,
    console,
    load_settings,
    open_db,
    require_api_key,
)
from repochat.cli.errors import (
    err_indexing_failed,
    err_project_not_found,
    err_source_unavailable,
    err_usage_limit,
)
from repochat.db.models import ProjectStatus
from repochat.db.repository import Repository
from repochat.errors import ProjectNotFound, UsageLimitExceeded
from repochat.projects.lifecycle import ProjectLifecycle
from repochat.sources.github import Credentials, parse_repo_url

_STATUS_STYLE = {
    ProjectStatus.CREATED: "dim",
    ProjectStatus.INDEXING: "yellow",
    ProjectStatus.READY: "green",
    ProjectStatus.ERROR: "red",
}


def import_cmd(
    url: Annotated[str, typer.Argument(help="GitHub URL or local directory to index.")],
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="Project name (default: repository name)."),
    ] = None,
    user: UserOption = DEFAULT_USER,
    db: DbOption = None,
) -> None:
    """Create a project from a repository and index it."""
    cfg, db_path = load_settings(db)

    parsed = parse_repo_url(url)
    is_local = not ("://" in url or url.startswith("git@"))
    if is_local and not Path(url).expanduser().is_dir():
        console.print(err_source_unavailable(f"Repository path does not exist: {url}"))
        raise typer.Exit(1)
    if not is_local and parsed is None:
        console.print(err_source_unavailable(f"Not a repository URL: {url}"))
        raise typer.Exit(1)

    require_api_key(cfg.embedding.model)
    project_name = name or (parsed[1] if parsed else Path(url).expanduser().resolve().name)

    with ProjectLifecycle(db_path, cfg) as lifecycle:
        try:
            project = lifecycle.create_project(user, project_name, url, Credentials.from_env())
        except UsageLimitExceeded as exc:
            console.print(err_usage_limit(exc))
            raise typer.Exit(1)

        console.print(f"\n[bold]→ {escape(project.name)}[/]  [dim]{project.id}[/]")
        _await_indexing(lifecycle, project.id)


def sync_cmd(
    project_id: Annotated[str, typer.Argument(help="Project id.")],
    user: UserOption = DEFAULT_USER,
    db: DbOption = None,
) -> None:
    """Re-index a project from the current default branch."""
    cfg, db_path = load_settings(db)
    require_api_key(cfg.embedding.model)

    with ProjectLifecycle(db_path, cfg) as lifecycle:
        try:
            project = lifecycle.resync(project_id, user, Credentials.from_env())
        except ProjectNotFound:
            console.print(err_project_not_found(project_id))
            raise typer.Exit(1)

        console.print(f"\n[bold]↻ {escape(project.name)}[/]  [dim]{project.id}[/]")
        _await_indexing(lifecycle, project.id)


def projects_cmd(
    user: UserOption = DEFAULT_USER,
    db: DbOption = None,
) -> None:
    """List your projects, newest first."""
    _, db_path = load_settings(db)
    conn = open_db(db_path)
    try:
        repo = Repository(conn)
        projects = repo.list_projects(user)
        if not projects:
            console.print("[dim]No projects yet.[/]\n  Run:  repochat import <github-url>")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
        table.add_column("ID", style="dim")
        table.add_column("Name")
        table.add_column("Status")
        table.add_column("Chunks", justify="right")
        table.add_column("Last indexed", style="dim")
        for p in projects:
            style = _STATUS_STYLE[p.status]
            table.add_row(
                p.id,
                escape(p.name),
                f"[{style}]{p.status.value}[/]",
                f"{repo.count_documents(p.id):,}",
                (p.last_indexed_at or "-")[:16].replace("T", " "),
            )
        console.print(table)
    finally:
        conn.close()


def remove_cmd(
    project_id: Annotated[str, typer.Argument(help="Project id.")],
    user: UserOption = DEFAULT_USER,
    db: DbOption = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Delete a project, its index and its chat history."""
    cfg, db_path = load_settings(db)

    with ProjectLifecycle(db_path, cfg) as lifecycle:
        project = lifecycle.get_project(project_id)
        if project is None or project.user_id != user:
            console.print(err_project_not_found(project_id))
            raise typer.Exit(1)

        console.print(f"\nRemove project: [bold]{escape(project.name)}[/]  [dim]{escape(project.url)}[/]")
        if not yes:
            if not typer.confirm("Confirm removal?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)

        lifecycle.delete_project(project_id, user)
        console.print(f"\n[green]✓[/] Removed: {escape(project.name)}")


def history_cmd(
    project_id: Annotated[str, typer.Argument(help="Project id.")],
    user: UserOption = DEFAULT_USER,
    db: DbOption = None,
) -> None:
    """Show a project's chat transcript, oldest first."""
    _, db_path = load_settings(db)
    conn = open_db(db_path)
    try:
        repo = Repository(conn)
        if repo.get_project_for_user(project_id, user) is None:
            console.print(err_project_not_found(project_id))
            raise typer.Exit(1)

        messages = repo.list_messages(project_id)
        if not messages:
            console.print("[dim]No messages yet.[/]")
            return
        for msg in messages:
            who = "[bold cyan]you[/]" if msg.role == "user" else "[bold green]assistant[/]"
            console.print(f"\n{who} [dim]{(msg.created_at or '')[:16].replace('T', ' ')}[/]")
            console.print(msg.content, markup=False, highlight=False)
            if msg.sources:
                console.print(f"[dim]Sources: {escape(', '.join(msg.sources))}[/]")
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _await_indexing(lifecycle: ProjectLifecycle, project_id: str) -> None:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        console=console,
    ) as prog:
        prog.add_task("Indexing…", total=None)
        lifecycle.wait()

    project = lifecycle.get_project(project_id)
    if project is None:
        console.print("[yellow]⚠[/] Project was removed while indexing.")
        raise typer.Exit(1)
    if project.status is ProjectStatus.ERROR:
        console.print(err_indexing_failed(project_id))
        raise typer.Exit(1)
    console.print(f"  [green]✓[/] Indexed, status {project.status.value}")
