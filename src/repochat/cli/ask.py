"""repochat ask: answer a question about an indexed project, streamed.

Usage:
  repochat ask <project-id> "what does this project do?"
  repochat ask <project-id> "explain the parser" --file src/parser.ts --file src/lexer.ts
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.markup import escape

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
    err_generation_failed,
    err_project_not_found,
    err_usage_limit,
    warn_not_ready,
)
from repochat.db.models import ProjectStatus
from repochat.db.repository import Repository
from repochat.errors import GenerationProviderError, ProjectNotFound, UsageLimitExceeded
from repochat.rag.answer import AnswerStreamer


def ask_cmd(
    project_id: Annotated[str, typer.Argument(help="Project id.")],
    question: Annotated[str, typer.Argument(help="Question about the code.")],
    file: Annotated[
        list[str] | None,
        typer.Option("--file", "-f", help="Indexed file path to include in full (repeatable)."),
    ] = None,
    user: UserOption = DEFAULT_USER,
    db: DbOption = None,
) -> None:
    """Ask a question about a project's code."""
    cfg, db_path = load_settings(db)
    require_api_key(cfg.embedding.model)
    require_api_key(cfg.generation.model)

    conn = open_db(db_path)
    try:
        repo = Repository(conn)
        project = repo.get_project_for_user(project_id, user)
        if project is None:
            console.print(err_project_not_found(project_id))
            raise typer.Exit(1)
        if project.status is not ProjectStatus.READY:
            console.print(warn_not_ready(project.status.value))

        streamer = AnswerStreamer(repo, cfg)
        try:
            stream = streamer.answer(project_id, question, selected_paths=file, user_id=user)
        except ProjectNotFound:
            console.print(err_project_not_found(project_id))
            raise typer.Exit(1)
        except UsageLimitExceeded as exc:
            console.print(err_usage_limit(exc))
            raise typer.Exit(1)
        except GenerationProviderError as exc:
            console.print(err_generation_failed(str(exc)))
            raise typer.Exit(1)

        with stream:
            for delta in stream:
                typer.echo(delta, nl=False)
        typer.echo("")

        if stream.interrupted:
            console.print("[yellow]⚠[/] Answer interrupted by a provider error; partial answer saved.")
        if stream.sources:
            console.print(f"\n[dim]Sources: {escape(', '.join(stream.sources))}[/]")
    finally:
        conn.close()
