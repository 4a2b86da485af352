"""Rich error messages for the repochat CLI.

Every error shown to the user says what went wrong and the command or setting
that fixes it.

Usage:
    from repochat.cli.errors import err_project_not_found
    console.print(err_project_not_found(project_id))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

from repochat.errors import UsageLimitExceeded
from repochat.rag.llm_client import key_env_var


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = key_env_var(provider.lower()) or f"{provider.upper()}_API_KEY"
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_project_not_found(project_id: str) -> str:
    return (
        f"[red]Error:[/] Project not found: '{project_id}'.\n"
        "  Run:  repochat projects  to list your projects."
    )


def err_config(message: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration: {escape(message)}\n"
        "  Fix repochat.yaml or ~/.repochat/config.yaml."
    )


def err_usage_limit(exc: UsageLimitExceeded) -> str:
    lines = [f"[red]Error:[/] {escape(str(exc))}"]
    if exc.reset_at:
        lines.append(f"  Limits reset at {exc.reset_at[:16].replace('T', ' ')} UTC.")
    elif exc.kind == "project_create":
        lines.append("  Run:  repochat remove <project-id>  to free a slot.")
    return "\n".join(lines)


def err_source_unavailable(message: str) -> str:
    return (
        f"[red]Error:[/] {escape(message)}\n"
        "  Check the URL. For private repositories set:  export GITHUB_TOKEN=<token>"
    )


def err_no_github_token() -> str:
    return (
        "[red]Error:[/] GitHub token not found.\n"
        "  Set:  export GITHUB_TOKEN=<token>"
    )


def err_generation_failed(message: str) -> str:
    return (
        f"[red]Error:[/] {escape(message)}\n"
        "  Nothing was saved for this answer. Retry, or check the generation model "
        "in repochat.yaml."
    )


def err_indexing_failed(project_id: str) -> str:
    return (
        f"[red]✗[/] Indexing failed for project {project_id}.\n"
        "  Re-run with --verbose for details, then retry with:\n"
        f"    repochat sync {project_id}"
    )


def warn_not_ready(status: str) -> str:
    return (
        f"[yellow]⚠[/] Project status is '{status}'. "
        "Answers may be based on partial or no code context."
    )
