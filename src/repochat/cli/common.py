"""Helpers shared by the repochat CLI commands."""

from __future__ import annotations

import os
import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from repochat.cli.errors import err_config, err_no_api_key
from repochat.config import ConfigError, RepochatConfig, load_config
from repochat.db.connection import Database
from repochat.db.migrations import initialize
from repochat.rag.llm_client import provider_of, validate_api_key

console = Console()

DEFAULT_USER = "local"

UserOption = Annotated[
    str,
    typer.Option("--user", "-u", envvar="REPOCHAT_USER", help="User id owning the projects."),
]
DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the repochat database (default: storage.db)."),
]


def load_settings(db: Path | None) -> tuple[RepochatConfig, Path]:
    """Load config (exit 1 on ConfigError) and resolve the database path."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    return cfg, db if db is not None else Path(cfg.storage.db)


def require_api_key(model: str) -> None:
    try:
        validate_api_key(model)
    except EnvironmentError:
        console.print(err_no_api_key(provider_of(model)))
        raise typer.Exit(1)


def open_db(db_path: Path) -> sqlite3.Connection:
    conn = Database(db_path).connect()
    initialize(conn)
    return conn


def github_token_set() -> bool:
    return bool(os.getenv("GITHUB_TOKEN"))
