"""Repochat database layer."""

from repochat.db.connection import Database
from repochat.db.migrations import MIGRATIONS, initialize, run_migrations
from repochat.db.repository import Repository
from repochat.db.vectors import ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
]
