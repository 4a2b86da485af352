"""Per-model sqlite-vec virtual table management.

One vec0 table per embedding model. ``project_id`` is a partition key so KNN
queries only scan the requesting project's vectors; distances are cosine, so
``similarity = 1 - distance``.
"""

from __future__ import annotations

import re
import sqlite3

_DIMENSIONS_RE = re.compile(r"float\[(\d+)\]")


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small"
    """
    return re.sub(r"[^a-z0-9]", "_", model.lower())


def vec_table_name(model_slug: str) -> str:
    """Return the full vec table name for a model slug."""
    return f"vec_documents_{model_slug}"


def ensure_vec_table(conn: sqlite3.Connection, model_slug: str, dimensions: int) -> str:
    """Create vec_documents_{model_slug} if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        model_slug: Sanitized model identifier (use model_to_slug() to generate).
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-3-small).

    Returns:
        The table name (vec_documents_{model_slug}).

    Raises:
        ValueError: On an invalid slug or dimension, or when the existing table
            was created with a different dimension.
    """
    if not re.fullmatch(r"[a-z0-9_]+", model_slug):
        raise ValueError(
            f"Invalid model_slug '{model_slug}'; use model_to_slug() to sanitize."
        )
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_slug)
    existing = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()

    if existing is None:
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING vec0("
            f"project_id text partition key, "
            f"embedding float[{dimensions}] distance_metric=cosine)"
        )
        conn.commit()
        return table

    match = _DIMENSIONS_RE.search(existing[0] or "")
    if match and int(match.group(1)) != dimensions:
        raise ValueError(
            f"Vec table '{table}' stores {match.group(1)}-dimensional embeddings, "
            f"but {dimensions} were configured. Re-index with a matching model."
        )
    return table
