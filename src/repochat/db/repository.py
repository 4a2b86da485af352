"""Repository pattern for all repochat database operations.

Single interface for: projects, indexed documents + vec embeddings, similarity
search, chat messages, and usage counters. This is the index store boundary;
everything above it speaks in domain models, never SQL.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone

from repochat.db.models import ChatMessage, IndexedDocument, Project, ProjectStatus, UsageRow

# Keeps IN (...) lists well below SQLITE_MAX_VARIABLE_NUMBER on old builds.
_IN_CLAUSE_BATCH = 500

_USAGE_COLUMNS = frozenset(["chat_count", "pr_count", "project_create_count"])


def now_iso() -> str:
    """UTC timestamp with microseconds; sorts lexicographically in time order."""
    return datetime.now(timezone.utc).isoformat()


class Repository:
    """Data access layer for all repochat database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use; it must not be shared across threads.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see repochat.db.migrations.initialize).
        """
        self._conn = conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def add_project(self, project: Project) -> None:
        """Insert a new project row. ``created_at`` is filled in if missing."""
        if project.created_at is None:
            project.created_at = now_iso()
        self._conn.execute(
            """
            INSERT INTO projects (id, user_id, name, url, status, created_at, last_indexed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                project.id,
                project.user_id,
                project.name,
                project.url,
                ProjectStatus(project.status).value,
                project.created_at,
                project.last_indexed_at,
            ),
        )
        self._conn.commit()

    def get_project(self, project_id: str) -> Project | None:
        row = self._conn.execute(
            "SELECT * FROM projects WHERE id = ?", (project_id,)
        ).fetchone()
        return _row_to_project(row) if row else None

    def get_project_for_user(self, project_id: str, user_id: str) -> Project | None:
        """Return the project only if *user_id* owns it."""
        row = self._conn.execute(
            "SELECT * FROM projects WHERE id = ? AND user_id = ?", (project_id, user_id)
        ).fetchone()
        return _row_to_project(row) if row else None

    def list_projects(self, user_id: str) -> list[Project]:
        """Return the user's projects, newest first."""
        rows = self._conn.execute(
            "SELECT * FROM projects WHERE user_id = ? ORDER BY created_at DESC",
            (user_id,),
        ).fetchall()
        return [_row_to_project(r) for r in rows]

    def count_projects(self, user_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM projects WHERE user_id = ?", (user_id,)
        ).fetchone()[0]

    def update_project_status(
        self,
        project_id: str,
        status: ProjectStatus,
        last_indexed_at: str | None = None,
    ) -> None:
        """Set *status*; ``last_indexed_at`` is only touched when given."""
        if last_indexed_at is None:
            self._conn.execute(
                "UPDATE projects SET status = ? WHERE id = ?",
                (ProjectStatus(status).value, project_id),
            )
        else:
            self._conn.execute(
                "UPDATE projects SET status = ?, last_indexed_at = ? WHERE id = ?",
                (ProjectStatus(status).value, last_indexed_at, project_id),
            )
        self._conn.commit()

    def delete_project(self, project_id: str, user_id: str) -> bool:
        """Delete an owned project row (messages cascade). Returns False if not owned."""
        cur = self._conn.execute(
            "DELETE FROM projects WHERE id = ? AND user_id = ?", (project_id, user_id)
        )
        self._conn.commit()
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Indexed documents + vec embeddings
    # ------------------------------------------------------------------

    def bulk_insert_documents(self, table: str, docs: Sequence[IndexedDocument]) -> list[int]:
        """Insert documents and their embeddings in one transaction.

        Either every row of *docs* is stored or none is: on any error the
        transaction is rolled back and the exception re-raised.

        Returns:
            New document ids, in input order. Ids are also set on *docs*.
        """
        ids: list[int] = []
        try:
            for doc in docs:
                meta = doc.metadata_dict
                cur = self._conn.execute(
                    """
                    INSERT INTO documents (project_id, path, chunk_index, content, metadata)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        doc.project_id,
                        meta.get("path", ""),
                        int(meta.get("chunk_index", 0)),
                        doc.content,
                        doc.metadata,
                    ),
                )
                doc_id = cur.lastrowid
                self._conn.execute(
                    f"INSERT INTO {table}(rowid, project_id, embedding) VALUES (?, ?, ?)",
                    (doc_id, doc.project_id, json.dumps(doc.embedding)),
                )
                doc.id = doc_id
                ids.append(doc_id)
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            for doc in docs:
                doc.id = None
            raise
        return ids

    def delete_documents(self, project_id: str) -> int:
        """Delete every document and embedding of *project_id* from every vec table.

        Returns the number of document rows deleted.
        """
        ids = [
            r[0]
            for r in self._conn.execute(
                "SELECT id FROM documents WHERE project_id = ?", (project_id,)
            ).fetchall()
        ]
        vec_tables = self._vec_tables()
        for start in range(0, len(ids), _IN_CLAUSE_BATCH):
            batch = ids[start:start + _IN_CLAUSE_BATCH]
            placeholders = ",".join("?" * len(batch))
            for table in vec_tables:
                self._conn.execute(
                    f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                    batch,
                )
        cur = self._conn.execute("DELETE FROM documents WHERE project_id = ?", (project_id,))
        self._conn.commit()
        return cur.rowcount

    def count_documents(self, project_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM documents WHERE project_id = ?", (project_id,)
        ).fetchone()[0]

    def list_paths(self, project_id: str, limit: int = 1000) -> list[str]:
        """Return distinct indexed paths of *project_id*, sorted, at most *limit*."""
        rows = self._conn.execute(
            "SELECT DISTINCT path FROM documents WHERE project_id = ? ORDER BY path LIMIT ?",
            (project_id, limit),
        ).fetchall()
        return [r["path"] for r in rows]

    def find_paths(
        self, project_id: str, patterns: Iterable[str], limit: int = 3
    ) -> list[str]:
        """Return distinct paths of *project_id* containing any of *patterns*.

        Searches every indexed path, not a capped listing. At most *limit*
        paths are taken per pattern; the result is sorted.
        """
        found: set[str] = set()
        for pattern in dict.fromkeys(patterns):
            rows = self._conn.execute(
                "SELECT DISTINCT path FROM documents"
                " WHERE project_id = ? AND instr(path, ?) > 0 ORDER BY path LIMIT ?",
                (project_id, pattern, limit),
            ).fetchall()
            found.update(r["path"] for r in rows)
        return sorted(found)

    def get_documents_by_paths(
        self, project_id: str, paths: Iterable[str]
    ) -> list[IndexedDocument]:
        """Return all chunks whose path exactly matches one of *paths*.

        Ordered by path, then chunk_index. Unknown paths are silently absent.
        """
        wanted = list(dict.fromkeys(paths))
        docs: list[IndexedDocument] = []
        for start in range(0, len(wanted), _IN_CLAUSE_BATCH):
            batch = wanted[start:start + _IN_CLAUSE_BATCH]
            placeholders = ",".join("?" * len(batch))
            rows = self._conn.execute(
                f"""
                SELECT id, project_id, content, metadata FROM documents
                WHERE project_id = ? AND path IN ({placeholders})
                """,  # noqa: S608
                (project_id, *batch),
            ).fetchall()
            docs.extend(_row_to_document(r) for r in rows)
        docs.sort(key=lambda d: (d.path, d.chunk_index))
        return docs

    def get_documents_by_ids(self, ids: Sequence[int]) -> dict[int, IndexedDocument]:
        found: dict[int, IndexedDocument] = {}
        for start in range(0, len(ids), _IN_CLAUSE_BATCH):
            batch = list(ids[start:start + _IN_CLAUSE_BATCH])
            placeholders = ",".join("?" * len(batch))
            rows = self._conn.execute(
                f"SELECT id, project_id, content, metadata FROM documents WHERE id IN ({placeholders})",  # noqa: S608
                batch,
            ).fetchall()
            for r in rows:
                found[r["id"]] = _row_to_document(r)
        return found

    def similarity_search(
        self,
        table: str,
        embedding: list[float],
        threshold: float,
        top_k: int,
        project_id: str,
    ) -> list[tuple[IndexedDocument, float]]:
        """Cosine KNN within *project_id*. Returns (document, similarity), best first.

        Only hits with ``similarity > threshold`` are returned.

        Raises:
            sqlite3.OperationalError: If *table* does not exist or the query
                vector has the wrong dimension.
        """
        vec_rows = self._conn.execute(
            f"""
            SELECT rowid, distance FROM {table}
            WHERE embedding MATCH ? AND k = ? AND project_id = ?
            ORDER BY distance
            """,
            (json.dumps(embedding), top_k, project_id),
        ).fetchall()

        hits = [(r["rowid"], 1.0 - r["distance"]) for r in vec_rows]
        hits = [(rowid, sim) for rowid, sim in hits if sim > threshold]
        docs = self.get_documents_by_ids([rowid for rowid, _ in hits])
        return [(docs[rowid], sim) for rowid, sim in hits if rowid in docs]

    def _vec_tables(self) -> list[str]:
        return [
            r[0]
            for r in self._conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name LIKE 'vec_documents_%'"
            ).fetchall()
            # vec0 creates shadow tables (vec_documents_x_chunks, ...) alongside.
            if _is_vec_virtual_table(self._conn, r[0])
        ]

    # ------------------------------------------------------------------
    # Chat messages
    # ------------------------------------------------------------------

    def add_message(self, message: ChatMessage) -> int:
        """Append a chat message. Returns the new id."""
        if message.created_at is None:
            message.created_at = now_iso()
        cur = self._conn.execute(
            """
            INSERT INTO chat_messages (project_id, role, content, sources, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                message.project_id,
                message.role,
                message.content,
                json.dumps(message.sources),
                message.created_at,
            ),
        )
        self._conn.commit()
        message.id = cur.lastrowid
        return message.id

    def list_messages(self, project_id: str) -> list[ChatMessage]:
        """Return the transcript of *project_id*, oldest first."""
        rows = self._conn.execute(
            """
            SELECT id, project_id, role, content, sources, created_at FROM chat_messages
            WHERE project_id = ? ORDER BY created_at, id
            """,
            (project_id,),
        ).fetchall()
        return [_row_to_message(r) for r in rows]

    # ------------------------------------------------------------------
    # Usage counters
    # ------------------------------------------------------------------

    def get_usage(self, user_id: str) -> UsageRow | None:
        row = self._conn.execute(
            "SELECT * FROM user_usage WHERE user_id = ?", (user_id,)
        ).fetchone()
        return _row_to_usage(row) if row else None

    def create_usage(self, user_id: str, reset_at: str) -> UsageRow:
        self._conn.execute(
            "INSERT OR IGNORE INTO user_usage (user_id, last_reset_at) VALUES (?, ?)",
            (user_id, reset_at),
        )
        self._conn.commit()
        return self.get_usage(user_id)  # type: ignore[return-value]

    def reset_usage(self, user_id: str, reset_at: str) -> None:
        self._conn.execute(
            """
            UPDATE user_usage
            SET chat_count = 0, pr_count = 0, project_create_count = 0, last_reset_at = ?
            WHERE user_id = ?
            """,
            (reset_at, user_id),
        )
        self._conn.commit()

    def increment_usage(self, user_id: str, column: str) -> None:
        """Atomically add one to *column* for *user_id*."""
        if column not in _USAGE_COLUMNS:
            raise ValueError(f"Unknown usage column: {column!r}")
        self._conn.execute(
            f"UPDATE user_usage SET {column} = {column} + 1 WHERE user_id = ?",  # noqa: S608
            (user_id,),
        )
        self._conn.commit()


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _is_vec_virtual_table(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone()
    return bool(row and row[0] and "VIRTUAL TABLE" in row[0].upper())


def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        url=row["url"],
        status=ProjectStatus(row["status"]),
        created_at=row["created_at"],
        last_indexed_at=row["last_indexed_at"],
    )


def _row_to_document(row: sqlite3.Row) -> IndexedDocument:
    return IndexedDocument(
        id=row["id"],
        project_id=row["project_id"],
        content=row["content"],
        metadata=row["metadata"],
    )


def _row_to_message(row: sqlite3.Row) -> ChatMessage:
    return ChatMessage(
        id=row["id"],
        project_id=row["project_id"],
        role=row["role"],
        content=row["content"],
        sources=json.loads(row["sources"] or "[]"),
        created_at=row["created_at"],
    )


def _row_to_usage(row: sqlite3.Row) -> UsageRow:
    return UsageRow(
        user_id=row["user_id"],
        chat_count=row["chat_count"],
        pr_count=row["pr_count"],
        project_create_count=row["project_create_count"],
        last_reset_at=row["last_reset_at"],
    )
