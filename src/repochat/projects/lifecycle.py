"""Project lifecycle controller: create, resync, delete, and background ingestion.

State machine:

    CREATED ──► INDEXING ──► READY
                   │
                   └──────► ERROR
    (resync: any state ──► INDEXING)

Ingestion runs are submitted to a thread pool and return immediately. A run's
only visible outcome is the project status; its failures are logged exactly
once (by the run itself, or by the future's done-callback if the run could not
even record its own failure).

Generations: a resync deletes every indexed document of the project
before the new run inserts anything, so at most one generation is stored.
Two concurrent resyncs of one project are not serialised; the last run to
commit wins.
"""

from __future__ import annotations

import functools
import logging
import threading
import uuid
from collections.abc import Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from contextlib import contextmanager
from pathlib import Path

from repochat.config import RepochatConfig
from repochat.db.connection import Database
from repochat.db.migrations import initialize
from repochat.db.models import ChatMessage, Project, ProjectStatus
from repochat.db.repository import Repository, now_iso
from repochat.db.vectors import ensure_vec_table, model_to_slug
from repochat.errors import InvalidTransition, ProjectNotFound
from repochat.ingest.batcher import BatchReport, Embedder, EmbeddingBatcher
from repochat.ingest.chunker import TextChunker
from repochat.ingest.loader import ContentLoader
from repochat.rag import llm_client
from repochat.sources.github import Credentials
from repochat.usage import ActionKind, UsageLedger

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[ProjectStatus, frozenset[ProjectStatus]] = {
    ProjectStatus.CREATED: frozenset([ProjectStatus.INDEXING]),
    ProjectStatus.INDEXING: frozenset(
        [ProjectStatus.INDEXING, ProjectStatus.READY, ProjectStatus.ERROR]
    ),
    ProjectStatus.READY: frozenset([ProjectStatus.INDEXING]),
    ProjectStatus.ERROR: frozenset([ProjectStatus.INDEXING]),
}


def check_transition(current: ProjectStatus, new: ProjectStatus) -> None:
    """Raise InvalidTransition unless *current* → *new* is allowed."""
    if new not in _TRANSITIONS[current]:
        raise InvalidTransition(f"Cannot move project from {current.value} to {new.value}")


class ProjectLifecycle:
    """Owns project rows and drives ingestion runs for them.

    Args:
        db_path: SQLite database file (created and migrated if missing).
        config: Loaded configuration.
        loader: Content loader; built from ``config.ingest`` when omitted.
        embedder: ``text -> vector`` callable; defaults to the configured
            LiteLLM embedding model.
        executor: Pool for background runs; one is created (and owned) when
            omitted.
    """

    def __init__(
        self,
        db_path: Path | str,
        config: RepochatConfig,
        *,
        loader: ContentLoader | None = None,
        embedder: Embedder | None = None,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._db = Database(db_path)
        self._config = config
        self._loader = loader or ContentLoader(
            extensions=config.ingest.extensions,
            exclude_dirs=config.ingest.exclude_dirs,
            clone_timeout=config.ingest.clone_timeout,
        )
        self._embedder = embedder or functools.partial(
            llm_client.embed,
            config.embedding.model,
            timeout=config.embedding.request_timeout,
        )
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=config.ingest.max_workers,
            thread_name_prefix="repochat-ingest",
        )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

        with self._db as conn:
            initialize(conn)

    # ------------------------------------------------------------------
    # Caller-facing operations
    # ------------------------------------------------------------------

    def create_project(
        self, user_id: str, name: str, url: str, credentials: Credentials
    ) -> Project:
        """Register a project in INDEXING and start ingestion in the background.

        Raises:
            UsageLimitExceeded: If the user may not create another project.
        """
        with self._repo() as repo:
            ledger = UsageLedger(repo, self._config.limits)
            ledger.check_and_reserve(user_id, ActionKind.PROJECT_CREATE)
            project = Project(
                id=str(uuid.uuid4()),
                user_id=user_id,
                name=name,
                url=url,
                status=ProjectStatus.INDEXING,
            )
            repo.add_project(project)
            ledger.increment(user_id, ActionKind.PROJECT_CREATE)

        logger.info("Created project %s (%s)", project.id, project.name)
        self._submit(project.id, url, credentials)
        return project

    def resync(self, project_id: str, user_id: str, credentials: Credentials) -> Project:
        """Wipe the project's index, mark it INDEXING, and re-ingest in the background.

        Raises:
            ProjectNotFound: If the project does not exist or is not owned by *user_id*.
        """
        with self._repo() as repo:
            project = repo.get_project_for_user(project_id, user_id)
            if project is None:
                raise ProjectNotFound(project_id)
            deleted = repo.delete_documents(project_id)
            logger.info("Resync %s: removed %d indexed documents", project_id, deleted)
            self._transition(repo, project, ProjectStatus.INDEXING)

        self._submit(project.id, project.url, credentials)
        return project

    def delete_project(self, project_id: str, user_id: str) -> None:
        """Remove the project, its index and its transcript.

        Raises:
            ProjectNotFound: If the project does not exist or is not owned by *user_id*.
        """
        with self._repo() as repo:
            if repo.get_project_for_user(project_id, user_id) is None:
                raise ProjectNotFound(project_id)
            repo.delete_documents(project_id)
            repo.delete_project(project_id, user_id)
        logger.info("Deleted project %s", project_id)

    def get_project(self, project_id: str) -> Project | None:
        with self._repo() as repo:
            return repo.get_project(project_id)

    def list_projects(self, user_id: str) -> list[Project]:
        with self._repo() as repo:
            return repo.list_projects(user_id)

    def get_history(self, project_id: str) -> list[ChatMessage]:
        """Return the project's chat transcript, oldest first."""
        with self._repo() as repo:
            return repo.list_messages(project_id)

    # ------------------------------------------------------------------
    # Ingestion run
    # ------------------------------------------------------------------

    def run_ingestion(
        self, project_id: str, url: str, credentials: Credentials
    ) -> BatchReport | None:
        """Snapshot → chunk → embed → store, then set READY (or ERROR).

        Never raises for pipeline failures: they end in ERROR status plus one
        log record. Rows inserted before a failure are kept.

        Returns:
            The batch report, or None if the run failed before embedding.
        """
        with self._repo() as repo:
            try:
                report = self._ingest(repo, project_id, url, credentials)
            except Exception:
                logger.exception("Indexing failed for project %s", project_id)
                self._finish(repo, project_id, ProjectStatus.ERROR)
                return None

            if report.all_failed:
                logger.error(
                    "Indexing failed for project %s: all %d batches failed",
                    project_id,
                    report.batches_total,
                )
                self._finish(repo, project_id, ProjectStatus.ERROR)
            else:
                if report.batches_failed:
                    logger.warning(
                        "Project %s partially indexed: %d of %d batches failed",
                        project_id,
                        report.batches_failed,
                        report.batches_total,
                    )
                self._finish(repo, project_id, ProjectStatus.READY, last_indexed_at=now_iso())
                logger.info(
                    "Project %s indexing complete (%d rows)", project_id, report.rows_inserted
                )
            return report

    def _ingest(
        self, repo: Repository, project_id: str, url: str, credentials: Credentials
    ) -> BatchReport:
        vec_table = ensure_vec_table(
            repo.conn,
            model_to_slug(self._config.embedding.model),
            self._config.embedding.dimensions,
        )
        batcher = EmbeddingBatcher(
            repo,
            vec_table,
            TextChunker(self._config.chunking.chunk_size, self._config.chunking.overlap),
            self._embedder,
            dimensions=self._config.embedding.dimensions,
            batch_size=self._config.ingest.batch_size,
        )
        with self._loader.snapshot(url, credentials) as root:
            return batcher.run(project_id, self._loader.iter_documents(root))

    # ------------------------------------------------------------------
    # Background task supervision
    # ------------------------------------------------------------------

    def _submit(self, project_id: str, url: str, credentials: Credentials) -> Future:
        future = self._executor.submit(self.run_ingestion, project_id, url, credentials)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(functools.partial(self._on_done, project_id))
        return future

    def _on_done(self, project_id: str, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        if future.cancelled():
            logger.warning("Ingestion for project %s was cancelled", project_id)
            return
        exc = future.exception()
        if exc is not None:
            logger.error(
                "Ingestion task for project %s crashed", project_id, exc_info=exc
            )

    def wait(self, timeout: float | None = None) -> bool:
        """Block until all submitted runs finish. Returns False on timeout."""
        with self._lock:
            pending = list(self._pending)
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting runs; optionally wait for the running ones."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
        elif wait:
            self.wait()

    def __enter__(self) -> ProjectLifecycle:
        return self

    def __exit__(self, *args: object) -> None:
        self.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _repo(self) -> Iterator[Repository]:
        conn = self._db.connect()
        try:
            yield Repository(conn)
        finally:
            conn.close()

    @staticmethod
    def _transition(
        repo: Repository,
        project: Project,
        new: ProjectStatus,
        last_indexed_at: str | None = None,
    ) -> None:
        check_transition(project.status, new)
        repo.update_project_status(project.id, new, last_indexed_at=last_indexed_at)
        project.status = new

    def _finish(
        self,
        repo: Repository,
        project_id: str,
        status: ProjectStatus,
        last_indexed_at: str | None = None,
    ) -> None:
        project = repo.get_project(project_id)
        if project is None:
            logger.warning("Project %s was deleted during indexing", project_id)
            return
        if project.status is not ProjectStatus.INDEXING:
            # An overlapping run of this project finished first; last commit wins.
            logger.info(
                "Project %s: overlapping run finished after another (%s → %s)",
                project_id,
                project.status.value,
                status.value,
            )
            repo.update_project_status(project.id, status, last_indexed_at=last_indexed_at)
            return
        self._transition(repo, project, status, last_indexed_at=last_indexed_at)
