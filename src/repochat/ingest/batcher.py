"""Embedding batcher: chunks → vectors → index rows, one batch at a time.

Documents are grouped into fixed-size batches. Within a batch every chunk is
embedded with a separate call; once the batch is complete its rows are
bulk-inserted. Batches run strictly one after another, which bounds
concurrent provider usage and checkpoints progress: a failure loses only the
current batch.

Failure handling per batch:
- EmbeddingProviderError → batch rows dropped, logged, next batch runs.
- StoreWriteError        → batch insert rolled back, logged, next batch runs.
- ChunkingDegenerate     → that document skipped, rest of the batch continues.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from itertools import islice

from repochat.db.models import IndexedDocument
from repochat.db.repository import Repository
from repochat.errors import ChunkingDegenerate, EmbeddingProviderError, StoreWriteError
from repochat.ingest.chunker import Chunk, TextChunker
from repochat.ingest.loader import SourceDocument

logger = logging.getLogger(__name__)

Embedder = Callable[[str], list[float]]


@dataclass
class BatchReport:
    """Outcome of one ingestion run's embedding phase."""

    batches_total: int = 0
    batches_succeeded: int = 0
    batches_failed: int = 0
    rows_inserted: int = 0
    documents_skipped: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def all_failed(self) -> bool:
        """True when batches were attempted and none of them was stored."""
        return self.batches_total > 0 and self.batches_succeeded == 0


class EmbeddingBatcher:
    """Embed and persist the chunks of a document stream for one project.

    Args:
        repo: Open Repository instance.
        vec_table: Vec table for the configured embedding model.
        chunker: Splits each document into windows.
        embedder: ``text -> vector`` callable (see repochat.rag.llm_client.embed).
        dimensions: Expected vector length; any other length fails the batch.
        batch_size: Documents per batch.
    """

    def __init__(
        self,
        repo: Repository,
        vec_table: str,
        chunker: TextChunker,
        embedder: Embedder,
        dimensions: int,
        batch_size: int = 10,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._repo = repo
        self._vec_table = vec_table
        self._chunker = chunker
        self._embedder = embedder
        self._dimensions = dimensions
        self._batch_size = batch_size

    def run(
        self,
        project_id: str,
        documents: Iterable[SourceDocument],
        on_batch: Callable[[int, BatchReport], None] | None = None,
    ) -> BatchReport:
        """Process *documents* batch by batch and return the report.

        Args:
            project_id: Project that owns the new rows.
            documents: Source documents (consumed lazily).
            on_batch: Called after each batch with (batch_number, report).
        """
        report = BatchReport()
        for batch_no, batch in enumerate(_batched(documents, self._batch_size), start=1):
            report.batches_total += 1
            try:
                rows = self._embed_batch(project_id, batch, report)
                self._store(rows)
            except (EmbeddingProviderError, StoreWriteError) as exc:
                report.batches_failed += 1
                report.errors.append(f"batch {batch_no}: {exc}")
                logger.error("Batch %d of project %s failed: %s", batch_no, project_id, exc)
            else:
                report.batches_succeeded += 1
                report.rows_inserted += len(rows)
                logger.info("Indexed batch %d (%d rows)", batch_no, len(rows))
            if on_batch is not None:
                on_batch(batch_no, report)
        return report

    # ------------------------------------------------------------------
    # Per-batch work
    # ------------------------------------------------------------------

    def _embed_batch(
        self, project_id: str, batch: list[SourceDocument], report: BatchReport
    ) -> list[IndexedDocument]:
        rows: list[IndexedDocument] = []
        for document in batch:
            try:
                chunks = self._chunker.chunk(document)
            except ChunkingDegenerate as exc:
                report.documents_skipped += 1
                logger.debug("Skipping %s", exc)
                continue
            for chunk in chunks:
                rows.append(self._build_row(project_id, chunk))
        return rows

    def _build_row(self, project_id: str, chunk: Chunk) -> IndexedDocument:
        vector = self._embed(chunk)
        return IndexedDocument(
            project_id=project_id,
            content=chunk.text,
            metadata=json.dumps({"path": chunk.path, "chunk_index": chunk.index}),
            embedding=vector,
        )

    def _embed(self, chunk: Chunk) -> list[float]:
        try:
            vector = self._embedder(chunk.text)
        except Exception as exc:
            raise EmbeddingProviderError(
                f"embedding failed for {chunk.path}#{chunk.index}: {exc}"
            ) from exc
        if len(vector) != self._dimensions:
            raise EmbeddingProviderError(
                f"embedding for {chunk.path}#{chunk.index} has {len(vector)} dimensions, "
                f"expected {self._dimensions}"
            )
        return vector

    def _store(self, rows: list[IndexedDocument]) -> None:
        if not rows:
            return
        try:
            self._repo.bulk_insert_documents(self._vec_table, rows)
        except sqlite3.Error as exc:
            raise StoreWriteError(f"bulk insert of {len(rows)} rows failed: {exc}") from exc


def _batched(items: Iterable[SourceDocument], size: int) -> Iterator[list[SourceDocument]]:
    iterator = iter(items)
    while batch := list(islice(iterator, size)):
        yield batch
