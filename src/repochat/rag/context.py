"""Context resolver: tree summary + explicit/core files + similarity hits.

Resolution order (first seen wins on duplicate paths):
  1. Explicitly selected paths.
  2. Core files (manifests, READMEs, entry points) when fewer than three
     paths were selected.
  3. Top-K similarity hits for the question, scoped to the project.

Chunks of an explicitly loaded file are reassembled into the full file; a
similarity hit contributes only the matching chunk.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from repochat.config import RepochatConfig
from repochat.db.models import IndexedDocument
from repochat.db.repository import Repository
from repochat.db.vectors import model_to_slug, vec_table_name
from repochat.errors import RetrievalError
from repochat.ingest.batcher import Embedder
from repochat.ingest.chunker import TextChunker
from repochat.rag.tree import render_tree

logger = logging.getLogger(__name__)

_CORE_FILL_BELOW = 3


@dataclass
class ResolvedContext:
    """Everything the prompt needs for one question.

    Attributes:
        tree: Rendered file tree of the project.
        fragments: Ordered, path-unique (path, content) pairs.
    """

    tree: str
    fragments: list[tuple[str, str]] = field(default_factory=list)

    @property
    def sources(self) -> list[str]:
        return [path for path, _ in self.fragments]


class ContextResolver:
    def __init__(
        self,
        repo: Repository,
        config: RepochatConfig,
        embedder: Embedder,
    ) -> None:
        self._repo = repo
        self._retrieval = config.retrieval
        self._vec_table = vec_table_name(model_to_slug(config.embedding.model))
        self._embedder = embedder
        self._chunker = TextChunker(config.chunking.chunk_size, config.chunking.overlap)

    def resolve(
        self,
        project_id: str,
        question: str,
        selected_paths: Sequence[str] | None = None,
    ) -> ResolvedContext:
        paths = self._repo.list_paths(project_id, limit=self._retrieval.max_tree_paths)
        tree = render_tree(paths)

        targets = _dedupe(selected_paths or [])
        if len(targets) < _CORE_FILL_BELOW:
            candidates = self._repo.find_paths(
                project_id,
                self._retrieval.core_patterns,
                limit=self._retrieval.core_file_limit,
            )
            for core in self.core_files(candidates):
                if core not in targets:
                    targets.append(core)

        fragments: dict[str, str] = {}
        for path, content in self._load_files(project_id, targets):
            fragments.setdefault(path, content)

        try:
            hits = self._similar(project_id, question)
        except RetrievalError as exc:
            logger.error("Retrieval failed for project %s: %s", project_id, exc)
            hits = []

        for doc in hits:
            fragments.setdefault(doc.path, doc.content)

        logger.info(
            "Context for project %s: %d explicit/core, %d similarity hits, %d files",
            project_id,
            len(targets),
            len(hits),
            len(fragments),
        )
        return ResolvedContext(tree=tree, fragments=list(fragments.items()))

    def core_files(self, paths: Sequence[str]) -> list[str]:
        """Pick up to ``core_file_limit`` paths matching a core pattern, in pattern order."""
        found: list[str] = []
        for pattern in self._retrieval.core_patterns:
            for path in paths:
                if pattern in path and path not in found:
                    found.append(path)
                    if len(found) >= self._retrieval.core_file_limit:
                        return found
        return found

    def _load_files(
        self, project_id: str, targets: list[str]
    ) -> list[tuple[str, str]]:
        if not targets:
            return []
        by_path: dict[str, list[IndexedDocument]] = {}
        for doc in self._repo.get_documents_by_paths(project_id, targets):
            by_path.setdefault(doc.path, []).append(doc)

        loaded = []
        for path in targets:
            docs = by_path.get(path)
            if not docs:
                logger.debug("Selected file %s is not indexed", path)
                continue
            docs.sort(key=lambda d: d.chunk_index)
            loaded.append((path, self._chunker.reassemble([d.content for d in docs])))
        return loaded

    def _similar(self, project_id: str, question: str) -> list[IndexedDocument]:
        try:
            vector = self._embedder(question)
            hits = self._repo.similarity_search(
                self._vec_table,
                vector,
                threshold=self._retrieval.similarity_threshold,
                top_k=self._retrieval.top_k,
                project_id=project_id,
            )
        except Exception as exc:
            raise RetrievalError(str(exc)) from exc
        return [doc for doc, _sim in hits]


def _dedupe(paths: Sequence[str]) -> list[str]:
    seen: list[str] = []
    for path in paths:
        if path not in seen:
            seen.append(path)
    return seen
