"""Tests for EmbeddingBatcher."""

from __future__ import annotations

import sqlite3
from unittest.mock import MagicMock

import pytest

from repochat.db.repository import Repository
from repochat.db.vectors import ensure_vec_table
from repochat.ingest.batcher import EmbeddingBatcher
from repochat.ingest.chunker import TextChunker
from repochat.ingest.loader import SourceDocument

DIMS = 3


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def vec_table(tmp_db):
    return ensure_vec_table(tmp_db, "test_model", DIMS)


def _docs(n: int) -> list[SourceDocument]:
    return [SourceDocument(path=f"f{i}.py", text=f"content of file {i}") for i in range(n)]


def _embedder(fail_on: set[str] = frozenset()):
    def embed(text: str) -> list[float]:
        if any(marker in text for marker in fail_on):
            raise RuntimeError("provider down")
        return [1.0, 0.5, 0.25]

    return embed


def _batcher(repo, vec_table, embedder, batch_size=2, chunker=None):
    return EmbeddingBatcher(
        repo, vec_table, chunker or TextChunker(1000, 200), embedder,
        dimensions=DIMS, batch_size=batch_size,
    )


def test_all_batches_succeed(repo, vec_table):
    report = _batcher(repo, vec_table, _embedder()).run("p1", _docs(5))
    assert report.batches_total == 3
    assert report.batches_succeeded == 3
    assert report.rows_inserted == 5
    assert not report.all_failed
    assert repo.count_documents("p1") == 5


def test_metadata_holds_path_and_chunk_index(repo, vec_table):
    docs = [SourceDocument(path="src/long.ts", text="x" * 25)]
    _batcher(repo, vec_table, _embedder(), chunker=TextChunker(10, 2)).run("p1", docs)
    stored = repo.get_documents_by_paths("p1", ["src/long.ts"])
    assert [d.chunk_index for d in stored] == [0, 1, 2]
    assert all(d.path == "src/long.ts" for d in stored)


def test_middle_batch_failure_keeps_other_batches(repo, vec_table):
    # batch_size=2 → [f0,f1] [f2,f3] [f4,f5]; f3 fails → batch 2 dropped
    report = _batcher(repo, vec_table, _embedder({"file 3"})).run("p1", _docs(6))

    assert report.batches_total == 3
    assert report.batches_failed == 1
    assert report.batches_succeeded == 2
    assert not report.all_failed
    assert repo.list_paths("p1") == ["f0.py", "f1.py", "f4.py", "f5.py"]
    assert "batch 2" in report.errors[0]


def test_all_batches_fail(repo, vec_table):
    report = _batcher(repo, vec_table, _embedder({"content"})).run("p1", _docs(4))
    assert report.all_failed
    assert repo.count_documents("p1") == 0


def test_wrong_dimension_fails_batch(repo, vec_table):
    report = _batcher(repo, vec_table, lambda text: [1.0, 0.0]).run("p1", _docs(1))
    assert report.batches_failed == 1
    assert "dimensions" in report.errors[0]


def test_store_failure_fails_batch_and_continues(repo, vec_table):
    real_insert = repo.bulk_insert_documents
    calls = {"n": 0}

    def flaky(table, rows):
        calls["n"] += 1
        if calls["n"] == 1:
            raise sqlite3.OperationalError("database is locked")
        return real_insert(table, rows)

    repo.bulk_insert_documents = flaky
    report = _batcher(repo, vec_table, _embedder()).run("p1", _docs(4))
    assert report.batches_failed == 1
    assert report.batches_succeeded == 1
    assert repo.list_paths("p1") == ["f2.py", "f3.py"]


def test_degenerate_documents_skipped(repo, vec_table):
    docs = [SourceDocument("empty.py", "   \n"), SourceDocument("ok.py", "x = 1")]
    report = _batcher(repo, vec_table, _embedder()).run("p1", docs)
    assert report.documents_skipped == 1
    assert report.batches_succeeded == 1
    assert repo.list_paths("p1") == ["ok.py"]


def test_empty_input_is_not_a_failure(repo, vec_table):
    report = _batcher(repo, vec_table, _embedder()).run("p1", [])
    assert report.batches_total == 0
    assert not report.all_failed


def test_on_batch_callback(repo, vec_table):
    cb = MagicMock()
    _batcher(repo, vec_table, _embedder()).run("p1", _docs(3), on_batch=cb)
    assert [c.args[0] for c in cb.call_args_list] == [1, 2]


def test_batch_size_validation(repo, vec_table):
    with pytest.raises(ValueError):
        _batcher(repo, vec_table, _embedder(), batch_size=0)
