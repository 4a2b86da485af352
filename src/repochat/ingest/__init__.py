"""Repochat ingest pipeline: loader, chunker, embedding batcher."""

from repochat.ingest.batcher import BatchReport, EmbeddingBatcher
from repochat.ingest.chunker import Chunk, DocumentChunks, TextChunker
from repochat.ingest.loader import ContentLoader, SourceDocument, sanitize_content

__all__ = [
    "BatchReport",
    "Chunk",
    "ContentLoader",
    "DocumentChunks",
    "EmbeddingBatcher",
    "SourceDocument",
    "TextChunker",
    "sanitize_content",
]
