"""Fixed-window chunker with exact character overlap.

Boundaries are pure character offsets, independent of tokens or syntax.
Retrieval precision comes from the overlap and from top-K breadth, not from
boundary placement. Windows are never stripped: consecutive chunks must share
exactly ``overlap`` characters.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from repochat.errors import ChunkingDegenerate
from repochat.ingest.loader import SourceDocument


@dataclass(frozen=True)
class Chunk:
    """A contiguous window of a SourceDocument.

    Attributes:
        path: Originating file path (relative, POSIX separators).
        index: 0-based position of the window within the document.
        text: Window content.
    """

    path: str
    index: int
    text: str


class DocumentChunks:
    """Lazy, restartable chunk sequence for one document.

    Every iteration re-slices the text from the start, so the sequence can be
    consumed any number of times with identical results.
    """

    def __init__(self, chunker: TextChunker, document: SourceDocument) -> None:
        self._chunker = chunker
        self._document = document

    @property
    def path(self) -> str:
        return self._document.path

    def __iter__(self) -> Iterator[Chunk]:
        for index, text in enumerate(self._chunker.windows(self._document.text)):
            yield Chunk(path=self._document.path, index=index, text=text)


class TextChunker:
    """Split text into ``chunk_size``-character windows overlapping by ``overlap``."""

    def __init__(self, chunk_size: int = 1000, overlap: int = 200) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    @property
    def step(self) -> int:
        return self.chunk_size - self.overlap

    def chunk(self, document: SourceDocument) -> DocumentChunks:
        """Return the chunk sequence of *document*.

        Raises:
            ChunkingDegenerate: If the document has no non-whitespace text.
        """
        if not document.text.strip():
            raise ChunkingDegenerate(f"No text content: {document.path}")
        return DocumentChunks(self, document)

    def windows(self, text: str) -> Iterator[str]:
        """Yield the raw windows of *text*; a text of length <= chunk_size is one window."""
        length = len(text)
        pos = 0
        while pos < length:
            end = min(pos + self.chunk_size, length)
            yield text[pos:end]
            if end >= length:
                break
            pos += self.step

    def reassemble(self, windows: list[str]) -> str:
        """Join consecutive windows back into the text they were cut from.

        Each window after the first repeats the previous window's last
        ``overlap`` characters; that prefix is dropped. Windows that do not
        line up (e.g. a missing chunk) are joined with a newline instead.
        """
        if not windows:
            return ""
        parts = [windows[0]]
        previous = windows[0]
        for window in windows[1:]:
            if self.overlap and previous.endswith(window[: self.overlap]):
                parts.append(window[self.overlap:])
            elif not self.overlap:
                parts.append(window)
            else:
                parts.append("\n" + window)
            previous = window
        return "".join(parts)
