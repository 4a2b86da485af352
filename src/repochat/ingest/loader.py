"""Content loader: one repository snapshot as (path, text) documents.

Accepts:
- Remote URL (``https://``, ``http://``, ``git@``): shallow-cloned by the source
  host client into a private temp dir, removed when the snapshot context exits.
- Local directory: read in place; nothing is copied or removed.

Only files with an allow-listed extension are read; build output, VCS metadata
and dependency directories are skipped. NUL bytes are stripped because the
text store rejects them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from repochat.config import DEFAULT_EXCLUDE_DIRS, DEFAULT_EXTENSIONS
from repochat.errors import SourceUnavailable
from repochat.sources.github import Credentials, GitHubClient, make_source_client

logger = logging.getLogger(__name__)

_GIT_SSH_PREFIX = "git@"


@dataclass(frozen=True)
class SourceDocument:
    """One file of a snapshot: relative POSIX path + NUL-free text."""

    path: str
    text: str


def sanitize_content(content: str) -> str:
    """Strip NUL characters."""
    return content.replace("\x00", "")


class ContentLoader:
    """Turn a repository reference into a finite sequence of SourceDocuments.

    Args:
        extensions: Allow-listed file extensions, without the leading dot.
        exclude_dirs: Directory names skipped at any depth.
        clone_timeout: Seconds before a clone is abandoned (None = unbounded).
        client_factory: Builds a source host client per credentials.
    """

    def __init__(
        self,
        extensions: Sequence[str] = DEFAULT_EXTENSIONS,
        exclude_dirs: Sequence[str] = DEFAULT_EXCLUDE_DIRS,
        clone_timeout: float | None = 300.0,
        client_factory: Callable[[Credentials], GitHubClient] = make_source_client,
    ) -> None:
        self._extensions = {"." + e.lower().lstrip(".") for e in extensions}
        self._exclude_dirs = set(exclude_dirs)
        self._clone_timeout = clone_timeout
        self._client_factory = client_factory

    @contextmanager
    def snapshot(self, url: str, credentials: Credentials) -> Iterator[Path]:
        """Yield the root directory of a single-revision snapshot of *url*.

        Raises:
            SourceUnavailable: If the repository cannot be obtained.
        """
        if self._is_remote(url):
            client = self._client_factory(credentials)
            with client.fetch_default_branch_snapshot(url, timeout=self._clone_timeout) as root:
                yield root
            return

        root = Path(url).expanduser()
        if not root.is_dir():
            raise SourceUnavailable(f"Repository path does not exist: {url}")
        yield root.resolve()

    def iter_documents(self, root: Path) -> Iterator[SourceDocument]:
        """Yield allow-listed files under *root*, sorted by relative path."""
        for file_path in self._scan(root):
            rel = file_path.relative_to(root).as_posix()
            try:
                raw = file_path.read_bytes()
            except OSError as exc:
                logger.warning("Skipping unreadable file %s: %s", rel, exc)
                continue
            yield SourceDocument(
                path=rel,
                text=sanitize_content(raw.decode("utf-8", errors="replace")),
            )

    def _scan(self, root: Path) -> list[Path]:
        files: list[Path] = []
        stack = [root]
        while stack:
            directory = stack.pop()
            try:
                entries = list(directory.iterdir())
            except PermissionError:
                continue
            for entry in entries:
                if entry.is_symlink():
                    continue
                if entry.is_dir():
                    if entry.name not in self._exclude_dirs:
                        stack.append(entry)
                elif entry.is_file() and entry.suffix.lower() in self._extensions:
                    files.append(entry)
        return sorted(files, key=lambda p: p.relative_to(root).as_posix())

    @staticmethod
    def _is_remote(url: str) -> bool:
        # Unknown schemes are rejected by the source client's URL validation.
        return "://" in url or url.startswith(_GIT_SSH_PREFIX)
