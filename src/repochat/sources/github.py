"""GitHub source host client: shallow snapshots, file reads, repo listing.

Security requirements:
- One client per set of credentials (make_source_client); never a shared
  singleton, so concurrent users cannot see each other's tokens.
- shell=False always (no command injection).
- URL scheme whitelist: https://, http://, git@ only.
- Temp dirs created with mode=0o700; cleaned via try/finally + atexit.
- The access token is injected into the clone URL in-memory only; it is never
  logged and never appears in error output.
"""

from __future__ import annotations

import atexit
import base64
import functools
import json
import logging
import os
import re
import shutil
import subprocess
import tempfile
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from repochat.errors import SourceUnavailable

logger = logging.getLogger(__name__)

_API_BASE = "https://api.github.com"
_USER_AGENT = "repochat/0.1"
_TIMEOUT = 30  # seconds, REST calls
_ALLOWED_SCHEMES = {"https", "http"}
_GIT_SSH_PREFIX = "git@"

_CRED_RE = re.compile(r"(https?://)([^@/]+@)", re.IGNORECASE)


def sanitise_url(url: str) -> str:
    """Remove embedded credentials from a URL for safe logging / error messages."""
    return _CRED_RE.sub(r"\1***@", url)


def parse_repo_url(url: str) -> tuple[str, str] | None:
    """Return ``(owner, repo)`` for a GitHub URL, or None if it cannot be parsed.

    Accepts ``https://github.com/owner/repo(.git)`` and
    ``git@github.com:owner/repo(.git)``.
    """
    if url.startswith(_GIT_SSH_PREFIX):
        _, _, rest = url.partition(":")
    else:
        rest = urllib.parse.urlparse(url).path
    parts = [p for p in rest.strip("/").split("/") if p]
    if len(parts) < 2:
        return None
    owner, repo = parts[0], parts[1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    if not owner or not repo:
        return None
    return owner, repo


@dataclass(frozen=True)
class Credentials:
    """Access credentials for the source host.

    ``token`` is None for public repositories.
    """

    token: str | None = None

    def __repr__(self) -> str:
        return "Credentials(token=***)" if self.token else "Credentials(token=None)"

    @classmethod
    def from_env(cls) -> Credentials:
        return cls(token=os.environ.get("GITHUB_TOKEN") or None)


@dataclass(frozen=True)
class RemoteFile:
    content: str
    sha: str


@dataclass(frozen=True)
class RemoteRepository:
    id: int
    name: str
    description: str | None
    url: str
    private: bool
    stars: int
    updated_at: str | None


class GitHubClient:
    """Source host operations performed as the owner of *credentials*."""

    def __init__(self, credentials: Credentials, api_base: str = _API_BASE) -> None:
        self._credentials = credentials
        self._api_base = api_base.rstrip("/")

    # ------------------------------------------------------------------
    # Snapshot (shallow clone)
    # ------------------------------------------------------------------

    @contextmanager
    def fetch_default_branch_snapshot(
        self, url: str, timeout: float | None = None
    ) -> Iterator[Path]:
        """Shallow-clone the default branch of *url* and yield the checkout dir.

        The directory is removed when the context exits, on success or failure.

        Raises:
            SourceUnavailable: Bad URL scheme, clone failure, timeout, or no git.
        """
        self._validate_url(url)
        clone_url = self._inject_token(url)

        tmpdir = tempfile.mkdtemp(prefix="repochat-")
        os.chmod(tmpdir, 0o700)
        cleanup = functools.partial(_cleanup_dir, tmpdir)
        atexit.register(cleanup)  # safety net for crashes
        try:
            checkout = Path(tmpdir) / "repo"
            self._clone(clone_url, checkout, url, timeout)
            yield checkout
        finally:
            cleanup()
            atexit.unregister(cleanup)
            logger.debug("Removed snapshot %s", tmpdir)

    @staticmethod
    def _validate_url(url: str) -> None:
        """Raise SourceUnavailable if *url* uses a disallowed scheme."""
        if url.startswith(_GIT_SSH_PREFIX):
            return
        parsed = urllib.parse.urlparse(url)
        if parsed.scheme not in _ALLOWED_SCHEMES:
            raise SourceUnavailable(
                f"Unsupported URL scheme '{parsed.scheme}'. "
                f"Allowed: https://, http://, git@"
            )

    def _inject_token(self, url: str) -> str:
        """Inject the access token into an HTTPS/HTTP URL for private repo auth."""
        token = self._credentials.token
        if not token or not url.startswith(("https://", "http://")):
            return url
        parsed = urllib.parse.urlparse(url)
        return parsed._replace(netloc=f"{token}@{parsed.netloc}").geturl()

    @staticmethod
    def _clone(clone_url: str, dest: Path, original_url: str, timeout: float | None) -> None:
        """Run ``git clone --depth 1`` (shell=False).

        *original_url* (without credentials) is used in error messages.
        """
        logger.info("Cloning %s", sanitise_url(original_url))
        try:
            subprocess.run(
                ["git", "clone", "--depth", "1", "--", clone_url, str(dest)],
                shell=False,
                check=True,
                capture_output=True,
                text=True,
                timeout=timeout,
                env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
            )
        except subprocess.CalledProcessError as exc:
            stderr_safe = sanitise_url(exc.stderr or "").strip()
            raise SourceUnavailable(
                f"git clone failed for {sanitise_url(original_url)}: {stderr_safe}"
            ) from None
        except subprocess.TimeoutExpired:
            raise SourceUnavailable(
                f"git clone timed out after {timeout}s for {sanitise_url(original_url)}"
            ) from None
        except FileNotFoundError:
            raise SourceUnavailable("git executable not found on PATH") from None

    # ------------------------------------------------------------------
    # REST API
    # ------------------------------------------------------------------

    def read_file(self, owner: str, repo: str, path: str) -> RemoteFile:
        """Fetch the current content and blob sha of one file.

        Raises:
            SourceUnavailable: If the path is missing, is a directory, or the
                request fails.
        """
        quoted = urllib.parse.quote(path.lstrip("/"))
        data = self._get_json(f"/repos/{owner}/{repo}/contents/{quoted}")
        if isinstance(data, list) or "content" not in data:
            raise SourceUnavailable(f"Path is a directory, not a file: {path}")
        raw = base64.b64decode(data["content"])
        return RemoteFile(content=raw.decode("utf-8", errors="replace"), sha=data["sha"])

    def list_repositories(self, per_page: int = 100) -> list[RemoteRepository]:
        """Return the repositories visible to the credentials, recently updated first."""
        data = self._get_json(
            f"/user/repos?sort=updated&per_page={per_page}&visibility=all"
        )
        return [
            RemoteRepository(
                id=int(r["id"]),
                name=r["full_name"],
                description=r.get("description"),
                url=r["html_url"],
                private=bool(r.get("private", False)),
                stars=int(r.get("stargazers_count", 0)),
                updated_at=r.get("updated_at"),
            )
            for r in data
        ]

    def _get_json(self, endpoint: str) -> dict | list:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": _USER_AGENT,
        }
        if self._credentials.token:
            headers["Authorization"] = f"Bearer {self._credentials.token}"
        req = urllib.request.Request(self._api_base + endpoint, headers=headers)
        try:
            with urllib.request.urlopen(req, timeout=_TIMEOUT) as resp:  # noqa: S310
                return json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            raise SourceUnavailable(f"GitHub API {endpoint} returned HTTP {exc.code}") from None
        except urllib.error.URLError as exc:
            raise SourceUnavailable(f"GitHub API unreachable: {exc.reason}") from None


def make_source_client(credentials: Credentials) -> GitHubClient:
    """Build a client bound to *credentials*. Stateless; call once per request."""
    return GitHubClient(credentials)


def _cleanup_dir(path: str) -> None:
    """Remove a directory tree, ignoring errors (used as atexit handler)."""
    shutil.rmtree(path, ignore_errors=True)
