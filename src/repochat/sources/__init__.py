"""Source-control host clients."""

from repochat.sources.github import (
    Credentials,
    GitHubClient,
    RemoteFile,
    RemoteRepository,
    make_source_client,
    parse_repo_url,
    sanitise_url,
)

__all__ = [
    "Credentials",
    "GitHubClient",
    "RemoteFile",
    "RemoteRepository",
    "make_source_client",
    "parse_repo_url",
    "sanitise_url",
]
