"""Exception taxonomy for the ingestion and chat pipelines.

Ingestion failures never reach the caller that triggered the run; they are
recorded on the project status and in the log. Chat failures propagate to the
caller unless streaming has already started.
"""

from __future__ import annotations


class RepochatError(Exception):
    """Base class for all repochat errors."""


class SourceUnavailable(RepochatError):
    """Repository clone/fetch failed (credentials, network, not found). Fatal to a run."""


class ChunkingDegenerate(RepochatError):
    """Document has no usable text. The document is skipped, the run continues."""


class EmbeddingProviderError(RepochatError):
    """An embedding call failed or returned an unusable vector. The batch is dropped."""


class StoreWriteError(RepochatError):
    """Bulk insert into the index store failed. The batch is lost, the run continues."""


class RetrievalError(RepochatError):
    """Similarity search failed during a chat request. Treated as zero hits."""


class GenerationProviderError(RepochatError):
    """The completion provider failed before the first token was produced."""


class ProjectNotFound(RepochatError):
    """Project does not exist or is not owned by the requesting user."""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class InvalidTransition(RepochatError):
    """A project status change that the lifecycle state machine does not allow."""


class UsageLimitExceeded(RepochatError):
    """The usage ledger denied an action for the user.

    Attributes:
        kind: Action kind that was denied ('chat', 'pr', 'project_create').
        reset_at: ISO timestamp when the daily counters reset, or None for
            static limits such as the active project cap.
    """

    def __init__(self, message: str, kind: str, reset_at: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.reset_at = reset_at
