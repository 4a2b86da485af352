"""Domain models for the repochat database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum


class ProjectStatus(str, Enum):
    CREATED = "CREATED"
    INDEXING = "INDEXING"
    READY = "READY"
    ERROR = "ERROR"


@dataclass
class Project:
    id: str
    user_id: str
    name: str
    url: str
    status: ProjectStatus = ProjectStatus.CREATED
    created_at: str | None = None
    last_indexed_at: str | None = None


@dataclass
class IndexedDocument:
    """One embedded chunk of one file, scoped to a project.

    ``metadata`` is a JSON object holding at least ``path`` and ``chunk_index``.
    ``embedding`` is only populated on the write path; reads leave it empty.
    """

    project_id: str
    content: str
    metadata: str = field(default_factory=lambda: "{}")
    embedding: list[float] = field(default_factory=list)
    id: int | None = None  # set after insert; shared with the vec table rowid

    @property
    def metadata_dict(self) -> dict:
        return json.loads(self.metadata)

    @property
    def path(self) -> str:
        return self.metadata_dict.get("path", "")

    @property
    def chunk_index(self) -> int:
        return int(self.metadata_dict.get("chunk_index", 0))


@dataclass
class ChatMessage:
    project_id: str
    role: str  # user | assistant
    content: str
    sources: list[str] = field(default_factory=list)
    created_at: str | None = None
    id: int | None = None


@dataclass
class UsageRow:
    user_id: str
    chat_count: int = 0
    pr_count: int = 0
    project_create_count: int = 0
    last_reset_at: str | None = None
