"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class SearchTier(str, Enum):
    """Retrieval strategy that produced a search result."""

    EXACT_TITLE = "exact_title"
    TAG = "tag_match"
    VECTOR = "vector"


@dataclass(slots=True)
class Assignment:
    """A user granted access to a document."""

    email: str
    role: str = "viewer"


@dataclass(slots=True)
class Document:
    """A stored process document, or a chunk of one.

    A standalone document carries its own embedding. An oversized document is
    stored as a parent (`is_parent`, `chunk_count`, no embedding) plus chunk
    documents (`is_chunk`, `parent_id`, `chunk_index`) each with an embedding.
    """

    title: str
    content: str
    tenant_id: str
    id: str | None = None
    tags: list[str] = field(default_factory=list)
    assigned_to: list[Assignment] = field(default_factory=list)
    version: int = 1
    content_type: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    embedding: list[float] | None = None
    is_chunk: bool = False
    is_parent: bool = False
    parent_id: str | None = None
    chunk_index: int | None = None
    chunk_count: int | None = None

    def is_assigned(self, email: str) -> bool:
        return any(item.email == email for item in self.assigned_to)


@dataclass(slots=True)
class ScoredDocument:
    """A document returned by a vector search with its similarity."""

    document: Document
    score: float


@dataclass(slots=True)
class SearchResult:
    """A ranked retrieval hit. Transient, never persisted."""

    id: str
    title: str
    content: str
    tags: list[str]
    relevance_score: float
    search_tier: SearchTier
    created_at: datetime | None = None


@dataclass(slots=True)
class Source:
    """A document cited alongside a generated answer."""

    id: str
    title: str
    content: str
    tags: list[str]
    relevance_score: float


@dataclass(slots=True)
class ChatTurn:
    """One conversation message given to a completion provider."""

    role: str  # "user" or "assistant"
    content: str


@dataclass(slots=True)
class ProcessStep:
    """One atomic step of a decomposed process."""

    id: str
    title: str
    description: str
    estimated_time: str | None = None
    checkpoints: list[str] = field(default_factory=list)
    tools: list[str] = field(default_factory=list)
    tips: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "estimatedTime": self.estimated_time,
            "checkpoints": list(self.checkpoints),
            "tools": list(self.tools),
            "tips": self.tips,
        }


@dataclass(slots=True)
class ProcessDefinition:
    """A process document decomposed into ordered steps."""

    title: str
    description: str
    estimated_duration: str
    steps: list[ProcessStep]
