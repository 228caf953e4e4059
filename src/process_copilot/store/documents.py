"""Document store interface and the in-memory adapter."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from math import sqrt
from typing import Any, Protocol

from process_copilot.types import Document, ScoredDocument

_DOCUMENT_FIELDS = frozenset(f.name for f in fields(Document))


@dataclass(slots=True)
class DocumentQuery:
    """Declarative document filter understood by every store adapter.

    Unset fields do not constrain the match. List fields match when any of
    their values matches. `any_of` holds alternative sub-queries of which at
    least one must match, on top of this query's own constraints.
    """

    tenant_id: str | None = None
    ids: tuple[str, ...] = ()
    is_chunk: bool | None = None
    parent_id: str | None = None
    assigned_email: str | None = None
    title_contains_any: tuple[str, ...] = ()
    content_contains_any: tuple[str, ...] = ()
    tags_any: tuple[str, ...] = ()
    content_type: str | None = None
    exclude_content_types: tuple[str, ...] = ()
    created_from: datetime | None = None
    created_to: datetime | None = None
    any_of: tuple["DocumentQuery", ...] = ()

    def matches(self, document: Document) -> bool:
        if self.tenant_id is not None and document.tenant_id != self.tenant_id:
            return False
        if self.ids and document.id not in self.ids:
            return False
        if self.is_chunk is not None and document.is_chunk != self.is_chunk:
            return False
        if self.parent_id is not None and document.parent_id != self.parent_id:
            return False
        if self.assigned_email is not None and not document.is_assigned(self.assigned_email):
            return False
        if self.title_contains_any and not _contains_any(document.title, self.title_contains_any):
            return False
        if self.content_contains_any and not _contains_any(
            document.content, self.content_contains_any
        ):
            return False
        if self.tags_any:
            wanted = {tag.lower() for tag in self.tags_any}
            if not any(tag.lower() in wanted for tag in document.tags):
                return False
        if self.content_type is not None and document.content_type != self.content_type:
            return False
        if self.exclude_content_types and document.content_type in self.exclude_content_types:
            return False
        if self.created_from is not None or self.created_to is not None:
            if document.created_at is None:
                return False
            if self.created_from is not None and document.created_at < self.created_from:
                return False
            if self.created_to is not None and document.created_at > self.created_to:
                return False
        if self.any_of and not any(option.matches(document) for option in self.any_of):
            return False
        return True


class DocumentStore(Protocol):
    """Minimal document store contract consumed by the core.

    Adapters should raise `StoreError` when the backend is unavailable; the
    retriever skips a tier on any adapter failure, and the API maps
    `StoreError` to 503.
    """

    def find(self, query: DocumentQuery, *, limit: int | None = None) -> list[Document]:
        """Return matching documents in insertion order."""

    def find_one(self, query: DocumentQuery) -> Document | None:
        """Return the first matching document, if any."""

    def insert(self, document: Document) -> Document:
        """Insert a document, assigning an id when it has none."""

    def update(self, doc_id: str, patch: dict[str, Any], *, upsert: bool = False) -> Document | None:
        """Apply `patch` to a document; create it when `upsert` is set."""

    def delete(self, query: DocumentQuery) -> int:
        """Delete matching documents and return how many were removed."""

    def vector_search(
        self,
        field_path: str,
        query_vector: list[float],
        candidate_count: int,
        limit: int,
        query: DocumentQuery | None = None,
    ) -> list[ScoredDocument]:
        """Approximate nearest-neighbour search over stored embeddings."""


class InMemoryDocumentStore:
    """Deterministic document store used for tests and single-process deployments.

    Similarity scores follow the managed vector index convention for cosine
    similarity, `(1 + cosine) / 2`, so scores fall in `[0, 1]` regardless of the
    backing store.
    """

    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}

    def find(self, query: DocumentQuery, *, limit: int | None = None) -> list[Document]:
        matches = [replace(doc) for doc in self._documents.values() if query.matches(doc)]
        return matches if limit is None else matches[: max(0, limit)]

    def find_one(self, query: DocumentQuery) -> Document | None:
        found = self.find(query, limit=1)
        return found[0] if found else None

    def insert(self, document: Document) -> Document:
        now = datetime.now(timezone.utc)
        stored = replace(
            document,
            id=document.id or uuid.uuid4().hex,
            created_at=document.created_at or now,
            updated_at=document.updated_at or now,
        )
        if stored.id in self._documents:
            raise ValueError(f"Duplicate document id: {stored.id}")
        self._documents[stored.id] = stored
        return replace(stored)

    def update(self, doc_id: str, patch: dict[str, Any], *, upsert: bool = False) -> Document | None:
        unknown = set(patch) - _DOCUMENT_FIELDS
        if unknown:
            raise ValueError(f"Unknown document fields: {sorted(unknown)}")

        current = self._documents.get(doc_id)
        if current is None:
            if not upsert:
                return None
            return self.insert(Document(**{**patch, "id": doc_id}))

        updated = replace(current, **{**patch, "id": doc_id})
        self._documents[doc_id] = updated
        return replace(updated)

    def delete(self, query: DocumentQuery) -> int:
        doomed = [doc_id for doc_id, doc in self._documents.items() if query.matches(doc)]
        for doc_id in doomed:
            del self._documents[doc_id]
        return len(doomed)

    def vector_search(
        self,
        field_path: str,
        query_vector: list[float],
        candidate_count: int,
        limit: int,
        query: DocumentQuery | None = None,
    ) -> list[ScoredDocument]:
        if field_path != "embedding":
            raise ValueError(f"Unsupported vector field: {field_path}")

        candidates = [
            doc
            for doc in self._documents.values()
            if doc.embedding is not None and (query is None or query.matches(doc))
        ]
        ranked = sorted(
            (
                ScoredDocument(
                    document=replace(doc),
                    score=(1.0 + _cosine_similarity(query_vector, doc.embedding or [])) / 2.0,
                )
                for doc in candidates
            ),
            key=lambda item: item.score,
            reverse=True,
        )
        return ranked[: max(0, candidate_count)][: max(0, limit)]

    def clear(self) -> None:
        self._documents.clear()

    def __len__(self) -> int:
        return len(self._documents)


def _contains_any(text: str, needles: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(needle.lower() in lowered for needle in needles if needle)


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
