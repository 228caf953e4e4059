"""Filtered semantic search with composite re-scoring."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from process_copilot.config import AdvancedSearchConfig, RetrievalConfig
from process_copilot.ingest.embedder import CachedEmbedder
from process_copilot.obs.tracing import profile
from process_copilot.retrieval.retriever import validate_request, visible_documents
from process_copilot.store.documents import DocumentStore
from process_copilot.types import Document

logger = logging.getLogger(__name__)

_PART_SUFFIX = re.compile(r" \(Part \d+/\d+\)$")


@dataclass(slots=True)
class DateRange:
    start: datetime
    end: datetime


@dataclass(slots=True)
class SearchOptions:
    """Optional filters of an advanced search."""

    limit: int | None = None
    tags: list[str] = field(default_factory=list)
    date_range: DateRange | None = None
    content_type: str | None = None
    min_score: float | None = None
    include_chunks: bool = False


@dataclass(slots=True)
class AdvancedResult:
    id: str
    title: str
    content: str
    tags: list[str]
    content_type: str | None
    created_at: datetime | None
    relevance_score: float
    composite_score: float


class AdvancedSearch:
    """Vector search with metadata filters, ranked by a composite score.

    Hits below `min_score` similarity are dropped; the rest are boosted for
    query words found in the title, tags matching the query and recency.
    Unlike the hybrid retriever this search does not degrade: provider and
    store failures propagate to the caller.
    """

    def __init__(
        self,
        store: DocumentStore,
        embedder: CachedEmbedder,
        config: AdvancedSearchConfig | None = None,
        retrieval_config: RetrievalConfig | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.config = config or AdvancedSearchConfig()
        self._retrieval_config = retrieval_config or RetrievalConfig()
        self._clock = clock

    def search(
        self,
        query: str,
        tenant_id: str,
        user_id: str | None,
        role: str | None,
        options: SearchOptions | None = None,
    ) -> list[AdvancedResult]:
        validate_request(query, tenant_id)
        options = options or SearchOptions()
        limit = options.limit or self.config.default_limit
        min_score = self.config.default_min_score if options.min_score is None else options.min_score

        constraints: dict[str, object] = {}
        if not options.include_chunks:
            constraints["is_chunk"] = False
        if options.tags:
            constraints["tags_any"] = tuple(options.tags)
        if options.content_type:
            constraints["content_type"] = options.content_type
        if options.date_range is not None:
            constraints["created_from"] = options.date_range.start
            constraints["created_to"] = options.date_range.end

        with profile("advanced_search"):
            query_vector = self._embedder.embed(query)
            hits = self._store.vector_search(
                "embedding",
                query_vector,
                candidate_count=limit * self.config.candidate_factor,
                limit=limit * self.config.hit_factor,
                query=visible_documents(
                    tenant_id, user_id, role, self._retrieval_config, **constraints
                ),
            )
            now = self._clock()
            results = [
                self._to_result(hit.document, hit.score, query, now)
                for hit in hits
                if hit.score >= min_score
            ]
            results.sort(key=lambda item: item.composite_score, reverse=True)

        logger.debug(f"Advanced search kept {len(results)} of {len(hits)} hits")
        return results[:limit]

    def composite_score(self, document: Document, score: float, query: str, now: datetime) -> float:
        query_words = query.lower().split()
        title_words = document.title.lower().split()

        title_matches = sum(
            1 for word in query_words if any(word in title_word for title_word in title_words)
        )
        if title_matches:
            score *= 1 + title_matches * self.config.title_bonus

        tag_matches = sum(
            1 for tag in document.tags if any(word in tag.lower() for word in query_words)
        )
        if tag_matches:
            score *= 1 + tag_matches * self.config.tag_bonus

        if document.created_at is not None:
            created_at = document.created_at
            if created_at.tzinfo is None:
                created_at = created_at.replace(tzinfo=timezone.utc)
            age_days = (now - created_at).total_seconds() / 86400
            if age_days < self.config.recency_days:
                score *= 1 + self.config.recency_bonus
        return score

    def _to_result(
        self, document: Document, score: float, query: str, now: datetime
    ) -> AdvancedResult:
        return AdvancedResult(
            id=document.id or "",
            title=_PART_SUFFIX.sub("", document.title),
            content=document.content,
            tags=list(document.tags),
            content_type=document.content_type,
            created_at=document.created_at,
            relevance_score=score,
            composite_score=self.composite_score(document, score, query, now),
        )
