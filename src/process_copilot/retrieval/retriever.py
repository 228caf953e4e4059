"""Three-tier hybrid retriever over the document store."""

from __future__ import annotations

import logging
from collections.abc import Callable

from process_copilot.config import RetrievalConfig
from process_copilot.errors import InvalidRequestError, ProviderError, RetrievalTierError, StoreError
from process_copilot.ingest.embedder import CachedEmbedder
from process_copilot.obs.tracing import profile
from process_copilot.retrieval.fusion import ResultFusion, query_keywords
from process_copilot.store.documents import DocumentQuery, DocumentStore
from process_copilot.types import Document, ScoredDocument, SearchResult, SearchTier

logger = logging.getLogger(__name__)


def validate_request(query: str | None, tenant_id: str | None) -> None:
    """Reject a request that lacks a query or tenant before any provider call."""
    if not query or not query.strip():
        raise InvalidRequestError("query is required")
    if not tenant_id:
        raise InvalidRequestError("tenant_id is required")


def is_privileged(role: str | None, config: RetrievalConfig | None = None) -> bool:
    privileged = (config or RetrievalConfig()).privileged_roles
    return role is not None and role in privileged


def visible_documents(
    tenant_id: str,
    user_id: str | None,
    role: str | None,
    config: RetrievalConfig | None = None,
    **constraints: object,
) -> DocumentQuery:
    """Base query for the documents a caller may see within a tenant."""
    assigned = None if is_privileged(role, config) else (user_id or "")
    return DocumentQuery(tenant_id=tenant_id, assigned_email=assigned, **constraints)  # type: ignore[arg-type]


class HybridRetriever:
    """Ranks documents with escalating literal and semantic strategies.

    Tiers run in priority order and each runs only while fewer than `limit`
    results have been collected:

    1. exact title: the full query or any keyword appears in the title.
    2. tag: a document tag equals a query keyword.
    3. vector: nearest neighbours of the query embedding, discounted by
       `vector_weight` so semantic hits rank below literal ones.

    A failing tier is logged and skipped; the search itself never fails because
    one index or provider is unavailable.
    """

    def __init__(
        self,
        store: DocumentStore,
        embedder: CachedEmbedder,
        config: RetrievalConfig | None = None,
        fusion: ResultFusion | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.config = config or RetrievalConfig()
        self._fusion = fusion or ResultFusion(self.config)

    def search(
        self,
        query: str,
        tenant_id: str,
        user_id: str | None,
        role: str | None,
        limit: int | None = None,
    ) -> list[SearchResult]:
        validate_request(query, tenant_id)
        final_limit = limit or self.config.default_limit
        keywords = query_keywords(query, self.config.min_keyword_length)
        results: list[SearchResult] = []

        tiers: list[tuple[SearchTier, Callable[[int], list[SearchResult]]]] = [
            (
                SearchTier.EXACT_TITLE,
                lambda remaining: self._exact_title(query, keywords, tenant_id, user_id, role, remaining),
            ),
            (
                SearchTier.TAG,
                lambda remaining: self._tags(keywords, tenant_id, user_id, role, remaining),
            ),
            (
                SearchTier.VECTOR,
                lambda remaining: self._vector(query, tenant_id, user_id, role, remaining),
            ),
        ]

        with profile("search"):
            for tier, run in tiers:
                remaining = final_limit - len(results)
                if remaining <= 0:
                    break
                try:
                    found = run(remaining)
                except (ProviderError, StoreError) as exc:
                    error = RetrievalTierError(tier.value, exc)
                    logger.warning(f"Skipping retrieval tier: {error.message}")
                    continue
                except Exception as exc:
                    error = RetrievalTierError(tier.value, exc)
                    logger.exception(f"Skipping retrieval tier after unexpected error: {error.message}")
                    continue
                logger.debug(f"{tier.value} tier returned {len(found)} results")
                results.extend(found)

            final = self._fusion.fuse(query, results, limit=final_limit)

        for rank, result in enumerate(final, start=1):
            logger.debug(
                f"{rank}. {result.title!r} score={result.relevance_score:.3f} "
                f"tier={result.search_tier.value}"
            )
        return final

    def fallback_search(
        self,
        query: str,
        tenant_id: str,
        user_id: str | None,
        role: str | None,
    ) -> list[Document]:
        """Broader literal lookup used when the ranked search found nothing.

        Matches the first query word anywhere in the title or content, or any
        query keyword among the tags.
        """

        words = query.split()
        if not words:
            return []
        first = words[0]
        keywords = tuple(query_keywords(query, self.config.min_keyword_length))
        options = [
            DocumentQuery(title_contains_any=(first,)),
            DocumentQuery(content_contains_any=(first,)),
        ]
        if keywords:
            options.append(DocumentQuery(tags_any=keywords))
        base = visible_documents(
            tenant_id, user_id, role, self.config, is_chunk=False, any_of=tuple(options)
        )
        return self._store.find(base, limit=self.config.fallback_limit)

    def _exact_title(
        self,
        query: str,
        keywords: list[str],
        tenant_id: str,
        user_id: str | None,
        role: str | None,
        limit: int,
    ) -> list[SearchResult]:
        patterns = tuple(pattern for pattern in [query.strip(), *keywords] if pattern)
        if not patterns:
            return []
        base = visible_documents(
            tenant_id, user_id, role, self.config, is_chunk=False, title_contains_any=patterns
        )
        documents = self._store.find(base, limit=limit)
        return [
            _to_result(doc, self.config.exact_title_score, SearchTier.EXACT_TITLE)
            for doc in documents
        ]

    def _tags(
        self,
        keywords: list[str],
        tenant_id: str,
        user_id: str | None,
        role: str | None,
        limit: int,
    ) -> list[SearchResult]:
        if not keywords:
            return []
        base = visible_documents(
            tenant_id, user_id, role, self.config, is_chunk=False, tags_any=tuple(keywords)
        )
        documents = self._store.find(base, limit=limit)
        return [_to_result(doc, self.config.tag_score, SearchTier.TAG) for doc in documents]

    def _vector(
        self,
        query: str,
        tenant_id: str,
        user_id: str | None,
        role: str | None,
        limit: int,
    ) -> list[SearchResult]:
        query_vector = self._embedder.embed(query)
        hits: list[ScoredDocument] = self._store.vector_search(
            "embedding",
            query_vector,
            candidate_count=limit * self.config.vector_candidate_factor,
            limit=limit,
            query=visible_documents(tenant_id, user_id, role, self.config, is_chunk=False),
        )
        return [
            _to_result(hit.document, hit.score * self.config.vector_weight, SearchTier.VECTOR)
            for hit in hits
        ]


def _to_result(document: Document, score: float, tier: SearchTier) -> SearchResult:
    return SearchResult(
        id=document.id or "",
        title=document.title,
        content=document.content,
        tags=list(document.tags),
        relevance_score=score,
        search_tier=tier,
        created_at=document.created_at,
    )
