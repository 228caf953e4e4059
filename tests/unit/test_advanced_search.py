from datetime import datetime, timedelta, timezone

import pytest

from process_copilot.config import AdvancedSearchConfig, ChunkingConfig
from process_copilot.ingest.pipeline import DocumentIndexer
from process_copilot.retrieval.advanced import AdvancedSearch, DateRange, SearchOptions
from process_copilot.types import Document

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _search(store, embedder) -> AdvancedSearch:
    return AdvancedSearch(store, embedder, clock=lambda: NOW)


def _index(indexer, title: str, content: str, **fields) -> Document:
    return indexer.index(Document(title=title, content=content, tenant_id="t1", **fields))


def test_min_score_filters_and_composite_score_ranks(store, embedder, indexer) -> None:
    _index(indexer, "Contract review", "contract review", created_at=NOW - timedelta(days=90))
    recent = _index(
        indexer, "Contract review", "contract review", tags=["contract"], created_at=NOW - timedelta(days=2)
    )
    _index(indexer, "Garden", "tulips daffodils roses", created_at=NOW)

    results = _search(store, embedder).search(
        "contract review", "t1", None, "admin", SearchOptions(min_score=0.9)
    )

    assert len(results) == 2
    assert results[0].id == recent.id
    assert results[0].relevance_score == pytest.approx(1.0)
    assert results[0].composite_score == pytest.approx(1.0 * 1.3 * 1.1 * 1.1)
    assert results[1].composite_score == pytest.approx(1.3)


def test_filters_by_tags_type_and_date_range(store, embedder, indexer) -> None:
    _index(indexer, "Refund flow", "refund customer", tags=["support"], content_type="flow",
           created_at=NOW - timedelta(days=1))
    sop = _index(indexer, "Refund policy", "refund customer", tags=["support"], content_type="sop",
                 created_at=NOW - timedelta(days=1))
    _index(indexer, "Refund archive", "refund customer", tags=["support"], content_type="sop",
           created_at=NOW - timedelta(days=400))

    options = SearchOptions(
        tags=["support"],
        content_type="sop",
        date_range=DateRange(start=NOW - timedelta(days=30), end=NOW),
        min_score=0.0,
    )
    results = _search(store, embedder).search("refund customer", "t1", None, "admin", options)

    assert [r.id for r in results] == [sop.id]


def test_chunks_are_searchable_on_request_with_part_suffix_removed(store, embedder) -> None:
    indexer = DocumentIndexer(store, embedder, config=ChunkingConfig(max_chunk_size=200))
    paragraph = "Escalate the incident to the on call engineer within fifteen minutes."
    indexer.index(Document(title="Incident", content="\n\n".join([paragraph] * 4), tenant_id="t1"))
    search = _search(store, embedder)

    assert search.search("escalate incident", "t1", None, "admin", SearchOptions(min_score=0.0)) == []

    results = search.search(
        "escalate incident", "t1", None, "admin", SearchOptions(min_score=0.0, include_chunks=True)
    )
    assert results
    assert {r.title for r in results} == {"Incident"}


def test_limit_applies_after_ranking(store, embedder, indexer) -> None:
    for index in range(5):
        _index(indexer, f"Checklist {index}", "launch checklist", created_at=NOW)
    search = AdvancedSearch(store, embedder, AdvancedSearchConfig(default_limit=2), clock=lambda: NOW)

    assert len(search.search("launch checklist", "t1", None, "admin", SearchOptions(min_score=0.0))) == 2
