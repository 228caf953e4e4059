"""Post-processing applied to merged tier results."""

from __future__ import annotations

from process_copilot.config import RetrievalConfig
from process_copilot.ingest.parser import strip_markup
from process_copilot.types import SearchResult


def query_keywords(query: str, min_length: int = 3) -> list[str]:
    """Lowercased query words of at least `min_length` characters."""
    return [word for word in query.lower().split() if len(word) >= min_length]


class ResultFusion:
    """Merges tier outputs into the final ranking.

    Fusion process:
    1. Deduplicate by normalized title, keeping the first occurrence. Tiers run
       in priority order, so the first occurrence is the strongest tier.
    2. Drop results that share no query keyword with their title or content.
    3. Of the rest, keep only title matches or results scoring above
       `weak_match_threshold`; this is what keeps noisy vector hits out.
    4. Sort by score, descending, and truncate to the limit.
    """

    def __init__(self, config: RetrievalConfig | None = None) -> None:
        self.config = config or RetrievalConfig()

    def fuse(self, query: str, results: list[SearchResult], *, limit: int) -> list[SearchResult]:
        keywords = query_keywords(query, self.config.min_keyword_length)
        unique = self.deduplicate(results)
        relevant = [result for result in unique if self._is_relevant(result, keywords)]
        relevant.sort(key=lambda item: item.relevance_score, reverse=True)
        return relevant[:limit]

    @staticmethod
    def deduplicate(results: list[SearchResult]) -> list[SearchResult]:
        seen: set[str] = set()
        unique: list[SearchResult] = []
        for result in results:
            normalized = result.title.lower().strip()
            if normalized in seen:
                continue
            seen.add(normalized)
            unique.append(result)
        return unique

    def _is_relevant(self, result: SearchResult, keywords: list[str]) -> bool:
        title = result.title.lower()
        content = strip_markup(result.content).lower()
        has_title_match = any(word in title for word in keywords)
        has_keyword_match = has_title_match or any(word in content for word in keywords)
        return has_keyword_match and (
            has_title_match or result.relevance_score > self.config.weak_match_threshold
        )
