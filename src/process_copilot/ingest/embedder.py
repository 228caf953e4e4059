"""Embedding providers and the caching embedder used by ingest and retrieval."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

from process_copilot.agent.retry import RetryPolicy
from process_copilot.config import CacheConfig
from process_copilot.errors import ProviderError
from process_copilot.ingest.parser import strip_markup
from process_copilot.obs.tracing import profile
from process_copilot.store.cache import TTLCache

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """External service turning text into a fixed-length vector."""

    dimension: int

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Embed one text."""


class HashingEmbeddingProvider(EmbeddingProvider):
    """Deterministic sparse-like embedding without external model calls.

    Used for tests and offline deployments. In production, use
    `OpenAIEmbeddingProvider` or another hosted model.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings through the LangChain integration."""

    def __init__(
        self,
        *,
        model: str = "text-embedding-3-small",
        dimension: int = 1536,
        retry: RetryPolicy | None = None,
        client: Any | None = None,
    ) -> None:
        if client is None:
            from langchain_openai import OpenAIEmbeddings

            client = OpenAIEmbeddings(model=model, dimensions=dimension)
        self._client = client
        self.dimension = dimension
        self._retry = retry or RetryPolicy()

    def embed(self, text: str) -> list[float]:
        return self._retry.call(lambda: self._embed_once(text), description="embedding")

    def _embed_once(self, text: str) -> list[float]:
        try:
            vector = self._client.embed_query(text)
        except Exception as exc:
            raise ProviderError(f"embedding request failed: {exc}", provider="openai") from exc
        if len(vector) != self.dimension:
            raise ProviderError(
                f"embedding dimension mismatch: expected {self.dimension}, got {len(vector)}",
                provider="openai",
            )
        return list(vector)


class CachedEmbedder:
    """Embeds plain text through a provider, memoising results.

    Markup is stripped before the provider sees the text. The cache key is the
    lowercased, trimmed input, so cosmetic case differences share one vector.
    Provider failures propagate as `ProviderError`, whatever the adapter
    raised: embedding is never best-effort.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        config: CacheConfig | None = None,
        *,
        cache: TTLCache[list[float]] | None = None,
    ) -> None:
        self.provider = provider
        self.config = config or CacheConfig()
        self.cache = cache or TTLCache(
            ttl_seconds=self.config.embedding_ttl_seconds,
            max_entries=self.config.embedding_max_entries,
        )

    def embed(self, text: str) -> list[float]:
        key = text.lower().strip()
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Embedding cache hit for: {text[:50]!r}")
            return cached

        with profile("embed"):
            try:
                vector = self.provider.embed(strip_markup(text))
            except ProviderError:
                raise
            except Exception as exc:
                raise ProviderError(
                    f"embedding failed: {exc}", provider=type(self.provider).__name__
                ) from exc
        self.cache.set(key, vector)
        return vector
