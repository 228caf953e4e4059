"""Grounded answer generation, synchronous and streaming."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

from process_copilot.agent.prompts import answer_system_prompt, build_context
from process_copilot.agent.providers import CompletionProvider
from process_copilot.config import GenerationConfig, RetrievalConfig
from process_copilot.obs.tracing import profile
from process_copilot.retrieval.retriever import HybridRetriever, validate_request
from process_copilot.types import ChatTurn, Document, SearchResult, Source

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Answer:
    text: str
    sources: list[Source] = field(default_factory=list)


class AnswerStream:
    """Tokens of a streamed answer plus the sources known before streaming.

    Iterate to receive tokens; `text` holds everything relayed so far. Closing
    the stream, or abandoning it when a client disconnects, closes the provider
    stream as well.
    """

    def __init__(self, sources: list[Source], tokens: Iterator[str]) -> None:
        self.sources = sources
        self._tokens = tokens
        self._parts: list[str] = []

    def __iter__(self) -> Iterator[str]:
        try:
            for token in self._tokens:
                self._parts.append(token)
                yield token
        finally:
            self.close()

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def close(self) -> None:
        close = getattr(self._tokens, "close", None)
        if callable(close):
            close()


class AnswerGenerator:
    """Answers a question strictly from retrieved process documents.

    Retrieval runs first; when it finds nothing a broader literal lookup is
    tried once. Whatever context results is handed to the completion provider
    together with the trimmed conversation history. Provider failures are not
    absorbed here: the caller sees the `ProviderError`.
    """

    def __init__(
        self,
        retriever: HybridRetriever,
        provider: CompletionProvider,
        config: GenerationConfig | None = None,
        retrieval_config: RetrievalConfig | None = None,
    ) -> None:
        self._retriever = retriever
        self._provider = provider
        self.config = config or GenerationConfig()
        self._retrieval_config = retrieval_config or retriever.config

    def answer(
        self,
        query: str,
        tenant_id: str,
        user_id: str | None,
        role: str | None,
        history: Sequence[ChatTurn] = (),
    ) -> Answer:
        system_prompt, messages, sources = self._prepare(query, tenant_id, user_id, role, history)
        with profile("generate"):
            text = self._provider.complete(system_prompt, messages)
        return Answer(text=text, sources=sources)

    def stream_answer(
        self,
        query: str,
        tenant_id: str,
        user_id: str | None,
        role: str | None,
        history: Sequence[ChatTurn] = (),
    ) -> AnswerStream:
        system_prompt, messages, sources = self._prepare(query, tenant_id, user_id, role, history)
        return AnswerStream(sources, self._provider.stream(system_prompt, messages))

    def trim_history(self, history: Sequence[ChatTurn]) -> list[ChatTurn]:
        limit = self.config.max_history_messages
        if limit <= 0:
            return []
        return list(history)[-limit:]

    def _prepare(
        self,
        query: str,
        tenant_id: str,
        user_id: str | None,
        role: str | None,
        history: Sequence[ChatTurn],
    ) -> tuple[str, list[ChatTurn], list[Source]]:
        validate_request(query, tenant_id)
        results = self._retriever.search(query, tenant_id, user_id, role)
        context_documents: list[SearchResult | Document] = list(results)
        if results:
            sources = [self._source(item.id, item, item.relevance_score) for item in results]
        else:
            fallback = self._retriever.fallback_search(query, tenant_id, user_id, role)
            if fallback:
                logger.info(f"Using {len(fallback)} fallback documents for {query!r}")
            else:
                logger.info(f"No documents found for {query!r}")
            context_documents = list(fallback)
            sources = [self._source(doc.id or "", doc, 0.0) for doc in fallback]

        system_prompt = answer_system_prompt(build_context(context_documents))
        messages = [*self.trim_history(history), ChatTurn(role="user", content=query)]
        return system_prompt, messages, sources

    def _source(self, doc_id: str, item: SearchResult | Document, score: float) -> Source:
        return Source(
            id=doc_id,
            title=item.title,
            content=item.content[: self._retrieval_config.preview_length],
            tags=list(item.tags),
            relevance_score=score,
        )
