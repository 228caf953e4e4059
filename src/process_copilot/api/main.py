"""FastAPI entrypoint for indexing, search and chat endpoints."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from process_copilot.agent.answer import AnswerGenerator
from process_copilot.agent.fallback import ExtractiveCompletionProvider
from process_copilot.agent.providers import CompletionProvider, LangChainCompletionProvider
from process_copilot.agent.retry import RetryPolicy
from process_copilot.config import CopilotConfig
from process_copilot.errors import CopilotError, InvalidRequestError, ProviderError, StoreError
from process_copilot.guided.decomposer import ProcessDecomposer
from process_copilot.guided.engine import ChatReply, GuidedEngine
from process_copilot.guided.intent import IntentDetector
from process_copilot.guided.session import Progress, SessionRegistry
from process_copilot.ingest.embedder import (
    CachedEmbedder,
    EmbeddingProvider,
    HashingEmbeddingProvider,
    OpenAIEmbeddingProvider,
)
from process_copilot.ingest.pipeline import DocumentIndexer
from process_copilot.obs.logging import configure_logging
from process_copilot.retrieval.advanced import AdvancedSearch, DateRange, SearchOptions
from process_copilot.retrieval.retriever import HybridRetriever
from process_copilot.store.chats import ChatRecord, ChatStore, InMemoryChatStore
from process_copilot.store.documents import DocumentStore, InMemoryDocumentStore
from process_copilot.types import Assignment, ChatTurn, Document, ProcessStep, Source

logger = logging.getLogger(__name__)


def _create_llm() -> Any:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"), temperature=0)


def _create_embedding_provider(retry: RetryPolicy) -> EmbeddingProvider:
    if not os.getenv("OPENAI_API_KEY"):
        return HashingEmbeddingProvider()
    return OpenAIEmbeddingProvider(
        model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
        retry=retry,
    )


@dataclass(slots=True)
class CopilotServices:
    """Every long-lived component of the service, built once at start-up."""

    config: CopilotConfig
    store: DocumentStore
    chats: ChatStore
    embedder: CachedEmbedder
    indexer: DocumentIndexer
    retriever: HybridRetriever
    advanced: AdvancedSearch
    provider: CompletionProvider
    answers: AnswerGenerator
    detector: IntentDetector
    engine: GuidedEngine
    mode: str

    def purge_caches(self) -> int:
        return self.embedder.cache.purge_expired() + self.detector.cache.purge_expired()

    def clear(self) -> None:
        """Reset all in-memory state."""
        for resettable in (self.store, self.chats):
            clear = getattr(resettable, "clear", None)
            if callable(clear):
                clear()
        self.embedder.cache.clear()
        self.detector.cache.clear()
        self.engine.registry.clear()


def build_services(
    config: CopilotConfig | None = None,
    *,
    store: DocumentStore | None = None,
    chats: ChatStore | None = None,
    embedding_provider: EmbeddingProvider | None = None,
    completion_provider: CompletionProvider | None = None,
) -> CopilotServices:
    config = config or CopilotConfig()
    retry = RetryPolicy(config.retry)
    store = store or InMemoryDocumentStore()
    chats = chats or InMemoryChatStore()

    mode = "custom"
    if completion_provider is None:
        llm = _create_llm()
        if llm is not None:
            completion_provider = LangChainCompletionProvider(llm, retry)
            mode = "langchain"
        else:
            completion_provider = ExtractiveCompletionProvider()
            mode = "extractive"

    embedder = CachedEmbedder(embedding_provider or _create_embedding_provider(retry), config.cache)
    retriever = HybridRetriever(store, embedder, config.retrieval)
    answers = AnswerGenerator(retriever, completion_provider, config.generation, config.retrieval)
    detector = IntentDetector(store, completion_provider, config.guided, config.cache)
    engine = GuidedEngine(
        SessionRegistry(),
        detector,
        ProcessDecomposer(completion_provider, config.guided),
        completion_provider,
        answers,
        config.guided,
        config.retrieval,
    )
    return CopilotServices(
        config=config,
        store=store,
        chats=chats,
        embedder=embedder,
        indexer=DocumentIndexer(store, embedder, config=config.chunking),
        retriever=retriever,
        advanced=AdvancedSearch(store, embedder, config.advanced_search, config.retrieval),
        provider=completion_provider,
        answers=answers,
        detector=detector,
        engine=engine,
        mode=mode,
    )


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AssignmentModel(_CamelModel):
    email: str
    role: str = "viewer"


class IndexRequest(_CamelModel):
    title: str = Field(min_length=1)
    content: str
    tenant_id: str = Field(min_length=1)
    id: str | None = None
    tags: list[str] = Field(default_factory=list)
    assigned_to: list[AssignmentModel] = Field(default_factory=list)
    content_type: str | None = None
    version: int = Field(default=1, ge=1)


class SearchRequest(_CamelModel):
    query: str = ""
    tenant_id: str = ""
    user_id: str | None = None
    role: str | None = None
    limit: int | None = Field(default=None, ge=1, le=50)


class DateRangeModel(_CamelModel):
    start: datetime
    end: datetime


class AdvancedSearchRequest(SearchRequest):
    tags: list[str] = Field(default_factory=list)
    date_range: DateRangeModel | None = None
    content_type: str | None = None
    min_score: float | None = Field(default=None, ge=0.0)
    include_chunks: bool = False


class HistoryEntry(_CamelModel):
    message: str
    is_user: bool


class ChatRequest(_CamelModel):
    query: str = ""
    tenant_id: str = ""
    user_id: str | None = None
    role: str | None = None
    history: list[HistoryEntry] = Field(default_factory=list)
    use_guided_mode: bool = True
    use_streaming: bool = False

    def turns(self) -> list[ChatTurn]:
        return [
            ChatTurn(role="user" if entry.is_user else "assistant", content=entry.message)
            for entry in self.history
        ]


def _require(request: SearchRequest | ChatRequest, *, user: bool = False) -> None:
    if not request.query.strip() or not request.tenant_id:
        raise InvalidRequestError("query and tenantId are required")
    if user and not request.user_id:
        raise InvalidRequestError("userId is required")


def _source_payload(source: Source) -> dict[str, Any]:
    return {
        "id": source.id,
        "title": source.title,
        "content": source.content,
        "tags": source.tags,
        "relevanceScore": source.relevance_score,
    }


def _progress_payload(progress: Progress | None) -> dict[str, Any] | None:
    if progress is None:
        return None
    return {
        "currentStep": progress.current_step,
        "totalSteps": progress.total_steps,
        "completedSteps": progress.completed_steps,
        "progressPercentage": progress.progress_percentage,
    }


def _step_payload(step: ProcessStep | None) -> dict[str, Any] | None:
    return step.as_dict() if step is not None else None


def _reply_payload(reply: ChatReply) -> dict[str, Any]:
    return {
        "response": reply.response,
        "sources": [_source_payload(source) for source in reply.sources],
        "guidedMode": reply.guided_mode,
        "progress": _progress_payload(reply.progress),
        "currentStep": _step_payload(reply.current_step),
        "processTitle": reply.process_title or "",
        "stepCompleted": bool(reply.step_completed),
        "completed": bool(reply.completed),
    }


def _event(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def _every(interval: float, action: Callable[[], int], label: str) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            removed = action()
        except Exception:
            logger.exception(f"{label} failed")
            continue
        if removed:
            logger.info(f"{label} removed {removed} entries")


def create_app(services: CopilotServices | None = None) -> FastAPI:
    configure_logging(os.getenv("COPILOT_LOG_LEVEL", "INFO"))
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        tasks = [
            asyncio.create_task(
                _every(
                    services.config.guided.sweep_interval_seconds,
                    services.engine.sweep,
                    "Session sweep",
                )
            ),
            asyncio.create_task(
                _every(
                    services.config.cache.cleanup_interval_seconds,
                    services.purge_caches,
                    "Cache purge",
                )
            ),
        ]
        try:
            yield
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    app = FastAPI(title="Process Copilot", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    def _error_handler(status_code: int) -> Callable[[Request, Exception], Awaitable[JSONResponse]]:
        async def handle(_: Request, exc: Exception) -> JSONResponse:
            error = exc if isinstance(exc, CopilotError) else CopilotError(str(exc))
            if status_code >= 500:
                logger.error(f"{error.code}: {error.message}")
            return JSONResponse(
                status_code=status_code,
                content={"error": error.message, "code": error.code},
            )

        return handle

    app.add_exception_handler(InvalidRequestError, _error_handler(400))
    app.add_exception_handler(ProviderError, _error_handler(502))
    app.add_exception_handler(StoreError, _error_handler(503))

    def _persist(request: ChatRequest, reply: ChatReply | None, text: str, sources: list[Source]) -> None:
        user_turn = ChatRecord(
            type="user",
            message=request.query,
            tenant_id=request.tenant_id,
            user_id=request.user_id,
        )
        extra: dict[str, Any] = {"streaming": True}
        if reply is not None:
            payload = _reply_payload(reply)
            extra = {key: payload[key] for key in payload if key not in ("response", "sources")}
        ai_turn = ChatRecord(
            type="ai",
            message=text,
            tenant_id=request.tenant_id,
            user_id=request.user_id,
            sources=[_source_payload(source) for source in sources],
            extra=extra,
        )
        services.chats.append([user_turn, ai_turn])

    def _stream(request: ChatRequest) -> StreamingResponse:
        stream = services.answers.stream_answer(
            request.query, request.tenant_id, request.user_id, request.role, request.turns()
        )

        def generate() -> Iterator[str]:
            try:
                for token in stream:
                    yield _event({"chunk": token})
                yield _event(
                    {"sources": [_source_payload(s) for s in stream.sources], "done": True}
                )
            except CopilotError as exc:
                logger.error(f"Streaming failed: {exc.message}")
                yield _event({"error": exc.message, "code": exc.code, "done": True})
                return
            finally:
                stream.close()
            _persist(request, None, stream.text, stream.sources)

        return StreamingResponse(
            generate(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "llm_configured": services.mode == "langchain",
            "completion_mode": services.mode,
            "active_sessions": len(services.engine.registry),
        }

    @app.post("/index")
    def index(request: IndexRequest) -> dict[str, Any]:
        stored = services.indexer.index(
            Document(
                id=request.id,
                title=request.title,
                content=request.content,
                tenant_id=request.tenant_id,
                tags=list(request.tags),
                assigned_to=[Assignment(email=a.email, role=a.role) for a in request.assigned_to],
                content_type=request.content_type,
                version=request.version,
            )
        )
        return {
            "id": stored.id,
            "isParent": stored.is_parent,
            "chunkCount": stored.chunk_count or 0,
        }

    @app.post("/search")
    def search(request: SearchRequest) -> dict[str, Any]:
        _require(request)
        results = services.retriever.search(
            request.query, request.tenant_id, request.user_id, request.role, request.limit
        )
        return {
            "items": [
                {
                    "id": result.id,
                    "title": result.title,
                    "content": result.content,
                    "tags": result.tags,
                    "relevanceScore": result.relevance_score,
                    "searchTier": result.search_tier.value,
                    "createdAt": result.created_at.isoformat() if result.created_at else None,
                }
                for result in results
            ]
        }

    @app.post("/advanced-search")
    def advanced_search(request: AdvancedSearchRequest) -> dict[str, Any]:
        _require(request)
        date_range = None
        if request.date_range is not None:
            date_range = DateRange(
                start=_as_utc(request.date_range.start), end=_as_utc(request.date_range.end)
            )
        results = services.advanced.search(
            request.query,
            request.tenant_id,
            request.user_id,
            request.role,
            SearchOptions(
                limit=request.limit,
                tags=list(request.tags),
                date_range=date_range,
                content_type=request.content_type,
                min_score=request.min_score,
                include_chunks=request.include_chunks,
            ),
        )
        return {
            "items": [
                {
                    "id": result.id,
                    "title": result.title,
                    "content": result.content,
                    "tags": result.tags,
                    "type": result.content_type,
                    "createdAt": result.created_at.isoformat() if result.created_at else None,
                    "relevanceScore": result.relevance_score,
                    "compositeScore": result.composite_score,
                }
                for result in results
            ]
        }

    @app.post("/chat", response_model=None)
    def chat(request: ChatRequest) -> dict[str, Any] | StreamingResponse:
        _require(request)
        if request.use_streaming:
            return _stream(request)

        if request.use_guided_mode and request.user_id:
            reply = services.engine.route(
                request.query, request.tenant_id, request.user_id, request.role, request.turns()
            )
        else:
            answer = services.answers.answer(
                request.query, request.tenant_id, request.user_id, request.role, request.turns()
            )
            reply = ChatReply(response=answer.text, sources=answer.sources)
        _persist(request, reply, reply.response, reply.sources)
        return _reply_payload(reply)

    @app.post("/chat/stream")
    def chat_stream(request: ChatRequest) -> StreamingResponse:
        _require(request, user=True)
        return _stream(request)

    @app.post("/chat/guided")
    def chat_guided(request: ChatRequest) -> dict[str, Any]:
        _require(request, user=True)
        user_id = request.user_id
        if user_id is None:
            raise InvalidRequestError("userId is required")
        reply = services.engine.route(
            request.query, request.tenant_id, user_id, request.role, request.turns()
        )
        _persist(request, reply, reply.response, reply.sources)
        return _reply_payload(reply)

    @app.get("/chats")
    def chats(
        tenant_id: str = Query(alias="tenantId"),
        user_id: str = Query(alias="userId"),
    ) -> dict[str, Any]:
        records = services.chats.list_for_user(tenant_id, user_id)
        return {
            "items": [
                {
                    "type": record.type,
                    "message": record.message,
                    "sources": record.sources,
                    "createdAt": record.created_at.isoformat(),
                    **record.extra,
                }
                for record in records
            ]
        }

    return app


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run(
        "process_copilot.api.main:app",
        host=os.getenv("COPILOT_HOST", "127.0.0.1"),
        port=int(os.getenv("COPILOT_PORT", "8000")),
    )
