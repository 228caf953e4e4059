"""Document indexing: strip -> chunk -> embed -> upsert."""

from __future__ import annotations

import logging
from dataclasses import asdict, replace
from datetime import datetime, timezone

from process_copilot.config import ChunkingConfig
from process_copilot.errors import StoreError
from process_copilot.ingest.chunker import ContentChunker
from process_copilot.ingest.embedder import CachedEmbedder
from process_copilot.ingest.parser import strip_markup
from process_copilot.obs.tracing import profile
from process_copilot.store.documents import DocumentQuery, DocumentStore
from process_copilot.types import Document

logger = logging.getLogger(__name__)


class DocumentIndexer:
    """Persists documents with embeddings, chunking oversized content.

    A document whose plain text fits in one chunk is embedded once and stored
    directly. A larger document becomes a metadata-only parent plus one chunk
    document per fragment, each with its own embedding.

    The delete/insert sequence is not atomic: a failure part way through an
    update can leave a parent with stale or missing chunks. Re-indexing the
    document repairs it.
    """

    def __init__(
        self,
        store: DocumentStore,
        embedder: CachedEmbedder,
        chunker: ContentChunker | None = None,
        config: ChunkingConfig | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.config = config or ChunkingConfig()
        self._chunker = chunker or ContentChunker(self.config)

    def index(self, document: Document) -> Document:
        """Persist `document` and return the stored version with its id."""

        with profile("index"):
            plain_text = strip_markup(document.content)
            chunks = self._chunker.chunk(plain_text, self.config.max_chunk_size)
            if len(chunks) <= 1:
                return self._index_single(document)
            return self._index_chunked(document, chunks)

    def _index_single(self, document: Document) -> Document:
        embedding = self._embedder.embed(document.content)
        now = datetime.now(timezone.utc)
        prepared = replace(
            document,
            embedding=embedding,
            updated_at=now,
            is_parent=False,
            is_chunk=False,
            parent_id=None,
            chunk_index=None,
            chunk_count=None,
        )

        if document.id is None:
            return self._store.insert(replace(prepared, created_at=document.created_at or now))

        removed = self._store.delete(DocumentQuery(parent_id=document.id, is_chunk=True))
        if removed:
            logger.info(f"Removed {removed} stale chunks of {document.id}")
        stored = self._store.update(document.id, _patch(prepared), upsert=True)
        if stored is None:
            raise StoreError(f"Document {document.id} could not be stored")
        return stored

    def _index_chunked(self, document: Document, chunks: list[str]) -> Document:
        logger.info(f"Chunking document {document.title!r} into {len(chunks)} parts")
        embeddings = [self._embedder.embed(chunk) for chunk in chunks]

        now = datetime.now(timezone.utc)
        parent = replace(
            document,
            embedding=None,
            is_parent=True,
            is_chunk=False,
            parent_id=None,
            chunk_index=None,
            chunk_count=len(chunks),
            updated_at=now,
        )

        if document.id is not None:
            self._store.delete(DocumentQuery(parent_id=document.id, is_chunk=True))
            stored_parent = self._store.update(document.id, _patch(parent), upsert=True)
        else:
            stored_parent = self._store.insert(replace(parent, created_at=document.created_at or now))
        if stored_parent is None or stored_parent.id is None:
            raise StoreError(f"Parent document {document.title!r} could not be stored")

        for index, (text, embedding) in enumerate(zip(chunks, embeddings, strict=True)):
            self._store.insert(
                Document(
                    title=f"{document.title} (Part {index + 1}/{len(chunks)})",
                    content=text,
                    tenant_id=document.tenant_id,
                    tags=list(document.tags),
                    assigned_to=list(document.assigned_to),
                    content_type=document.content_type,
                    embedding=embedding,
                    is_chunk=True,
                    parent_id=stored_parent.id,
                    chunk_index=index,
                    created_at=now,
                    updated_at=now,
                )
            )
        return stored_parent


def _patch(document: Document) -> dict[str, object]:
    payload = asdict(document)
    payload.pop("id")
    if payload.get("created_at") is None:
        payload.pop("created_at")
    payload["assigned_to"] = list(document.assigned_to)
    return payload
