import pytest

from process_copilot.config import CacheConfig
from process_copilot.ingest.embedder import CachedEmbedder
from process_copilot.ingest.pipeline import DocumentIndexer
from process_copilot.retrieval.retriever import HybridRetriever
from process_copilot.store.documents import InMemoryDocumentStore
from process_copilot.types import Assignment, Document

from fakes import CountingEmbeddingProvider


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def embedding_provider() -> CountingEmbeddingProvider:
    return CountingEmbeddingProvider()


@pytest.fixture
def embedder(embedding_provider: CountingEmbeddingProvider) -> CachedEmbedder:
    return CachedEmbedder(embedding_provider, CacheConfig())


@pytest.fixture
def indexer(store: InMemoryDocumentStore, embedder: CachedEmbedder) -> DocumentIndexer:
    return DocumentIndexer(store, embedder)


@pytest.fixture
def retriever(store: InMemoryDocumentStore, embedder: CachedEmbedder) -> HybridRetriever:
    return HybridRetriever(store, embedder)


@pytest.fixture
def onboarding_doc(indexer: DocumentIndexer) -> Document:
    return indexer.index(
        Document(
            title="Customer Onboarding Process",
            content=(
                "<h1>Customer Onboarding Process</h1>"
                "<p>Verify the signed contract in the CRM before onboarding starts.</p>"
                "<ol><li>Send the welcome email.</li><li>Create the customer account.</li></ol>"
            ),
            tenant_id="tenant-a",
            tags=["sales", "onboarding"],
            assigned_to=[Assignment(email="ana@example.com", role="editor")],
        )
    )
