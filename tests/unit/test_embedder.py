import pytest

from process_copilot.agent.retry import RetryPolicy
from process_copilot.config import RetryConfig
from process_copilot.errors import ProviderError
from process_copilot.ingest.embedder import CachedEmbedder, EmbeddingProvider, OpenAIEmbeddingProvider

from fakes import CountingEmbeddingProvider


class _FlakyClient:
    def __init__(self, failures: int, dimension: int = 4) -> None:
        self.failures = failures
        self.dimension = dimension
        self.calls = 0

    def embed_query(self, text: str) -> list[float]:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("rate limited")
        return [0.5] * self.dimension


def test_identical_text_is_embedded_once_within_ttl() -> None:
    provider = CountingEmbeddingProvider()
    embedder = CachedEmbedder(provider)

    first = embedder.embed("Customer onboarding")
    second = embedder.embed("  customer ONBOARDING ")

    assert first == second
    assert provider.calls == 1


def test_markup_is_stripped_before_provider_call() -> None:
    provider = CountingEmbeddingProvider()
    CachedEmbedder(provider).embed("<p>Send the <b>welcome</b> email</p>")

    assert provider.texts == ["Send the welcome email"]


def test_provider_failures_propagate_and_are_not_cached() -> None:
    provider = CountingEmbeddingProvider(fail=True)
    embedder = CachedEmbedder(provider)

    with pytest.raises(ProviderError):
        embedder.embed("contract")
    assert len(embedder.cache) == 0


def test_openai_provider_retries_transient_failures() -> None:
    client = _FlakyClient(failures=2)
    retry = RetryPolicy(RetryConfig(max_attempts=3), sleep=lambda _: None)
    provider = OpenAIEmbeddingProvider(dimension=4, retry=retry, client=client)

    assert provider.embed("contract") == [0.5] * 4
    assert client.calls == 3


def test_openai_provider_rejects_wrong_dimension() -> None:
    client = _FlakyClient(failures=0, dimension=3)
    provider = OpenAIEmbeddingProvider(
        dimension=4, retry=RetryPolicy.single_attempt(), client=client
    )

    with pytest.raises(ProviderError, match="dimension"):
        provider.embed("contract")


class _BrokenSdkProvider(EmbeddingProvider):
    dimension = 4

    def embed(self, text: str) -> list[float]:
        raise TimeoutError("read timed out")


def test_unwrapped_provider_errors_surface_as_provider_errors() -> None:
    embedder = CachedEmbedder(_BrokenSdkProvider())

    with pytest.raises(ProviderError, match="read timed out"):
        embedder.embed("refund policy")
    assert len(embedder.cache) == 0
