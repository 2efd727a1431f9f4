"""Unit tests for embedding providers."""

import json
import math

import httpx
import pytest

from src.errors import EmbeddingError, FatalProviderError, TransientProviderError
from src.services.embedder import (
    CachedEmbeddingProvider,
    HashEmbeddingProvider,
    HttpEmbeddingProvider,
)
from src.utils.retry import RetryConfig

NO_WAIT = RetryConfig(max_attempts=2, min_wait=0.0, max_wait=0.0, jitter=False)


def embedding_payload(texts, dimension=3):
    return {
        "data": [
            {"index": i, "embedding": [float(len(text)), 1.0, float(i)][:dimension]}
            for i, text in enumerate(texts)
        ],
        "usage": {"total_tokens": len(texts) * 2},
    }


class RecordingHandler:
    """MockTransport handler replaying queued status codes."""

    def __init__(self, statuses=None, dimension=3):
        self.statuses = list(statuses or [])
        self.dimension = dimension
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        status = self.statuses.pop(0) if self.statuses else 200
        if status != 200:
            return httpx.Response(status, json={"error": {"message": "nope"}})
        return httpx.Response(200, json=embedding_payload(body["input"], self.dimension))


def make_provider(handler, batch_size=2, dimension=3):
    return HttpEmbeddingProvider(
        api_url="https://embeddings.example.com/v1/embeddings",
        api_key="test-key",
        model_name="test-embedding",
        dimension=dimension,
        batch_size=batch_size,
        requests_per_second=1000.0,
        retry_config=NO_WAIT,
        transport=httpx.MockTransport(handler),
    )


class TestHttpEmbeddingProvider:
    """Tests for HttpEmbeddingProvider."""

    def test_embed_batches_in_order(self):
        """Test texts are sent in batches and returned in input order."""
        handler = RecordingHandler()
        provider = make_provider(handler, batch_size=2)

        vectors = provider.embed(["a", "bb", "ccc"])

        assert [v[0] for v in vectors] == [1.0, 2.0, 3.0]
        assert [len(r["input"]) for r in handler.requests] == [2, 1]
        assert handler.requests[0]["model"] == "test-embedding"
        assert provider.get_stats()["texts"] == 3

    def test_embed_empty(self):
        """Test embedding nothing makes no request."""
        handler = RecordingHandler()
        provider = make_provider(handler)

        assert provider.embed([]) == []
        assert handler.requests == []

    def test_rate_limited_request_is_retried(self):
        """Test a 429 is retried and then succeeds."""
        handler = RecordingHandler(statuses=[429])
        provider = make_provider(handler)

        vectors = provider.embed(["hello"])

        assert len(vectors) == 1
        assert len(handler.requests) == 2

    def test_transient_failure_is_transient(self):
        """Test 5xx responses map to TransientProviderError."""
        provider = make_provider(RecordingHandler(statuses=[503]))

        with pytest.raises(TransientProviderError) as exc_info:
            provider._request_batch(["hello"])

        assert exc_info.value.retryable is True
        assert exc_info.value.details["status_code"] == 503

    def test_exhausted_retries_report_failed_positions(self):
        """Test a batch failing every attempt marks its positions."""
        handler = RecordingHandler(statuses=[200, 500, 500])
        provider = make_provider(handler, batch_size=2)

        with pytest.raises(EmbeddingError) as exc_info:
            provider.embed(["a", "b", "c"])

        assert exc_info.value.failed_batch_indices == [2]
        assert exc_info.value.retryable is True
        assert provider.get_stats()["failed_batches"] == 1

    def test_auth_failure_is_fatal(self):
        """Test a 401 is fatal and not retried."""
        handler = RecordingHandler(statuses=[401, 401])
        provider = make_provider(handler)

        with pytest.raises(FatalProviderError):
            provider.embed(["hello"])

        assert len(handler.requests) == 1

    def test_wrong_dimension(self):
        """Test vectors of the wrong length are rejected."""
        provider = make_provider(RecordingHandler(dimension=2), dimension=3)

        with pytest.raises(EmbeddingError) as exc_info:
            provider.embed(["a", "b"])

        assert exc_info.value.failed_batch_indices == [0, 1]

    def test_timeout_is_transient(self):
        """Test a timeout maps to TransientProviderError."""

        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        provider = make_provider(handler)

        with pytest.raises(TransientProviderError):
            provider._request_batch(["hello"])

    def test_timeouts_on_every_attempt_are_retryable(self):
        """Test a batch that timed out on every attempt is reported as retryable."""

        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        provider = make_provider(handler)

        with pytest.raises(EmbeddingError) as exc_info:
            provider.embed_query("where is my order")

        assert exc_info.value.retryable is True
        assert exc_info.value.failed_batch_indices == [0]

    def test_close(self):
        """Test closing drops the client."""
        provider = make_provider(RecordingHandler())
        provider.embed(["a"])

        provider.close()

        assert provider._client is None


class TestHashEmbeddingProvider:
    """Tests for HashEmbeddingProvider."""

    def test_vectors_are_normalized(self):
        """Test vectors have unit length and the configured dimension."""
        provider = HashEmbeddingProvider(dimension=32)
        vector = provider.embed_query("merino wool sweater")

        assert len(vector) == 32
        assert math.isclose(math.sqrt(sum(v * v for v in vector)), 1.0, rel_tol=1e-9)

    def test_deterministic(self):
        """Test the same text always gives the same vector."""
        first = HashEmbeddingProvider(dimension=32).embed(["shipping policy"])
        second = HashEmbeddingProvider(dimension=32).embed(["shipping policy"])

        assert first == second

    def test_blank_text_is_zero_vector(self):
        """Test blank text maps to zeros."""
        assert HashEmbeddingProvider(dimension=8).embed_query("   ") == [0.0] * 8

    def test_counts_calls(self):
        """Test call counters."""
        provider = HashEmbeddingProvider(dimension=8)
        provider.embed(["a", "b"])
        provider.embed_query("c")

        assert provider.calls == 2
        assert provider.texts_embedded == 3


class TestCachedEmbeddingProvider:
    """Tests for CachedEmbeddingProvider."""

    def test_cache_hits_skip_provider(self):
        """Test repeated texts are served from the cache."""
        inner = HashEmbeddingProvider(dimension=8)
        cached = CachedEmbeddingProvider(inner)

        first = cached.embed(["a", "b"])
        second = cached.embed(["b", "a", "c"])

        assert second[:2] == [first[1], first[0]]
        assert inner.texts_embedded == 3
        assert cached.get_stats()["hits"] == 2

    def test_eviction(self):
        """Test the cache is bounded."""
        cached = CachedEmbeddingProvider(HashEmbeddingProvider(dimension=8), max_entries=2)
        cached.embed(["a", "b", "c"])

        assert cached.get_stats()["entries"] == 2

    def test_failure_positions_are_remapped(self):
        """Test failed positions refer to the caller's input."""
        handler = RecordingHandler(statuses=[500, 500])
        cached = CachedEmbeddingProvider(make_provider(handler, batch_size=5))
        cached._cache[("test-embedding", "known")] = [1.0, 1.0, 1.0]

        with pytest.raises(EmbeddingError) as exc_info:
            cached.embed(["known", "new"])

        assert exc_info.value.failed_batch_indices == [1]

    def test_exposes_inner_model(self):
        """Test model name and dimension pass through."""
        cached = CachedEmbeddingProvider(HashEmbeddingProvider(dimension=16, model_name="m"))

        assert cached.model_name == "m"
        assert cached.dimension == 16
