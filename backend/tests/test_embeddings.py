"""Tests for the embedding provider and service layers.

The llama.cpp server is replaced with ``httpx.MockTransport`` so no local
model is needed.
"""
import json

import httpx
import pytest

from conftest import FakeEmbeddingProvider
from nanorag.embeddings.llama_server import LlamaServerEmbeddingProvider
from nanorag.embeddings.service import EmbeddingService


DIM = 4
SAMPLE_VECTOR = [0.1, -0.2, 0.3, 0.4]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _embeddings_body(vectors: list[list[float]], reverse: bool = False) -> dict:
    entries = [{"index": i, "embedding": v} for i, v in enumerate(vectors)]
    if reverse:
        entries.reverse()
    return {"data": entries, "model": "test-model"}


def _provider(handler, **kw) -> LlamaServerEmbeddingProvider:
    client = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://llama.test")
    return LlamaServerEmbeddingProvider(model_id="test-model", dim=DIM, client=client, **kw)


# ---------------------------------------------------------------------------
# LlamaServerEmbeddingProvider
# ---------------------------------------------------------------------------

class TestLlamaServerEmbeddingProvider:
    def test_properties(self):
        provider = LlamaServerEmbeddingProvider(model_id="nomic", dim=768)
        assert provider.model_id == "nomic"
        assert provider.dim == 768

    def test_embed_posts_openai_payload(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=_embeddings_body([SAMPLE_VECTOR]))

        vectors = _provider(handler).embed(["hello"])

        assert vectors == [SAMPLE_VECTOR]
        assert seen["path"] == "/v1/embeddings"
        assert seen["body"] == {"input": ["hello"], "model": "test-model"}

    def test_entries_reordered_by_index(self):
        v0, v1 = [1.0, 0.0, 0.0, 0.0], [0.0, 1.0, 0.0, 0.0]

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_embeddings_body([v0, v1], reverse=True))

        assert _provider(handler).embed(["a", "b"]) == [v0, v1]

    def test_count_mismatch_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_embeddings_body([SAMPLE_VECTOR]))

        with pytest.raises(ValueError, match="1 vectors for 2 texts"):
            _provider(handler).embed(["a", "b"])

    def test_missing_data_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"error": "model not loaded"})

        with pytest.raises(ValueError):
            _provider(handler).embed(["a"])

    def test_http_error_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "boom"})

        with pytest.raises(httpx.HTTPStatusError):
            _provider(handler).embed(["a"])

    def test_is_available_on_healthy_server(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/health"
            return httpx.Response(200, json={"status": "ok"})

        assert _provider(handler).is_available() is True

    def test_is_available_while_loading(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"status": "loading model"})

        assert _provider(handler).is_available() is False

    def test_is_unavailable_when_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        assert _provider(handler).is_available() is False

    def test_api_key_sent_as_bearer(self):
        provider = LlamaServerEmbeddingProvider(api_key="secret")
        client = provider._get_client()
        try:
            assert client.headers["Authorization"] == "Bearer secret"
        finally:
            provider.close()

    def test_close_is_idempotent(self):
        provider = LlamaServerEmbeddingProvider()
        provider._get_client()
        provider.close()
        provider.close()


# ---------------------------------------------------------------------------
# EmbeddingService
# ---------------------------------------------------------------------------

class TestEmbeddingService:
    def test_delegates_to_provider(self, embedding_service: EmbeddingService, provider):
        vectors = embedding_service.embed(["a", "b"])
        assert len(vectors) == 2
        assert provider.calls == ["a", "b"]

    def test_embed_one(self, embedding_service: EmbeddingService):
        assert len(embedding_service.embed_one("hello")) == embedding_service.dim

    def test_empty_batch_rejected(self, embedding_service: EmbeddingService):
        with pytest.raises(ValueError):
            embedding_service.embed([])

    def test_large_batch_passes_through(self, provider, embedding_service: EmbeddingService):
        texts = [f"t{i}" for i in range(100)]
        vectors = embedding_service.embed(texts)
        assert len(vectors) == 100
        assert provider.calls == texts

    def test_provider_errors_propagate(self):
        service = EmbeddingService(FakeEmbeddingProvider(fail_when=lambda text: True))
        with pytest.raises(RuntimeError):
            service.embed(["a"])

    def test_model_metadata(self, embedding_service: EmbeddingService):
        assert embedding_service.model_id == "fake-embed"
        assert embedding_service.dim == 384

    def test_is_available_reflects_provider(self):
        assert EmbeddingService(FakeEmbeddingProvider(available=False)).is_available is False

    def test_is_available_swallows_probe_errors(self):
        class Broken(FakeEmbeddingProvider):
            def is_available(self) -> bool:
                raise RuntimeError("probe crashed")

        assert EmbeddingService(Broken()).is_available is False
