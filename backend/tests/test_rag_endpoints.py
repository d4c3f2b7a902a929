"""Tests for the RAG API endpoints.

A real RagManager runs against in-memory persistence and a fake embedding
provider; error paths use a mocked manager.
"""
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import FakeEmbeddingProvider, FakeExtractor
from nanorag.config import RagSettings
from nanorag.embeddings.service import EmbeddingService
from nanorag.main import app
from nanorag.rag.manager import RagManager
from nanorag.rag.persistence import MemoryPersistenceStore
from nanorag.rag.router import get_manager, set_manager
from nanorag.rag.scraper import ScrapedContent

ARTICLE = "Solar panels convert sunlight into electricity. " * 20


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def client() -> Generator[TestClient, None, None]:
    yield TestClient(app)


@pytest.fixture(autouse=True)
def reset_manager():
    """Ensure a clean manager singleton for each test."""
    original = get_manager()
    yield
    set_manager(original)


@pytest.fixture()
def manager() -> RagManager:
    """Install a real RagManager backed by memory persistence."""
    extractor = FakeExtractor(ScrapedContent(
        url="https://example.com/solar", title="Solar", text=ARTICLE,
    ))
    mgr = RagManager.from_settings(
        RagSettings(min_similarity=0.0),
        embedding_service=EmbeddingService(FakeEmbeddingProvider()),
        extractor=extractor,
        persistence=MemoryPersistenceStore(),
    )
    set_manager(mgr)
    return mgr


def _index(client: TestClient, text: str = ARTICLE, source_id: str = "solar") -> dict:
    resp = client.post("/rag/index/text", json={"text": text, "source_id": source_id})
    assert resp.status_code == 200
    return resp.json()


# ---------------------------------------------------------------------------
# Not configured
# ---------------------------------------------------------------------------

class TestNotConfigured:
    @pytest.mark.parametrize("method,path,body", [
        ("post", "/rag/index/url", {"url": "https://example.com"}),
        ("post", "/rag/index/text", {"text": "t", "source_id": "s"}),
        ("post", "/rag/index/cancel", None),
        ("get", "/rag/state", None),
        ("post", "/rag/retrieve", {"query": "q"}),
        ("post", "/rag/prompt", {"query": "q"}),
        ("get", "/rag/sources", None),
        ("delete", "/rag/sources/abc", None),
        ("delete", "/rag", None),
        ("get", "/rag/config", None),
        ("put", "/rag/config", {"top_k": 3}),
        ("get", "/rag/stats", None),
    ])
    def test_returns_503(self, client: TestClient, method, path, body):
        set_manager(None)
        kwargs = {"json": body} if body is not None else {}
        resp = client.request(method.upper(), path, **kwargs)
        assert resp.status_code == 503
        assert resp.json() == {"error": "RAG engine not configured"}


class TestHealth:
    def test_health(self, client: TestClient):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestRouteRegistration:
    @pytest.mark.parametrize("method,path", [
        ("POST", "/rag/index/cancel"),
        ("DELETE", "/rag"),
        ("GET", "/rag/stats"),
    ])
    def test_route_is_mounted(self, method, path):
        mounted = {
            (m, route.path) for route in app.routes for m in getattr(route, "methods", ())
        }
        assert (method, path) in mounted

    def test_openapi_schema_builds(self, client: TestClient):
        resp = client.get("/openapi.json")
        assert resp.status_code == 200
        paths = resp.json()["paths"]
        assert "post" in paths["/rag/index/cancel"]
        assert "delete" in paths["/rag"]


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

class TestIndexing:
    def test_index_text(self, client: TestClient, manager: RagManager):
        data = _index(client)
        assert data["kind"] == "complete"
        assert data["detail"]["source"]["id"] == "solar"
        assert data["detail"]["source"]["chunks_count"] == manager.store.total_chunks

    def test_index_url(self, client: TestClient, manager: RagManager):
        resp = client.post("/rag/index/url", json={"url": "https://example.com/solar"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["kind"] == "complete"
        assert data["detail"]["source"]["title"] == "Solar"

    def test_failed_job_reports_error_state(self, client: TestClient, manager: RagManager):
        resp = client.post("/rag/index/text", json={"text": "   ", "source_id": "blank"})
        assert resp.status_code == 200
        assert resp.json() == {"kind": "error", "detail": {"message": "No chunks created"}}

    def test_missing_fields_rejected(self, client: TestClient, manager: RagManager):
        resp = client.post("/rag/index/text", json={"text": "hello"})
        assert resp.status_code == 422

    def test_state_after_job(self, client: TestClient, manager: RagManager):
        assert client.get("/rag/state").json() == {"kind": "idle", "detail": {}}
        _index(client)
        assert client.get("/rag/state").json()["kind"] == "complete"

    def test_cancel_without_job(self, client: TestClient, manager: RagManager):
        resp = client.post("/rag/index/cancel")
        assert resp.status_code == 200
        assert resp.json() == {"cancelled": False}


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

class TestRetrieval:
    def test_retrieve(self, client: TestClient, manager: RagManager):
        _index(client)
        query = manager.store.get_chunk(0).text
        resp = client.post("/rag/retrieve", json={"query": query})
        assert resp.status_code == 200
        data = resp.json()
        assert data["query"] == query
        assert data["results"][0]["source"] == "solar"
        assert data["results"][0]["score"] == pytest.approx(1.0, abs=1e-5)

    def test_retrieve_empty_store(self, client: TestClient, manager: RagManager):
        resp = client.post("/rag/retrieve", json={"query": "anything"})
        assert resp.status_code == 200
        assert resp.json()["results"] == []

    def test_empty_query_rejected(self, client: TestClient, manager: RagManager):
        resp = client.post("/rag/retrieve", json={"query": ""})
        assert resp.status_code == 422

    def test_prompt_with_context(self, client: TestClient, manager: RagManager):
        _index(client)
        query = manager.store.get_chunk(0).text
        resp = client.post("/rag/prompt", json={"query": query, "system_prompt": "Be brief."})
        assert resp.status_code == 200
        data = resp.json()
        assert data["prompt"].startswith("SYSTEM:\nBe brief.\n\nCONTEXT:\n[Source: solar]")
        assert data["prompt"].endswith("ASSISTANT:")
        assert data["sources"] == ["solar"]
        assert data["chunks_used"] >= 1

    def test_prompt_without_context(self, client: TestClient, manager: RagManager):
        resp = client.post("/rag/prompt", json={"query": "hello"})
        data = resp.json()
        assert "CONTEXT:" not in data["prompt"]
        assert data["chunks_used"] == 0


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

class TestSources:
    def test_list_sources(self, client: TestClient, manager: RagManager):
        _index(client, source_id="one")
        _index(client, source_id="two")
        resp = client.get("/rag/sources")
        assert resp.status_code == 200
        assert [s["id"] for s in resp.json()["sources"]] == ["one", "two"]

    def test_delete_source(self, client: TestClient, manager: RagManager):
        _index(client, source_id="one")
        _index(client, source_id="two")
        resp = client.delete("/rag/sources/one")
        assert resp.status_code == 200
        assert resp.json()["source_id"] == "one"
        assert resp.json()["chunks_removed"] > 0
        assert [s["id"] for s in client.get("/rag/sources").json()["sources"]] == ["two"]

    def test_delete_unknown_source(self, client: TestClient, manager: RagManager):
        resp = client.delete("/rag/sources/missing")
        assert resp.status_code == 404
        assert "missing" in resp.json()["error"]

    def test_delete_failure_returns_500(self, client: TestClient):
        mgr = MagicMock()
        mgr.delete_source = AsyncMock(side_effect=OSError("disk gone"))
        set_manager(mgr)
        resp = client.delete("/rag/sources/one")
        assert resp.status_code == 500
        assert "disk gone" in resp.json()["error"]

    def test_clear_all(self, client: TestClient, manager: RagManager):
        _index(client)
        resp = client.delete("/rag")
        assert resp.status_code == 200
        assert resp.json() == {"status": "cleared"}
        assert manager.store.total_chunks == 0


# ---------------------------------------------------------------------------
# Config & stats
# ---------------------------------------------------------------------------

class TestConfigAndStats:
    def test_get_config(self, client: TestClient, manager: RagManager):
        resp = client.get("/rag/config")
        assert resp.status_code == 200
        assert resp.json() == {
            "enabled": True, "top_k": 5, "chunk_size_tokens": 300, "min_similarity": 0.0,
        }

    def test_put_config_clamps(self, client: TestClient, manager: RagManager):
        resp = client.put("/rag/config", json={"top_k": 100, "chunk_size_tokens": 10})
        assert resp.status_code == 200
        data = resp.json()
        assert data["top_k"] == 20
        assert data["chunk_size_tokens"] == 100
        assert manager.config.top_k == 20

    def test_put_config_partial(self, client: TestClient, manager: RagManager):
        client.put("/rag/config", json={"enabled": False})
        data = client.get("/rag/config").json()
        assert data["enabled"] is False
        assert data["top_k"] == 5

    def test_stats(self, client: TestClient, manager: RagManager):
        _index(client)
        resp = client.get("/rag/stats")
        assert resp.status_code == 200
        data = resp.json()
        assert data["sources"] == 1
        assert data["total_chunks"] == manager.store.total_chunks
        assert data["embedding_dimension"] == 384
        assert data["top_k"] == 5
