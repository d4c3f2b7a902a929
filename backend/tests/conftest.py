"""Shared test fixtures and fakes for backend tests."""
import threading
from typing import Callable, Optional

import numpy as np
import pytest

from nanorag.embeddings.provider import EmbeddingProvider
from nanorag.embeddings.service import EmbeddingService
from nanorag.rag.persistence import MemoryPersistenceStore
from nanorag.rag.scraper import ScrapedContent
from nanorag.rag.vector_store import VectorStore

FAKE_DIM = 384


def fake_vector(text: str, dim: int = FAKE_DIM) -> list[float]:
    """Deterministic pseudo-embedding seeded from the text bytes."""
    seed = sum(text.encode("utf-8")) + len(text)
    rng = np.random.default_rng(seed)
    return rng.standard_normal(dim).astype(np.float32).tolist()


class FakeEmbeddingProvider(EmbeddingProvider):
    """In-process provider with programmable failures.

    Args:
        dim:       Vector size to return.
        fail_when: Predicate on the text; True makes ``embed`` raise.
        vectors:   Exact vectors to return for given texts.
        available: Value reported by ``is_available``.
        on_embed:  Hook called with each text before embedding.
    """

    def __init__(
        self,
        dim: int = FAKE_DIM,
        fail_when: Optional[Callable[[str], bool]] = None,
        vectors: Optional[dict[str, list[float]]] = None,
        available: bool = True,
        on_embed: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._dim = dim
        self._fail_when = fail_when
        self._vectors = vectors or {}
        self.available = available
        self._on_embed = on_embed
        self.calls: list[str] = []
        self._lock = threading.Lock()

    @property
    def model_id(self) -> str:
        return "fake-embed"

    @property
    def dim(self) -> int:
        return self._dim

    def is_available(self) -> bool:
        return self.available

    def embed(self, texts: list[str]) -> list[list[float]]:
        out = []
        for text in texts:
            with self._lock:
                self.calls.append(text)
            if self._on_embed is not None:
                self._on_embed(text)
            if self._fail_when is not None and self._fail_when(text):
                raise RuntimeError(f"embedding failed for {text[:10]!r}")
            out.append(self._vectors.get(text) or fake_vector(text, self._dim))
        return out


class FakeExtractor:
    """TextExtractor returning canned content or raising."""

    def __init__(self, content: Optional[ScrapedContent] = None, error: Optional[Exception] = None) -> None:
        self._content = content
        self._error = error
        self.urls: list[str] = []

    def scrape(self, url: str) -> ScrapedContent:
        self.urls.append(url)
        if self._error is not None:
            raise self._error
        return self._content


@pytest.fixture
def persistence() -> MemoryPersistenceStore:
    return MemoryPersistenceStore()


@pytest.fixture
def store(persistence: MemoryPersistenceStore) -> VectorStore:
    return VectorStore(persistence, store_name="test")


@pytest.fixture
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def embedding_service(provider: FakeEmbeddingProvider) -> EmbeddingService:
    return EmbeddingService(provider)
