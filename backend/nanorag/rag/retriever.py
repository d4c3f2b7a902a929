"""Query-time retrieval and the user-tunable RAG settings.

Retrieval never fails generation: a disabled engine, a missing provider, a
failed query embedding or a failed search all yield an empty result list.
Queries are embedded with the provider only.  The hash fallback used during
ingestion is never applied to queries, because a hashed query compared with
provider-produced chunk vectors gives meaningless scores.
"""
import asyncio
import json
import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from nanorag.embeddings.service import EmbeddingService

from .persistence import PersistenceStore
from .vector_store import SearchResult, VectorStore

logger = logging.getLogger(__name__)

SETTINGS_NAMESPACE = "settings"
CONFIG_KEY = "rag_config.json"

TOP_K_RANGE = (1, 20)
CHUNK_SIZE_RANGE = (100, 1000)
MIN_SIMILARITY_RANGE = (0.0, 0.9)


def _clamp(value, bounds):
    low, high = bounds
    return max(low, min(high, value))


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

class RagConfig(BaseModel):
    """RAG settings.  Out-of-range values are clamped, never rejected."""

    model_config = ConfigDict(validate_assignment=True)

    enabled: bool = True
    top_k: int = 5
    chunk_size_tokens: int = 300
    min_similarity: float = 0.3

    @field_validator("top_k")
    @classmethod
    def _clamp_top_k(cls, v: int) -> int:
        return _clamp(v, TOP_K_RANGE)

    @field_validator("chunk_size_tokens")
    @classmethod
    def _clamp_chunk_size(cls, v: int) -> int:
        return _clamp(v, CHUNK_SIZE_RANGE)

    @field_validator("min_similarity")
    @classmethod
    def _clamp_min_similarity(cls, v: float) -> float:
        return _clamp(v, MIN_SIMILARITY_RANGE)


class RagConfigStore:
    """Holds the live ``RagConfig`` and persists every change.

    Args:
        persistence: Backing store; the config lives at
                     ``settings/rag_config.json``.
        defaults:    Values used when nothing valid is persisted.
    """

    def __init__(self, persistence: PersistenceStore, defaults: Optional[RagConfig] = None) -> None:
        self._persistence = persistence
        self._config = self._load(defaults or RagConfig())

    @property
    def config(self) -> RagConfig:
        return self._config.model_copy()

    def set_enabled(self, enabled: bool) -> RagConfig:
        return self.update(enabled=enabled)

    def set_top_k(self, k: int) -> RagConfig:
        return self.update(top_k=k)

    def set_chunk_size(self, tokens: int) -> RagConfig:
        return self.update(chunk_size_tokens=tokens)

    def set_min_similarity(self, similarity: float) -> RagConfig:
        return self.update(min_similarity=similarity)

    def update(self, **changes) -> RagConfig:
        """Apply *changes* (clamped), persist, and return the new config.

        Raises:
            pydantic.ValidationError: If a value has the wrong type.
            AttributeError:           If a key is not a config field.
        """
        for key in changes:
            if key not in RagConfig.model_fields:
                raise AttributeError(f"Unknown RAG config field: {key}")
        updated = self._config.model_copy()
        for key, value in changes.items():
            setattr(updated, key, value)
        self._config = updated
        self._save()
        return self.config

    def _load(self, defaults: RagConfig) -> RagConfig:
        try:
            raw = self._persistence.read(SETTINGS_NAMESPACE, CONFIG_KEY)
        except OSError as exc:
            logger.warning("[RagConfigStore] Failed to read config: %s", exc)
            return defaults
        if raw is None:
            return defaults
        try:
            merged = {**defaults.model_dump(), **json.loads(raw)}
            return RagConfig(**merged)
        except (ValueError, TypeError, ValidationError) as exc:
            logger.warning("[RagConfigStore] Ignoring malformed config: %s", exc)
            return defaults

    def _save(self) -> None:
        try:
            self._persistence.write(
                SETTINGS_NAMESPACE,
                CONFIG_KEY,
                self._config.model_dump_json().encode("utf-8"),
            )
        except OSError as exc:
            logger.error("[RagConfigStore] Failed to persist config: %s", exc)


# ---------------------------------------------------------------------------
# Retriever
# ---------------------------------------------------------------------------

class Retriever:
    """Embeds a query and searches the store with the live config.

    Args:
        store:             Store to search.
        config_store:      Source of ``enabled`` / ``top_k`` / ``min_similarity``.
        embedding_service: Query embedder, or ``None`` if no model is loaded.
    """

    def __init__(
        self,
        store: VectorStore,
        config_store: RagConfigStore,
        embedding_service: Optional[EmbeddingService] = None,
    ) -> None:
        self._store = store
        self._config_store = config_store
        self.embedding_service = embedding_service
        self._last_results: list[SearchResult] = []

    @property
    def last_results(self) -> list[SearchResult]:
        return list(self._last_results)

    async def retrieve(self, query: str) -> list[SearchResult]:
        """Return the chunks most relevant to *query*, or ``[]``."""
        config = self._config_store.config
        service = self.embedding_service
        if not config.enabled or service is None:
            return self._remember([])

        loop = asyncio.get_running_loop()
        vector = await loop.run_in_executor(None, self._embed_query, service, query)
        if vector is None:
            return self._remember([])

        results = await loop.run_in_executor(None, self._search, vector, config)

        logger.info("[Retriever] %d result(s) for query of %d chars", len(results), len(query))
        return self._remember(results)

    @staticmethod
    def _embed_query(service: EmbeddingService, query: str) -> Optional[list[float]]:
        if not service.is_available:
            logger.info("[Retriever] Embedding provider unavailable; skipping retrieval")
            return None
        try:
            return service.embed_one(query)
        except Exception as exc:
            logger.warning("[Retriever] Failed to embed query: %s", exc)
            return None

    def _search(self, vector: list[float], config: RagConfig) -> list[SearchResult]:
        # Runs off the event loop; the store lock may be held by a save.
        try:
            return self._store.search(
                vector,
                top_k=config.top_k,
                min_similarity=config.min_similarity,
            )
        except Exception as exc:
            logger.error("[Retriever] Search failed: %s", exc)
            return []

    def _remember(self, results: list[SearchResult]) -> list[SearchResult]:
        self._last_results = results
        return results
