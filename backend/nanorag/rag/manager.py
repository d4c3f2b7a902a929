"""RagManager: application-facing facade over the RAG engine.

Owns the collaborators for one store (vector store, indexing pipeline,
retriever, config) and exposes the state the application layer polls:
installed sources, the indexing job state, the RAG config, the last
retrieval results and aggregate stats.

Usage::

    manager = RagManager.from_settings(get_config().rag, embedding_service, WebScraper())
    state = await manager.index_url("https://example.com/article")
    prompt = await manager.build_rag_prompt("What does the article say?")
"""
import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

from nanorag.config import RagSettings
from nanorag.embeddings.service import EmbeddingService

from .persistence import FilePersistenceStore, PersistenceStore
from .pipeline import IndexingPipeline, ProgressListener
from .prompt_builder import Generator, RagResponse, build_prompt, distinct_sources
from .retriever import RagConfig, RagConfigStore, Retriever
from .scraper import TextExtractor, count_words
from .states import IndexingState, RagSource
from .vector_store import DocumentChunk, SearchResult, VectorStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RagStats:
    enabled: bool
    sources: int
    total_chunks: int
    embedding_dimension: int
    estimated_memory_bytes: int
    estimated_memory_mb: float
    top_k: int
    chunk_size: int
    min_similarity: float


def summarize_sources(chunks: list[DocumentChunk]) -> list[RagSource]:
    """Rebuild Source summaries from stored chunks in one pass.

    Word counts are summed over chunk texts, the earliest timestamp wins, and
    title/url come from the first chunk seen for each source (the title
    falls back to the source id).
    """
    grouped: "OrderedDict[str, list[DocumentChunk]]" = OrderedDict()
    for chunk in chunks:
        grouped.setdefault(chunk.metadata.source, []).append(chunk)

    sources: list[RagSource] = []
    for source_id, members in grouped.items():
        first = members[0].metadata
        sources.append(RagSource(
            id=source_id,
            title=first.title or source_id,
            url=first.url,
            chunks_count=len(members),
            word_count=sum(count_words(c.text) for c in members),
            timestamp=min(c.metadata.timestamp for c in members),
        ))
    return sources


class RagManager:
    """Coordinates ingestion, retrieval and source management for one store.

    Args:
        store:        The vector store.
        pipeline:     Indexing pipeline writing into *store*.
        retriever:    Retriever reading from *store*.
        config_store: Live, persisted RAG config.
    """

    def __init__(
        self,
        store: VectorStore,
        pipeline: IndexingPipeline,
        retriever: Retriever,
        config_store: RagConfigStore,
    ) -> None:
        self._store = store
        self._pipeline = pipeline
        self._retriever = retriever
        self._config_store = config_store
        self._sources: list[RagSource] = []
        self.refresh_sources()

    @classmethod
    def from_settings(
        cls,
        settings: RagSettings,
        embedding_service: Optional[EmbeddingService] = None,
        extractor: Optional[TextExtractor] = None,
        persistence: Optional[PersistenceStore] = None,
    ) -> "RagManager":
        """Build a manager and its collaborators from ``rag`` settings."""
        persistence = persistence or FilePersistenceStore(settings.data_dir)
        store = VectorStore(persistence, store_name=settings.store_name)
        config_store = RagConfigStore(
            persistence,
            defaults=RagConfig(
                enabled=settings.enabled,
                top_k=settings.top_k,
                chunk_size_tokens=settings.chunk_size_tokens,
                min_similarity=settings.min_similarity,
            ),
        )
        pipeline = IndexingPipeline(
            store,
            embedding_service=embedding_service,
            extractor=extractor,
            chunk_size_tokens=config_store.config.chunk_size_tokens,
            overlap_tokens=settings.overlap_tokens,
            fallback_dim=settings.fallback_dim,
        )
        retriever = Retriever(store, config_store, embedding_service)
        logger.info(
            "[RagManager] Ready: store=%s chunks=%d dim=%d",
            settings.store_name, store.total_chunks, store.embedding_dimension,
        )
        return cls(store, pipeline, retriever, config_store)

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    @property
    def store(self) -> VectorStore:
        return self._store

    @property
    def pipeline(self) -> IndexingPipeline:
        return self._pipeline

    def set_embedding_service(self, service: Optional[EmbeddingService]) -> None:
        """Swap the embedding provider (e.g. after a model load or unload)."""
        self._pipeline.embedding_service = service
        self._retriever.embedding_service = service

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    @property
    def config(self) -> RagConfig:
        return self._config_store.config

    def update_config(self, **changes) -> RagConfig:
        config = self._config_store.update(**changes)
        self._pipeline.chunk_size_tokens = config.chunk_size_tokens
        return config

    def set_enabled(self, enabled: bool) -> RagConfig:
        return self.update_config(enabled=enabled)

    def set_top_k(self, k: int) -> RagConfig:
        return self.update_config(top_k=k)

    def set_chunk_size(self, tokens: int) -> RagConfig:
        return self.update_config(chunk_size_tokens=tokens)

    def set_min_similarity(self, similarity: float) -> RagConfig:
        return self.update_config(min_similarity=similarity)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    @property
    def indexing_state(self) -> IndexingState:
        return self._pipeline.state

    def add_progress_listener(self, listener: ProgressListener) -> None:
        self._pipeline.add_listener(listener)

    def cancel_indexing(self) -> bool:
        return self._pipeline.cancel()

    async def index_url(self, url: str) -> IndexingState:
        state = await self._pipeline.index_url(url, self.config.chunk_size_tokens)
        await self._refresh_sources_off_loop()
        return state

    async def index_text(self, text: str, source_id: str, title: Optional[str] = None) -> IndexingState:
        state = await self._pipeline.index_text(
            text, source_id, title=title, chunk_size_tokens=self.config.chunk_size_tokens,
        )
        await self._refresh_sources_off_loop()
        return state

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    @property
    def last_results(self) -> list[SearchResult]:
        return self._retriever.last_results

    async def retrieve(self, query: str) -> list[SearchResult]:
        return await self._retriever.retrieve(query)

    def build_prompt(
        self,
        query: str,
        results: list[SearchResult],
        system_prompt: Optional[str] = None,
    ) -> str:
        return build_prompt(query, results, system_prompt)

    async def build_rag_prompt(self, query: str, system_prompt: Optional[str] = None) -> str:
        """Retrieve for *query* and return the assembled prompt."""
        results = await self.retrieve(query)
        return build_prompt(query, results, system_prompt)

    async def generate_with_rag(
        self,
        query: str,
        generator: Generator,
        system_prompt: Optional[str] = None,
    ) -> RagResponse:
        """Retrieve, build the prompt, and hand it to *generator*.

        *generator* is any blocking ``prompt -> text`` callable (a local LLM
        binding, an HTTP client, …); it runs in the default executor and its
        exceptions propagate to the caller.
        """
        results = await self.retrieve(query)
        prompt = build_prompt(query, results, system_prompt)
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(None, generator, prompt)
        return RagResponse(
            response=response,
            sources=distinct_sources(results),
            chunks_used=len(results),
        )

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    @property
    def sources(self) -> list[RagSource]:
        return list(self._sources)

    def refresh_sources(self) -> list[RagSource]:
        self._sources = summarize_sources(self._store.get_all_chunks())
        return self.sources

    async def _refresh_sources_off_loop(self) -> list[RagSource]:
        # Reading chunks takes the store lock, which a running save may hold.
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.refresh_sources)

    async def delete_source(self, source_id: str) -> int:
        """Delete every chunk of *source_id*, persist, and refresh sources."""
        loop = asyncio.get_running_loop()
        removed = await loop.run_in_executor(None, self._delete_and_save, source_id)
        await self._refresh_sources_off_loop()
        return removed

    def _delete_and_save(self, source_id: str) -> int:
        removed = self._store.delete_by_source(source_id)
        if removed:
            self._store.save_to_disk()
        return removed

    async def clear_all(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._store.clear)
        await self._refresh_sources_off_loop()

    def get_stats(self) -> RagStats:
        store_stats = self._store.get_stats()
        config = self.config
        return RagStats(
            enabled=config.enabled,
            sources=len(self._sources),
            total_chunks=store_stats.total_chunks,
            embedding_dimension=store_stats.embedding_dimension,
            estimated_memory_bytes=store_stats.estimated_memory_bytes,
            estimated_memory_mb=store_stats.estimated_memory_mb,
            top_k=config.top_k,
            chunk_size=config.chunk_size_tokens,
            min_similarity=config.min_similarity,
        )
