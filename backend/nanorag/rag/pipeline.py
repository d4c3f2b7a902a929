"""Ingestion pipeline: scrape → chunk → embed → store.

Each job walks the ``IndexingState`` machine and publishes every transition
to registered listeners; the current state is also pollable.  Jobs never
raise across this boundary: failures end the job in ``Error(message)``.

Embedding is strictly sequential in document order.  A chunk whose provider
call fails gets the deterministic fallback embedding instead, so one bad call
never aborts the batch.  Nothing touches the vector store until every chunk
has a vector; the batch is then inserted atomically and persisted once.

Cancellation is checked only between per-chunk embedding steps.  Once the
``Storing`` stage begins the job runs to completion.
"""
import asyncio
import hashlib
import logging
import threading
import time
from typing import Awaitable, Callable, Optional

import numpy as np

from nanorag.embeddings.fallback import FALLBACK_DIM, fallback_embedding
from nanorag.embeddings.service import EmbeddingService

from .chunker import chunk_by_tokens
from .errors import ExtractionError, IndexingCancelled, RagError, ValidationError
from .scraper import TextExtractor, count_words
from .states import (
    Chunking,
    Complete,
    Embedding,
    Error,
    Idle,
    IndexingState,
    RagSource,
    Scraping,
    Storing,
    is_terminal,
)
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

ProgressListener = Callable[[IndexingState], None]

CANCELLED_MESSAGE = "Indexing cancelled"
DEFAULT_CHUNK_SIZE_TOKENS = 300
DEFAULT_OVERLAP_TOKENS = 50


def source_id_for_url(url: str) -> str:
    """Stable source id for *url* (same URL → same id across runs)."""
    return hashlib.sha1(url.encode("utf-8")).hexdigest()[:16]


def default_text_title(text: str) -> str:
    return f"Text: {text[:30]}..."


class IndexingPipeline:
    """Runs ingestion jobs against an injected ``VectorStore``.

    Args:
        store:             Destination store.
        embedding_service: Provider wrapper, or ``None`` if no model is
                           loaded (every chunk then gets the fallback).
        extractor:         Text extraction collaborator for URL jobs.
        chunk_size_tokens: Default chunk size when a job does not pass one.
        overlap_tokens:    Overlap between consecutive chunks.
        fallback_dim:      Fallback vector size when neither the store nor
                           the provider fixes one.

    Jobs against one pipeline are serialised by an ``asyncio.Lock``.
    """

    def __init__(
        self,
        store: VectorStore,
        embedding_service: Optional[EmbeddingService] = None,
        extractor: Optional[TextExtractor] = None,
        chunk_size_tokens: int = DEFAULT_CHUNK_SIZE_TOKENS,
        overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
        fallback_dim: int = FALLBACK_DIM,
    ) -> None:
        self._store = store
        self.embedding_service = embedding_service
        self._extractor = extractor
        self.chunk_size_tokens = chunk_size_tokens
        self.overlap_tokens = overlap_tokens
        self.fallback_dim = fallback_dim

        self._state: IndexingState = Idle()
        self._listeners: list[ProgressListener] = []
        self._job_lock = asyncio.Lock()
        self._cancel_requested = threading.Event()
        self._running = False

    # ------------------------------------------------------------------
    # State & progress
    # ------------------------------------------------------------------

    @property
    def state(self) -> IndexingState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    def add_listener(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ProgressListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def reset(self) -> None:
        """Return to ``Idle`` after a finished job.  No-op while running."""
        if not self._running and is_terminal(self._state):
            self._set_state(Idle())

    def cancel(self) -> bool:
        """Request cancellation of the running job.

        Returns:
            True if a job was running and will observe the request.
        """
        if not self._running:
            return False
        logger.info("[IndexingPipeline] Cancellation requested")
        self._cancel_requested.set()
        return True

    def _set_state(self, state: IndexingState) -> None:
        self._state = state
        logger.debug("[IndexingPipeline] state -> %s", state)
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as exc:
                logger.warning("[IndexingPipeline] progress listener failed: %s", exc)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def index_url(self, url: str, chunk_size_tokens: Optional[int] = None) -> IndexingState:
        """Scrape *url* and ingest its text.  Returns the terminal state."""
        return await self._run_job(lambda: self._url_job(url, chunk_size_tokens))

    async def index_text(
        self,
        text: str,
        source_id: str,
        title: Optional[str] = None,
        chunk_size_tokens: Optional[int] = None,
    ) -> IndexingState:
        """Ingest caller-supplied *text* under *source_id*.  Returns the terminal state."""
        return await self._run_job(lambda: self._text_job(text, source_id, title, chunk_size_tokens))

    async def _run_job(self, make_job: Callable[[], Awaitable[RagSource]]) -> IndexingState:
        async with self._job_lock:
            self._cancel_requested.clear()
            self._running = True
            try:
                source = await make_job()
                self._set_state(Complete(source))
            except asyncio.CancelledError:
                if not is_terminal(self._state):
                    self._set_state(Error(CANCELLED_MESSAGE))
                raise
            except IndexingCancelled:
                logger.info("[IndexingPipeline] Job cancelled before storing")
                self._set_state(Error(CANCELLED_MESSAGE))
            except RagError as exc:
                logger.warning("[IndexingPipeline] Job failed: %s", exc)
                self._set_state(Error(str(exc)))
            except Exception as exc:
                logger.exception("[IndexingPipeline] Indexing failed: %s", exc)
                self._set_state(Error(str(exc) or "Indexing failed"))
            finally:
                self._running = False
                self._cancel_requested.clear()
            return self._state

    async def _url_job(self, url: str, chunk_size_tokens: Optional[int]) -> RagSource:
        self._set_state(Scraping(url))
        if self._extractor is None:
            raise ExtractionError("No text extractor configured")

        loop = asyncio.get_running_loop()
        try:
            content = await loop.run_in_executor(None, self._extractor.scrape, url)
        except Exception as exc:
            raise ExtractionError(f"Failed to scrape: {exc}") from exc

        if not content.text or not content.text.strip():
            raise ExtractionError("No content found")

        title = content.title or url
        word_count = content.word_count or count_words(content.text)
        return await self._ingest(
            text=content.text,
            source_id=source_id_for_url(url),
            title=title,
            url=url,
            word_count=word_count,
            chunk_size_tokens=chunk_size_tokens,
        )

    async def _text_job(
        self,
        text: str,
        source_id: str,
        title: Optional[str],
        chunk_size_tokens: Optional[int],
    ) -> RagSource:
        return await self._ingest(
            text=text,
            source_id=source_id,
            title=title or default_text_title(text),
            url=None,
            word_count=count_words(text),
            chunk_size_tokens=chunk_size_tokens,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _ingest(
        self,
        text: str,
        source_id: str,
        title: str,
        url: Optional[str],
        word_count: int,
        chunk_size_tokens: Optional[int],
    ) -> RagSource:
        self._set_state(Chunking(title))
        chunks = chunk_by_tokens(
            text,
            max_tokens=chunk_size_tokens or self.chunk_size_tokens,
            overlap_tokens=self.overlap_tokens,
        )
        if not chunks:
            raise ValidationError("No chunks created")
        logger.info("[IndexingPipeline] Created %d chunks for %s", len(chunks), source_id)

        vectors = await self._embed_chunks(chunks)

        self._set_state(Storing())
        loop = asyncio.get_running_loop()
        store_future = loop.run_in_executor(
            None, self._store_batch, chunks, vectors, source_id, title, url, word_count,
        )
        try:
            return await asyncio.shield(store_future)
        except asyncio.CancelledError:
            # Too late to cancel: let the batch land so the store stays whole.
            source = await store_future
            self._set_state(Complete(source))
            raise

    async def _embed_chunks(self, chunks: list[str]) -> list[np.ndarray]:
        """Embed *chunks* in order, filling provider failures with fallbacks."""
        total = len(chunks)
        self._set_state(Embedding(total, 0))
        service = self.embedding_service
        if service is None:
            logger.warning(
                "[IndexingPipeline] No embedding provider; using fallback for %d chunks", total,
            )

        loop = asyncio.get_running_loop()
        vectors: list[Optional[np.ndarray]] = []
        failed: list[int] = []

        for index, chunk in enumerate(chunks):
            if self._cancel_requested.is_set():
                raise IndexingCancelled(CANCELLED_MESSAGE)
            self._set_state(Embedding(total, index + 1))

            vec = None
            if service is not None:
                vec = await loop.run_in_executor(None, self._try_embed, service, chunk, index)
            if vec is None:
                failed.append(index)
            vectors.append(vec)

        if failed:
            dim = self._fallback_dimension(vectors)
            logger.info(
                "[IndexingPipeline] Fallback embedding for %d/%d chunks (dim=%d)",
                len(failed), total, dim,
            )
            for index in failed:
                vectors[index] = fallback_embedding(chunks[index], dim)

        return vectors  # type: ignore[return-value]

    @staticmethod
    def _try_embed(service: EmbeddingService, chunk: str, index: int) -> Optional[np.ndarray]:
        try:
            vec = np.asarray(service.embed_one(chunk), dtype=np.float32)
        except Exception as exc:
            logger.warning("[IndexingPipeline] Failed to embed chunk %d: %s", index, exc)
            return None
        if vec.ndim != 1 or vec.size == 0:
            logger.warning("[IndexingPipeline] Empty embedding for chunk %d", index)
            return None
        return vec

    def _fallback_dimension(self, vectors: list[Optional[np.ndarray]]) -> int:
        """Dimension for fallback vectors so the batch stays insertable.

        Prefers the store's fixed dimension, then the dimension the provider
        produced for this batch, then ``fallback_dim``.
        """
        if self._store.embedding_dimension:
            return self._store.embedding_dimension
        for vec in vectors:
            if vec is not None:
                return vec.shape[0]
        return self.fallback_dim

    def _store_batch(
        self,
        chunks: list[str],
        vectors: list[np.ndarray],
        source_id: str,
        title: str,
        url: Optional[str],
        word_count: int,
    ) -> RagSource:
        self._store.add_chunks(list(zip(chunks, vectors)), source_id, title=title, url=url)
        if not self._store.save_to_disk():
            logger.warning("[IndexingPipeline] Persist failed; %s kept in memory only", source_id)

        logger.info("[IndexingPipeline] Indexed %s with %d chunks", source_id, len(chunks))
        return RagSource(
            id=source_id,
            title=title,
            url=url,
            chunks_count=len(chunks),
            word_count=word_count,
            timestamp=int(time.time() * 1000),
        )
