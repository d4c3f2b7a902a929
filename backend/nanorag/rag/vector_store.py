"""In-memory vector store with cosine-similarity search and disk persistence.

Vectors are L2-normalised on insert, so cosine similarity reduces to a dot
product.  Search is brute force over a stacked ``float32`` matrix; that is
fast enough for the expected scale (a few thousand chunks) and keeps ids
dense and stable.

Thread safety: every public method, persistence included, runs under one
re-entrant lock owned by the store.  A batch insert is therefore atomic with
respect to search, and concurrent ingestion jobs are fully serialised.

Persistence: two JSON documents under the store's namespace in a
``PersistenceStore``::

    metadata.json  {"totalChunks": n, "embeddingDimension": d, "schemaVersion": 1}
    vectors.json   {"documents": [...], "vectors": [[...], ...]}

``vectors[i]`` belongs to ``documents[i]``.  Missing or malformed documents
load as an empty store.
"""
import json
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Iterable, Optional, Sequence

import numpy as np

from .errors import DimensionMismatchError
from .persistence import PersistenceStore

logger = logging.getLogger(__name__)

STORE_FILE = "vectors.json"
META_FILE = "metadata.json"
SCHEMA_VERSION = 1
BYTES_PER_FLOAT = 4


def _now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ChunkMetadata:
    """Metadata attached to each stored chunk."""

    source: str
    chunk_index: int = 0
    total_chunks: int = 1
    timestamp: int = field(default_factory=_now_ms)
    title: Optional[str] = None
    url: Optional[str] = None

    def to_dict(self) -> dict:
        d = {
            "source": self.source,
            "chunkIndex": self.chunk_index,
            "totalChunks": self.total_chunks,
            "timestamp": self.timestamp,
        }
        if self.title is not None:
            d["title"] = self.title
        if self.url is not None:
            d["url"] = self.url
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "ChunkMetadata":
        return cls(
            source=str(d["source"]),
            chunk_index=int(d.get("chunkIndex", 0)),
            total_chunks=int(d.get("totalChunks", 1)),
            timestamp=int(d.get("timestamp", 0)),
            title=d.get("title"),
            url=d.get("url"),
        )


@dataclass(frozen=True)
class DocumentChunk:
    """A stored chunk.  ``id`` is its position in the store."""

    id: int
    text: str
    metadata: ChunkMetadata

    def to_dict(self) -> dict:
        return {"id": self.id, "text": self.text, "metadata": self.metadata.to_dict()}

    @classmethod
    def from_dict(cls, d: dict) -> "DocumentChunk":
        return cls(
            id=int(d["id"]),
            text=str(d["text"]),
            metadata=ChunkMetadata.from_dict(d["metadata"]),
        )


@dataclass(frozen=True)
class SearchResult:
    chunk: DocumentChunk
    score: float


@dataclass(frozen=True)
class VectorStoreStats:
    total_chunks: int
    embedding_dimension: int
    sources: int
    estimated_memory_bytes: int

    @property
    def estimated_memory_mb(self) -> float:
        return self.estimated_memory_bytes / (1024.0 * 1024.0)


# ---------------------------------------------------------------------------
# Vector store
# ---------------------------------------------------------------------------

class VectorStore:
    """Thread-safe, persisted store of ``(chunk, vector)`` pairs.

    Args:
        persistence: Where the two JSON documents live.
        store_name:  Namespace inside *persistence*.

    Existing data is loaded eagerly at construction.
    """

    def __init__(self, persistence: PersistenceStore, store_name: str = "default") -> None:
        self._persistence = persistence
        self._store_name = store_name
        self._lock = threading.RLock()

        self._documents: list[DocumentChunk] = []
        self._vectors: list[np.ndarray] = []
        self._dim = 0
        # Stacked copy of _vectors, rebuilt lazily after mutations.
        self._matrix: Optional[np.ndarray] = None

        self._load_from_disk()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def store_name(self) -> str:
        return self._store_name

    @property
    def total_chunks(self) -> int:
        with self._lock:
            return len(self._documents)

    @property
    def embedding_dimension(self) -> int:
        with self._lock:
            return self._dim

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def add_chunk(self, text: str, vector: Sequence[float], metadata: ChunkMetadata) -> int:
        """Add a single chunk and return its id.

        Raises:
            DimensionMismatchError: If the store already has a dimension and
                                    *vector* does not match it.
        """
        vec = self._normalise(vector)
        with self._lock:
            self._check_dimension(vec.shape[0])
            if self._dim == 0:
                self._dim = vec.shape[0]
            chunk = DocumentChunk(id=len(self._documents), text=text, metadata=metadata)
            self._documents.append(chunk)
            self._vectors.append(vec)
            self._matrix = None

        logger.debug("[VectorStore] Added chunk %d: %.50s...", chunk.id, text)
        return chunk.id

    def add_chunks(
        self,
        chunks: Sequence[tuple[str, Sequence[float]]],
        source: str,
        title: Optional[str] = None,
        url: Optional[str] = None,
    ) -> list[int]:
        """Add a batch of ``(text, vector)`` pairs under one *source*.

        ``chunk_index``/``total_chunks`` come from batch position; all chunks
        share one timestamp.  The whole batch is validated before anything is
        inserted, and inserted under a single lock acquisition.

        Raises:
            DimensionMismatchError: If any vector's dimension disagrees with
                                    the store or with the rest of the batch.
        """
        if not chunks:
            return []

        vecs = [self._normalise(v) for _, v in chunks]
        timestamp = _now_ms()
        total = len(chunks)

        with self._lock:
            expected = self._dim or vecs[0].shape[0]
            for vec in vecs:
                if vec.shape[0] != expected:
                    raise DimensionMismatchError(expected, vec.shape[0])
            if self._dim == 0:
                self._dim = expected

            ids: list[int] = []
            for index, ((text, _), vec) in enumerate(zip(chunks, vecs)):
                metadata = ChunkMetadata(
                    source=source,
                    chunk_index=index,
                    total_chunks=total,
                    timestamp=timestamp,
                    title=title,
                    url=url,
                )
                chunk = DocumentChunk(id=len(self._documents), text=text, metadata=metadata)
                self._documents.append(chunk)
                self._vectors.append(vec)
                ids.append(chunk.id)
            self._matrix = None

        logger.info("[VectorStore] Added %d chunks from %s", total, source)
        return ids

    def delete_by_source(self, source: str) -> int:
        """Remove every chunk of *source* and compact ids to ``0..n-1``.

        Returns:
            Number of chunks removed (0 if the source is unknown).
        """
        with self._lock:
            keep = [i for i, c in enumerate(self._documents) if c.metadata.source != source]
            removed = len(self._documents) - len(keep)
            if removed == 0:
                return 0

            self._documents = [
                replace(self._documents[old], id=new) for new, old in enumerate(keep)
            ]
            self._vectors = [self._vectors[old] for old in keep]
            self._matrix = None

        logger.info("[VectorStore] Deleted %d chunks from %s", removed, source)
        return removed

    def clear(self) -> None:
        """Drop all chunks, reset the dimension and delete both documents."""
        with self._lock:
            self._documents = []
            self._vectors = []
            self._matrix = None
            self._dim = 0
            for key in (STORE_FILE, META_FILE):
                try:
                    self._persistence.delete(self._store_name, key)
                except OSError as exc:
                    logger.error("[VectorStore] Failed to delete %s: %s", key, exc)

        logger.info("[VectorStore] Cleared all data")

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def search(
        self,
        query_vector: Sequence[float],
        top_k: int = 5,
        min_similarity: float = 0.0,
    ) -> list[SearchResult]:
        """Return up to *top_k* chunks most similar to *query_vector*.

        Results have ``score >= min_similarity`` and are sorted by score
        descending; equal scores keep insertion order.  A query whose
        dimension differs from the store's matches nothing.
        """
        with self._lock:
            if not self._documents or top_k <= 0:
                return []

            query = self._normalise(query_vector)
            if query.shape[0] != self._dim:
                logger.warning(
                    "[VectorStore] Query dimension %d != store dimension %d; no matches",
                    query.shape[0], self._dim,
                )
                return []

            scores = self._stacked() @ query
            np.clip(scores, -1.0, 1.0, out=scores)

            candidates = np.flatnonzero(scores >= min_similarity)
            if candidates.size == 0:
                return []
            order = candidates[np.argsort(-scores[candidates], kind="stable")][:top_k]

            return [
                SearchResult(chunk=self._documents[i], score=float(scores[i]))
                for i in order
            ]

    def search_text(
        self,
        query_vector: Sequence[float],
        top_k: int = 5,
        min_similarity: float = 0.0,
    ) -> list[str]:
        """Convenience wrapper returning only the chunk texts."""
        return [r.chunk.text for r in self.search(query_vector, top_k, min_similarity)]

    def get_chunk(self, chunk_id: int) -> Optional[DocumentChunk]:
        with self._lock:
            if 0 <= chunk_id < len(self._documents):
                return self._documents[chunk_id]
            return None

    def get_vector(self, chunk_id: int) -> Optional[np.ndarray]:
        """Return a copy of the stored (normalised) vector for *chunk_id*."""
        with self._lock:
            if 0 <= chunk_id < len(self._vectors):
                return self._vectors[chunk_id].copy()
            return None

    def get_chunks_by_source(self, source: str) -> list[DocumentChunk]:
        with self._lock:
            return [c for c in self._documents if c.metadata.source == source]

    def get_sources(self) -> list[str]:
        """Distinct source ids in first-insertion order."""
        with self._lock:
            return list(dict.fromkeys(c.metadata.source for c in self._documents))

    def get_all_chunks(self) -> list[DocumentChunk]:
        with self._lock:
            return list(self._documents)

    def get_stats(self) -> VectorStoreStats:
        with self._lock:
            total = len(self._documents)
            return VectorStoreStats(
                total_chunks=total,
                embedding_dimension=self._dim,
                sources=len({c.metadata.source for c in self._documents}),
                estimated_memory_bytes=total * self._dim * BYTES_PER_FLOAT,
            )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_to_disk(self) -> bool:
        """Write both documents.  Returns False (and logs) on failure."""
        with self._lock:
            try:
                meta = {
                    "totalChunks": len(self._documents),
                    "embeddingDimension": self._dim,
                    "schemaVersion": SCHEMA_VERSION,
                }
                data = {
                    "documents": [c.to_dict() for c in self._documents],
                    "vectors": [v.tolist() for v in self._vectors],
                }
                self._persistence.write(
                    self._store_name, META_FILE, json.dumps(meta).encode("utf-8")
                )
                self._persistence.write(
                    self._store_name, STORE_FILE, json.dumps(data).encode("utf-8")
                )
            except (OSError, TypeError, ValueError) as exc:
                logger.error("[VectorStore] Failed to save to disk: %s", exc)
                return False

            total = len(self._documents)

        logger.info("[VectorStore] Saved %d chunks to disk", total)
        return True

    def _load_from_disk(self) -> bool:
        """Populate the store from persisted documents.

        Returns True if data was loaded.  Any problem leaves the store empty.
        """
        try:
            meta_raw = self._persistence.read(self._store_name, META_FILE)
            data_raw = self._persistence.read(self._store_name, STORE_FILE)
        except OSError as exc:
            logger.error("[VectorStore] Failed to read persisted store: %s", exc)
            return False

        if meta_raw is None or data_raw is None:
            logger.debug("[VectorStore] No existing data to load for %s", self._store_name)
            return False

        try:
            meta = json.loads(meta_raw)
            data = json.loads(data_raw)
            documents, vectors, dim = self._parse_snapshot(meta, data)
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("[VectorStore] Failed to load from disk: %s", exc)
            return False

        with self._lock:
            self._documents = documents
            self._vectors = vectors
            self._dim = dim
            self._matrix = None

        logger.info("[VectorStore] Loaded %d chunks from disk", len(documents))
        return True

    @staticmethod
    def _parse_snapshot(
        meta: dict, data: dict
    ) -> tuple[list[DocumentChunk], list[np.ndarray], int]:
        if not isinstance(meta, dict) or not isinstance(data, dict):
            raise ValueError("metadata and vectors documents must be JSON objects")
        raw_docs = data["documents"]
        raw_vecs = data["vectors"]
        if not isinstance(raw_docs, list) or not isinstance(raw_vecs, list):
            raise ValueError("documents and vectors must be lists")
        if len(raw_docs) != len(raw_vecs):
            raise ValueError(
                f"{len(raw_docs)} documents but {len(raw_vecs)} vectors"
            )

        dim = int(meta.get("embeddingDimension", 0))
        total = int(meta.get("totalChunks", len(raw_docs)))
        if total != len(raw_docs):
            logger.warning(
                "[VectorStore] metadata says %d chunks, found %d; trusting documents",
                total, len(raw_docs),
            )

        # Search assumes unit rows; a hand-edited file may not hold them.
        vectors = [VectorStore._normalise(v) for v in raw_vecs]
        if vectors:
            dim = dim or vectors[0].shape[0]
            for v in vectors:
                if v.ndim != 1 or v.shape[0] != dim:
                    raise ValueError(f"vector of shape {v.shape} in a {dim}-dim store")

        # Ids are positional; re-derive them in case the file was edited.
        documents = [
            replace(DocumentChunk.from_dict(d), id=i) for i, d in enumerate(raw_docs)
        ]
        return documents, vectors, dim

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _check_dimension(self, actual: int) -> None:
        if self._dim and actual != self._dim:
            raise DimensionMismatchError(self._dim, actual)

    def _stacked(self) -> np.ndarray:
        if self._matrix is None:
            self._matrix = np.vstack(self._vectors)
        return self._matrix

    @staticmethod
    def _normalise(vector: Sequence[float] | Iterable[float]) -> np.ndarray:
        """Return a float32 unit-length copy; the zero vector is left as is."""
        vec = np.array(vector, dtype=np.float32)
        if vec.ndim != 1 or vec.shape[0] == 0:
            raise ValueError(f"Expected a non-empty 1-D vector, got shape {vec.shape}")
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec
