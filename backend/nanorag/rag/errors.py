"""Exception types raised inside the RAG engine.

``DimensionMismatchError`` escapes the ``VectorStore`` insert methods and
``PersistenceError`` escapes ``FilePersistenceStore``; the store and config
layers log the latter.  The rest are raised and caught inside the indexing
pipeline and turned into an ``Error`` state.
"""


class RagError(Exception):
    """Base class for RAG engine errors."""


class ExtractionError(RagError):
    """The text extractor failed or returned no usable text."""


class ValidationError(RagError):
    """Input produced nothing indexable (e.g. zero chunks)."""


class PersistenceError(RagError, OSError):
    """A persisted document could not be read, written or deleted."""


class IndexingCancelled(RagError):
    """The running ingestion job was cancelled between embedding steps."""


class DimensionMismatchError(RagError, ValueError):
    """A vector's dimension differs from the store's fixed dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Embedding dimension mismatch: store expects {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual
