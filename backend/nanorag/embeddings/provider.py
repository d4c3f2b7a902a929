"""Abstract EmbeddingProvider interface.

Every embedding back-end (local llama.cpp server, hosted APIs, test fakes)
implements this interface so the service layer stays provider-agnostic.
"""
from abc import ABC, abstractmethod


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers.

    Implementations must be thread-safe: the indexing pipeline calls
    ``embed()`` from the event loop's default executor.
    """

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Provider-internal model identifier (used for logging)."""

    @property
    @abstractmethod
    def dim(self) -> int:
        """Dimensionality of the vectors produced by the loaded model."""

    @abstractmethod
    def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Args:
            texts: Non-empty list of strings to embed.

        Returns:
            A list of float vectors, one per input text, in input order.

        Raises:
            Exception: On provider error (connection refused, model not
                       loaded, malformed response, …).
        """

    def is_available(self) -> bool:
        """Return True if the provider can currently serve requests.

        The default assumes availability; providers with a cheap health
        probe override it.
        """
        return True
