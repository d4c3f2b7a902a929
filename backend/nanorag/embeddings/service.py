"""EmbeddingService: thin orchestration layer over EmbeddingProvider.

Rejects empty batches and delegates to the configured provider.
The service is constructed in ``nanorag/main.py`` and injected into the
indexing pipeline and retriever; ``None`` stands for "no provider loaded".
"""
import logging

from .provider import EmbeddingProvider

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Validates requests and delegates to an EmbeddingProvider.

    Args:
        provider: Concrete embedding provider to use.
    """

    def __init__(self, provider: EmbeddingProvider) -> None:
        self._provider = provider

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    @property
    def model_id(self) -> str:
        return self._provider.model_id

    @property
    def dim(self) -> int:
        return self._provider.dim

    @property
    def is_available(self) -> bool:
        """True if the underlying provider reports it can serve requests."""
        try:
            return self._provider.is_available()
        except Exception as exc:
            logger.warning("[EmbeddingService] availability check failed: %s", exc)
            return False

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a validated batch of texts.

        Raises:
            ValueError: If ``texts`` is empty.
            Exception:  On provider-level errors.
        """
        if not texts:
            raise ValueError("texts must not be empty")

        logger.debug(
            "[EmbeddingService] embedding %d text(s) via provider=%s model=%s",
            len(texts),
            type(self._provider).__name__,
            self._provider.model_id,
        )
        return self._provider.embed(texts)

    def embed_one(self, text: str) -> list[float]:
        """Embed a single text and return its vector."""
        return self.embed([text])[0]
