"""nanorag embedding layer.

Provides vector embeddings for chunks and queries via a local llama.cpp
server, plus a deterministic hash embedding used when a provider call fails
during ingestion.
"""
from .fallback import FALLBACK_DIM, fallback_embedding
from .llama_server import LlamaServerEmbeddingProvider
from .provider import EmbeddingProvider
from .service import EmbeddingService

__all__ = [
    "EmbeddingProvider",
    "LlamaServerEmbeddingProvider",
    "EmbeddingService",
    "FALLBACK_DIM",
    "fallback_embedding",
]
