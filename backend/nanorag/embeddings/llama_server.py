"""Local llama.cpp server embedding provider.

Talks to a ``llama-server`` (or any OpenAI-compatible server) started with
``--embedding``.  The model that server has loaded fixes the vector
dimension.

Request body
------------
::

    POST {base_url}/v1/embeddings
    { "input": ["text1", "text2"], "model": "nomic-embed-text-v1.5" }

Response body
-------------
::

    { "data": [ {"index": 0, "embedding": [...]}, ... ], "model": "..." }

Entries are re-ordered by ``index`` because the OpenAI schema does not
promise that ``data`` preserves request order.
"""
import logging
from typing import Optional

import httpx

from .provider import EmbeddingProvider

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:8080"
DEFAULT_MODEL_ID = "nomic-embed-text-v1.5"
DEFAULT_DIM      = 768
DEFAULT_TIMEOUT  = 30.0


class LlamaServerEmbeddingProvider(EmbeddingProvider):
    """Embedding provider backed by a local llama.cpp HTTP server.

    Args:
        base_url: Server root, e.g. ``http://127.0.0.1:8080``.
        model_id: Model name sent in the request body.
        dim:      Expected vector dimensionality.
        timeout:  Per-request timeout in seconds.
        api_key:  Optional bearer token (``--api-key`` on the server).
        client:   Pre-built ``httpx.Client``; mainly for tests.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        model_id: str = DEFAULT_MODEL_ID,
        dim: int = DEFAULT_DIM,
        timeout: float = DEFAULT_TIMEOUT,
        api_key: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model_id = model_id
        self._dim      = dim
        self._timeout  = timeout
        self._api_key  = api_key
        self._client   = client

    # -----------------------------------------------------------------------
    # EmbeddingProvider properties
    # -----------------------------------------------------------------------

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def dim(self) -> int:
        return self._dim

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    def _get_client(self) -> httpx.Client:
        """Return a cached ``httpx.Client`` bound to the server root."""
        if self._client is None:
            headers = {}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.Client(
                base_url=self._base_url,
                timeout=self._timeout,
                headers=headers,
            )
        return self._client

    # -----------------------------------------------------------------------
    # EmbeddingProvider implementation
    # -----------------------------------------------------------------------

    def is_available(self) -> bool:
        """Probe ``GET /health``; any transport error counts as unavailable."""
        try:
            resp = self._get_client().get("/health")
        except httpx.HTTPError as exc:
            logger.debug("[embeddings/llama] health probe failed: %s", exc)
            return False
        return resp.status_code == 200

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts on the llama.cpp server.

        Raises:
            httpx.HTTPError: On connection failure or a non-2xx response.
            ValueError:      If the response shape is unexpected.
        """
        logger.debug(
            "[embeddings/llama] POST /v1/embeddings model=%s texts=%d",
            self._model_id,
            len(texts),
        )
        resp = self._get_client().post(
            "/v1/embeddings",
            json={"input": texts, "model": self._model_id},
        )
        resp.raise_for_status()
        data = resp.json()

        entries = data.get("data")
        if not isinstance(entries, list):
            raise ValueError(
                f"Unexpected embeddings response, 'data' list missing: {list(data.keys())}"
            )
        if len(entries) != len(texts):
            raise ValueError(
                f"Provider returned {len(entries)} vectors for {len(texts)} texts"
            )

        ordered = sorted(entries, key=lambda e: e.get("index", 0))
        vectors = [e["embedding"] for e in ordered]

        logger.debug(
            "[embeddings/llama] received %d vectors dim=%d",
            len(vectors),
            len(vectors[0]) if vectors else 0,
        )
        return vectors

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
