"""nanorag application configuration.

Loads settings from a single YAML file, ``nanorag.settings.yaml``.  The path
can be overridden with the ``NANORAG_SETTINGS`` environment variable.

Sections:
  * server    : HTTP bind address
  * logging   : root log level
  * embedding : embedding provider (local llama.cpp server by default)
  * rag       : storage location and chunking defaults
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("nanorag.settings.yaml")
SETTINGS_ENV_VAR = "NANORAG_SETTINGS"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve_path(value: str, base_dir: Path) -> str:
    """Resolve *value* against *base_dir* unless it is already absolute."""
    path = Path(value).expanduser()
    if path.is_absolute():
        return str(path)
    return str(base_dir / path)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000


class LoggingSettings(BaseModel):
    level: str = "info"


class EmbeddingSettings(BaseModel):
    """Which embedding back-end to use for chunks and queries."""
    provider: Literal["llama_server", "none"] = "llama_server"
    base_url: str = "http://127.0.0.1:8080"
    model:    str = "nomic-embed-text-v1.5"
    dim:      int = 768
    timeout_seconds: float = 30.0
    api_key:  Optional[str] = None


class RagSettings(BaseModel):
    """Storage and ingestion defaults for the RAG engine."""
    data_dir:          str   = "./rag_data"
    store_name:        str   = "main"
    overlap_tokens:    int   = 50
    fallback_dim:      int   = 384
    # Initial values; the live values are persisted by RagConfigStore.
    enabled:           bool  = True
    top_k:             int   = 5
    chunk_size_tokens: int   = 300
    min_similarity:    float = 0.3


class AppSettings(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    rag:       RagSettings       = Field(default_factory=RagSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppSettings:
    """Load settings from *settings_path* (or the default location).

    A relative ``rag.data_dir`` is resolved against the directory that holds
    the settings file, so the store location does not depend on the process
    working directory.
    """
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    settings_path = Path(settings_path)

    data = _load_yaml(settings_path)
    settings = AppSettings(**data)

    base_dir = settings_path.resolve().parent
    settings.rag.data_dir = _resolve_path(settings.rag.data_dir, base_dir)

    logger.info(
        "Settings loaded (server=%s:%s, embedding.provider=%s, rag.data_dir=%s)",
        settings.server.host,
        settings.server.port,
        settings.embedding.provider,
        settings.rag.data_dir,
    )
    return settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the cached application settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config
