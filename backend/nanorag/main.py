"""nanorag backend application.

Entry point for the local RAG service.  Ingests web pages and text into an
on-disk vector store and serves retrieval and prompt assembly to a local
chat front end.

Modules:
    - embeddings: embedding providers (local llama.cpp server) and fallback
    - rag: chunking, vector store, indexing pipeline, retrieval, prompts
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from nanorag.config import get_config
from nanorag.embeddings.llama_server import LlamaServerEmbeddingProvider
from nanorag.embeddings.service import EmbeddingService
from nanorag.rag.manager import RagManager
from nanorag.rag.router import router as rag_router, set_manager
from nanorag.rag.scraper import WebScraper

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers; httpx logs every request line.
for _noisy in (
    "urllib3",
    "urllib3.connectionpool",
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def _build_embedding_service(config) -> EmbeddingService | None:
    emb_cfg = config.embedding
    if emb_cfg.provider != "llama_server":
        logger.info("Embedding provider '%s'; service disabled.", emb_cfg.provider)
        return None

    provider = LlamaServerEmbeddingProvider(
        base_url=emb_cfg.base_url,
        model_id=emb_cfg.model,
        dim=emb_cfg.dim,
        timeout=emb_cfg.timeout_seconds,
        api_key=emb_cfg.api_key,
    )
    logger.info(
        "Embedding service ready: provider=llama_server url=%s model=%s dim=%d",
        emb_cfg.base_url, emb_cfg.model, emb_cfg.dim,
    )
    return EmbeddingService(provider)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    embedding_service = None
    try:
        embedding_service = _build_embedding_service(config)
    except Exception as exc:
        logger.warning("Failed to initialise embedding service: %s", exc)

    scraper = WebScraper()
    try:
        manager = RagManager.from_settings(config.rag, embedding_service, scraper)
        set_manager(manager)
    except Exception as exc:
        logger.warning("Failed to initialise RAG engine: %s", exc)

    yield  # Application runs here

    set_manager(None)
    scraper.close()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="nanorag API",
    description="Local retrieval-augmented generation engine",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(rag_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}


def run() -> None:
    """Console entry point: serve the app with uvicorn using configured host/port."""
    import uvicorn

    config = get_config()
    uvicorn.run(app, host=config.server.host, port=config.server.port)
