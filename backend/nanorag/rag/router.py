"""RAG router: ingestion, retrieval and source management endpoints.

Endpoints:
    POST   /rag/index/url            Scrape and index a web page
    POST   /rag/index/text           Index caller-supplied text
    POST   /rag/index/cancel         Cancel the running ingestion job
    GET    /rag/state                Current indexing job state
    POST   /rag/retrieve             Retrieve chunks for a query
    POST   /rag/prompt               Retrieve and assemble a prompt
    GET    /rag/sources              List ingested sources
    DELETE /rag/sources/{source_id}  Delete a source and its chunks
    DELETE /rag                      Clear the whole store
    GET    /rag/config               Current RAG config
    PUT    /rag/config               Update (clamped) RAG config
    GET    /rag/stats                Aggregate stats

Ingestion endpoints wait for the job to finish and return its terminal
state; a failed job is reported as ``kind == "error"`` with HTTP 200, since
job failures are part of the state machine rather than server errors.
"""
import asyncio
import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from .manager import RagManager
from .prompt_builder import distinct_sources
from .schemas import (
    DeleteSourceResponse,
    IndexingStateResponse,
    IndexTextRequest,
    IndexUrlRequest,
    PromptRequest,
    PromptResponse,
    RagConfigResponse,
    RagConfigUpdate,
    RetrievedChunk,
    RetrieveRequest,
    RetrieveResponse,
    SourceItem,
    SourcesResponse,
    StatsResponse,
)
from .states import IndexingState, state_to_dict
from .vector_store import SearchResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rag", tags=["rag"])

# ---------------------------------------------------------------------------
# Manager registration
# ---------------------------------------------------------------------------

_manager: Optional[RagManager] = None


def get_manager() -> Optional[RagManager]:
    """Return the RagManager wired by the app lifespan, or None."""
    return _manager


def set_manager(manager: Optional[RagManager]) -> None:
    """Set (or clear) the RagManager used by the endpoints."""
    global _manager
    _manager = manager


def _not_configured() -> JSONResponse:
    return JSONResponse({"error": "RAG engine not configured"}, status_code=503)


def _state_response(state: IndexingState) -> IndexingStateResponse:
    detail = state_to_dict(state)
    kind = detail.pop("kind")
    return IndexingStateResponse(kind=kind, detail=detail)


def _result_item(result: SearchResult) -> RetrievedChunk:
    chunk = result.chunk
    return RetrievedChunk(
        id=chunk.id,
        text=chunk.text,
        source=chunk.metadata.source,
        chunk_index=chunk.metadata.chunk_index,
        total_chunks=chunk.metadata.total_chunks,
        title=chunk.metadata.title,
        url=chunk.metadata.url,
        score=result.score,
    )


def _config_response(manager: RagManager) -> RagConfigResponse:
    return RagConfigResponse(**manager.config.model_dump())


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

@router.post("/index/url", response_model=IndexingStateResponse)
async def index_url(request: IndexUrlRequest) -> IndexingStateResponse | JSONResponse:
    """Scrape *url*, chunk, embed and store it."""
    logger.info("[rag/index/url] Received: url=%s", request.url)
    manager = get_manager()
    if manager is None:
        logger.warning("[rag/index/url] Manager not configured, returning 503")
        return _not_configured()

    state = await manager.index_url(request.url)
    logger.info("[rag/index/url] Finished: url=%s state=%s", request.url, state.kind)
    return _state_response(state)


@router.post("/index/text", response_model=IndexingStateResponse)
async def index_text(request: IndexTextRequest) -> IndexingStateResponse | JSONResponse:
    """Chunk, embed and store caller-supplied text."""
    logger.info(
        "[rag/index/text] Received: source=%s chars=%d",
        request.source_id, len(request.text),
    )
    manager = get_manager()
    if manager is None:
        logger.warning("[rag/index/text] Manager not configured, returning 503")
        return _not_configured()

    state = await manager.index_text(request.text, request.source_id, request.title)
    logger.info("[rag/index/text] Finished: source=%s state=%s", request.source_id, state.kind)
    return _state_response(state)


@router.post("/index/cancel", response_model=None)
async def cancel_indexing() -> dict | JSONResponse:
    manager = get_manager()
    if manager is None:
        return _not_configured()
    return {"cancelled": manager.cancel_indexing()}


@router.get("/state", response_model=IndexingStateResponse)
async def get_state() -> IndexingStateResponse | JSONResponse:
    manager = get_manager()
    if manager is None:
        return _not_configured()
    return _state_response(manager.indexing_state)


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

@router.post("/retrieve", response_model=RetrieveResponse)
async def retrieve(request: RetrieveRequest) -> RetrieveResponse | JSONResponse:
    """Return the chunks most relevant to the query (possibly none)."""
    manager = get_manager()
    if manager is None:
        return _not_configured()

    results = await manager.retrieve(request.query)
    return RetrieveResponse(
        query=request.query,
        results=[_result_item(r) for r in results],
    )


@router.post("/prompt", response_model=PromptResponse)
async def build_prompt(request: PromptRequest) -> PromptResponse | JSONResponse:
    """Retrieve for the query and return the assembled generation prompt."""
    manager = get_manager()
    if manager is None:
        return _not_configured()

    results = await manager.retrieve(request.query)
    prompt = manager.build_prompt(request.query, results, request.system_prompt)
    return PromptResponse(
        prompt=prompt,
        sources=distinct_sources(results),
        chunks_used=len(results),
    )


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

@router.get("/sources", response_model=SourcesResponse)
async def list_sources() -> SourcesResponse | JSONResponse:
    manager = get_manager()
    if manager is None:
        return _not_configured()
    return SourcesResponse(sources=[SourceItem(**s.to_dict()) for s in manager.sources])


@router.delete("/sources/{source_id}", response_model=DeleteSourceResponse)
async def delete_source(source_id: str) -> DeleteSourceResponse | JSONResponse:
    manager = get_manager()
    if manager is None:
        return _not_configured()

    try:
        removed = await manager.delete_source(source_id)
    except Exception as exc:
        logger.exception("[rag/sources] Delete failed: %s", exc)
        return JSONResponse({"error": f"Delete failed: {exc}"}, status_code=500)

    if removed == 0:
        return JSONResponse({"error": f"Unknown source: {source_id}"}, status_code=404)
    logger.info("[rag/sources] Deleted source=%s chunks=%d", source_id, removed)
    return DeleteSourceResponse(source_id=source_id, chunks_removed=removed)


@router.delete("", response_model=None)
async def clear_all() -> dict | JSONResponse:
    manager = get_manager()
    if manager is None:
        return _not_configured()

    try:
        await manager.clear_all()
    except Exception as exc:
        logger.exception("[rag] Clear failed: %s", exc)
        return JSONResponse({"error": f"Clear failed: {exc}"}, status_code=500)
    return {"status": "cleared"}


# ---------------------------------------------------------------------------
# Config & stats
# ---------------------------------------------------------------------------

@router.get("/config", response_model=RagConfigResponse)
async def get_rag_config() -> RagConfigResponse | JSONResponse:
    manager = get_manager()
    if manager is None:
        return _not_configured()
    return _config_response(manager)


@router.put("/config", response_model=RagConfigResponse)
async def update_rag_config(request: RagConfigUpdate) -> RagConfigResponse | JSONResponse:
    manager = get_manager()
    if manager is None:
        return _not_configured()

    changes = request.model_dump(exclude_none=True)
    if changes:
        manager.update_config(**changes)
        logger.info("[rag/config] Updated: %s", changes)
    return _config_response(manager)


@router.get("/stats", response_model=StatsResponse)
async def get_stats() -> StatsResponse | JSONResponse:
    manager = get_manager()
    if manager is None:
        return _not_configured()
    # get_stats takes the store lock, which a running Storing stage may hold.
    stats = await asyncio.get_running_loop().run_in_executor(None, manager.get_stats)
    return StatsResponse(**asdict(stats))
