"""Pydantic schemas for the RAG API."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .retriever import CHUNK_SIZE_RANGE, MIN_SIMILARITY_RANGE, TOP_K_RANGE


class IndexUrlRequest(BaseModel):
    """Request body for POST /rag/index/url."""

    url: str = Field(..., min_length=1, description="Page to scrape and index")


class IndexTextRequest(BaseModel):
    """Request body for POST /rag/index/text."""

    text: str = Field(..., min_length=1, description="Text to index")
    source_id: str = Field(..., min_length=1, description="Caller-chosen source identifier")
    title: Optional[str] = Field(default=None, description="Display title for the source")


class IndexingStateResponse(BaseModel):
    """Current (or terminal) state of the indexing job.

    ``kind`` is one of idle, scraping, chunking, embedding, storing,
    complete, error; the remaining keys depend on it.
    """

    kind: str
    detail: Dict[str, Any] = Field(default_factory=dict)


class SourceItem(BaseModel):
    id: str
    title: str
    url: Optional[str] = None
    chunks_count: int
    word_count: int
    timestamp: int


class SourcesResponse(BaseModel):
    sources: List[SourceItem]


class DeleteSourceResponse(BaseModel):
    source_id: str
    chunks_removed: int


class RetrieveRequest(BaseModel):
    """Request body for POST /rag/retrieve."""

    query: str = Field(..., min_length=1)


class RetrievedChunk(BaseModel):
    id: int
    text: str
    source: str
    chunk_index: int
    total_chunks: int
    title: Optional[str] = None
    url: Optional[str] = None
    score: float


class RetrieveResponse(BaseModel):
    query: str
    results: List[RetrievedChunk]


class PromptRequest(BaseModel):
    """Request body for POST /rag/prompt."""

    query: str = Field(..., min_length=1)
    system_prompt: Optional[str] = None


class PromptResponse(BaseModel):
    prompt: str
    sources: List[str]
    chunks_used: int


class RagConfigResponse(BaseModel):
    enabled: bool
    top_k: int
    chunk_size_tokens: int
    min_similarity: float


class RagConfigUpdate(BaseModel):
    """Partial update for PUT /rag/config.  Values are clamped, not rejected."""

    enabled: Optional[bool] = None
    top_k: Optional[int] = Field(
        default=None, description=f"Clamped to {TOP_K_RANGE[0]}..{TOP_K_RANGE[1]}"
    )
    chunk_size_tokens: Optional[int] = Field(
        default=None, description=f"Clamped to {CHUNK_SIZE_RANGE[0]}..{CHUNK_SIZE_RANGE[1]}"
    )
    min_similarity: Optional[float] = Field(
        default=None,
        description=f"Clamped to {MIN_SIMILARITY_RANGE[0]}..{MIN_SIMILARITY_RANGE[1]}",
    )


class StatsResponse(BaseModel):
    enabled: bool
    sources: int
    total_chunks: int
    embedding_dimension: int
    estimated_memory_bytes: int
    estimated_memory_mb: float
    top_k: int
    chunk_size: int
    min_similarity: float
