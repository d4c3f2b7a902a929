"""Prompt assembly for retrieval-augmented generation.

The prompt is a plain-text transcript with ``SYSTEM`` / ``CONTEXT`` /
``USER`` / ``ASSISTANT`` sections.  When nothing was retrieved the
``CONTEXT`` section is left out entirely, so the prompt has exactly the same
shape as when RAG is switched off.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .vector_store import SearchResult

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful offline AI assistant. Answer questions accurately and "
    "concisely based on the provided context. If the context doesn't contain "
    "relevant information, say so and provide your best general knowledge answer."
)

Generator = Callable[[str], str]


@dataclass(frozen=True)
class RagResponse:
    """Generated answer plus the sources that fed it."""

    response: str
    sources: list[str]
    chunks_used: int


def format_context(results: Sequence[SearchResult]) -> str:
    """Render *results* as ``[Source: id]`` blocks separated by blank lines.

    Results are emitted in the order given; the retriever already sorts them
    by descending similarity.
    """
    return "\n\n".join(
        f"[Source: {r.chunk.metadata.source}]\n{r.chunk.text}" for r in results
    )


def build_prompt(
    query: str,
    results: Sequence[SearchResult] = (),
    system_prompt: Optional[str] = None,
) -> str:
    """Assemble the generation prompt for *query*.

    Args:
        query:         The user's message.
        results:       Retrieved chunks, most similar first.
        system_prompt: Overrides ``DEFAULT_SYSTEM_PROMPT`` when given.

    Returns:
        The prompt text, ending with an open ``ASSISTANT:`` turn.
    """
    system = system_prompt or DEFAULT_SYSTEM_PROMPT
    context = format_context(results)

    sections = [f"SYSTEM:\n{system}"]
    if context.strip():
        sections.append(f"CONTEXT:\n{context}")
    sections.append(f"USER:\n{query}")
    sections.append("ASSISTANT:")

    prompt = "\n\n".join(sections)
    logger.debug(
        "[prompt_builder] prompt=%d chars context_chunks=%d",
        len(prompt), len(results),
    )
    return prompt


def distinct_sources(results: Sequence[SearchResult]) -> list[str]:
    """Source ids of *results* in first-seen order."""
    return list(dict.fromkeys(r.chunk.metadata.source for r in results))
