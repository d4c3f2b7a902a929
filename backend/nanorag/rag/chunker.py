"""Token-bounded text chunking for the RAG pipeline.

Splits prose into overlapping chunks suitable for embedding.  Token counts
are approximated at four characters per token, which is close enough for
English text and avoids depending on a specific tokenizer.

Chunks prefer to end on a sentence or paragraph boundary; a boundary is only
accepted when it lies in the second half of the window, otherwise the window
is cut hard so chunks never shrink below half the target size.
"""
import logging
from typing import List

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4

# Tried in priority order, not by position.
BREAK_POINTS = (". ", "! ", "? ", "\n\n", "\n")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def chunk_by_tokens(
    text: str,
    max_tokens: int = 300,
    overlap_tokens: int = 50,
) -> List[str]:
    """Split *text* into chunks of at most *max_tokens* approximate tokens.

    Args:
        text:           Text to split.
        max_tokens:     Target chunk size in tokens (4 chars per token).
        overlap_tokens: Tokens shared between consecutive chunks.

    Returns:
        List of trimmed, non-blank chunk strings in document order.

    Raises:
        ValueError: If *max_tokens* is not positive or *overlap_tokens* is
                    negative.
    """
    if max_tokens <= 0:
        raise ValueError(f"max_tokens must be positive, got {max_tokens}")
    if overlap_tokens < 0:
        raise ValueError(f"overlap_tokens must not be negative, got {overlap_tokens}")
    return chunk_text(
        text,
        chunk_size=max_tokens * CHARS_PER_TOKEN,
        overlap=overlap_tokens * CHARS_PER_TOKEN,
    )


def chunk_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> List[str]:
    """Character-level sliding-window chunker used by ``chunk_by_tokens``.

    The window always advances: when ``end - overlap`` would not move past the
    midpoint of the window just emitted, the next window starts at ``end``.
    """
    if not text:
        return []

    if len(text) <= chunk_size:
        single = text.strip()
        return [single] if single else []

    chunks: List[str] = []
    length = len(text)
    start = 0

    while start < length:
        end = min(start + chunk_size, length)

        if end < length:
            end = _find_break(text, start, end, chunk_size)

        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)

        if end >= length:
            break

        midpoint = start + (end - start) // 2
        next_start = end - overlap
        start = next_start if next_start > midpoint else end

    logger.debug(
        "[chunker] %d chars -> %d chunks (size=%d overlap=%d)",
        length, len(chunks), chunk_size, overlap,
    )
    return chunks


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _find_break(text: str, start: int, end: int, chunk_size: int) -> int:
    """Return the window end adjusted to a natural break, or *end* unchanged."""
    threshold = start + chunk_size // 2
    for delimiter in BREAK_POINTS:
        pos = text.rfind(delimiter, start, end)
        if pos > threshold:
            return pos + len(delimiter)
    return end
