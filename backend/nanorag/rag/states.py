"""Indexing job states and the Source summary they report.

``IndexingState`` is a closed union of frozen dataclasses, one per state,
each carrying a ``kind`` tag so callers (and the HTTP layer) can switch on
it without isinstance chains::

    Idle -> Scraping(url) -> Chunking(title) -> Embedding(total, current)
         -> Storing -> Complete(source) | Error(message)

``Error`` is reachable from every non-terminal state.  ``Complete`` and
``Error`` are terminal for a job; the pipeline sits in the last terminal
state until the next job starts.
"""
from dataclasses import asdict, dataclass
from typing import Literal, Optional, Union


@dataclass(frozen=True)
class RagSource:
    """Summary of one ingested source, derived from its chunks."""

    id: str
    title: str
    url: Optional[str]
    chunks_count: int
    word_count: int
    timestamp: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Idle:
    kind: Literal["idle"] = "idle"


@dataclass(frozen=True)
class Scraping:
    url: str
    kind: Literal["scraping"] = "scraping"


@dataclass(frozen=True)
class Chunking:
    title: str
    kind: Literal["chunking"] = "chunking"


@dataclass(frozen=True)
class Embedding:
    total: int
    current: int = 0
    kind: Literal["embedding"] = "embedding"


@dataclass(frozen=True)
class Storing:
    kind: Literal["storing"] = "storing"


@dataclass(frozen=True)
class Complete:
    source: RagSource
    kind: Literal["complete"] = "complete"


@dataclass(frozen=True)
class Error:
    message: str
    kind: Literal["error"] = "error"


IndexingState = Union[Idle, Scraping, Chunking, Embedding, Storing, Complete, Error]

TERMINAL_KINDS = frozenset({"complete", "error"})


def is_terminal(state: IndexingState) -> bool:
    return state.kind in TERMINAL_KINDS


def state_to_dict(state: IndexingState) -> dict:
    """Flatten a state into a JSON-friendly dict with a ``kind`` key."""
    return asdict(state)
