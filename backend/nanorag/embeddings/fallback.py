"""Deterministic hash-based fallback embedding.

Used by the indexing pipeline when the embedding provider fails for a single
chunk, so one bad call never aborts a whole ingestion job.  The vector is a
bag-of-words histogram hashed into a fixed number of buckets.

The bucket hash is blake2b rather than the built-in ``hash()``: string
hashing is salted per process, and fallback vectors must be bit-identical
across runs so re-ingestion and tests are stable.
"""
import hashlib
import re

import numpy as np

FALLBACK_DIM = 384

_NON_WORD_RE = re.compile(r"\W+")
_MIN_TOKEN_LEN = 3


def stable_hash(token: str) -> int:
    """Return a process-independent unsigned 64-bit hash of *token*."""
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big")


def fallback_embedding(text: str, dimension: int = FALLBACK_DIM) -> np.ndarray:
    """Embed *text* into an L2-normalised float32 vector of *dimension*.

    Text without any token longer than two characters maps to the zero
    vector.
    """
    vec = np.zeros(dimension, dtype=np.float32)
    words = [w for w in _NON_WORD_RE.split(text.lower()) if len(w) >= _MIN_TOKEN_LEN]
    if not words:
        return vec

    weight = np.float32(1.0 / len(words))
    for word in words:
        vec[stable_hash(word) % dimension] += weight

    norm = np.linalg.norm(vec)
    if norm > 0:
        vec /= norm
    return vec
