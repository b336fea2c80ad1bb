"""Embedding blob codec and vector math.

Persisted layout: big-endian IEEE-754 float32, 4 bytes per dimension, no
header. A 384-dimension vector is a 1536-byte blob.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np

logger = logging.getLogger(__name__)

_BLOB_DTYPE = np.dtype(">f4")


def encode_embedding(embedding: Sequence[float]) -> bytes:
    """Serialise *embedding* to a big-endian float32 blob."""
    return np.asarray(embedding, dtype=_BLOB_DTYPE).tobytes()


def decode_embedding(blob: bytes) -> list[float]:
    """Deserialise a big-endian float32 blob. Trailing partial floats are ignored."""
    usable = len(blob) - len(blob) % _BLOB_DTYPE.itemsize
    return np.frombuffer(blob[:usable], dtype=_BLOB_DTYPE).astype(np.float32).tolist()


def l2_normalize(vector: Sequence[float]) -> list[float]:
    """Return *vector* scaled to unit length; a zero vector is returned unchanged."""
    arr = np.asarray(vector, dtype=np.float64)
    norm = float(np.linalg.norm(arr))
    if norm == 0.0:
        return arr.tolist()
    return (arr / norm).tolist()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of *a* and *b*.

    Returns 0.0 when either vector is empty, the dimensions differ, or either
    norm is zero. For correctly stored data these cases never occur, so they
    are logged as data-integrity faults.
    """
    if len(a) == 0 or len(b) == 0:
        logger.warning("Empty embedding in similarity computation")
        return 0.0
    if len(a) != len(b):
        logger.warning("Embedding dimension mismatch: %d != %d", len(a), len(b))
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denominator = float(np.linalg.norm(va)) * float(np.linalg.norm(vb))
    if denominator == 0.0:
        logger.warning("Zero-norm embedding in similarity computation")
        return 0.0
    return float(np.dot(va, vb) / denominator)
