"""Vector encoding and similarity helpers.

Embeddings are persisted as opaque BLOBs: N little-endian 32-bit floats,
where N is the provider's dimensionality.  Decoding is the exact inverse,
so a stored vector compares to itself with similarity 1.0.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

_VECTOR_DTYPE = np.dtype("<f4")


def encode_vector(vector: Sequence[float]) -> bytes:
    """Pack *vector* into little-endian float32 bytes."""
    return np.asarray(vector, dtype=_VECTOR_DTYPE).tobytes()


def decode_vector(blob: bytes) -> list[float]:
    """Unpack a BLOB written by :func:`encode_vector`."""
    if len(blob) % _VECTOR_DTYPE.itemsize:
        raise ValueError(f"Vector blob length {len(blob)} is not a multiple of 4")
    return np.frombuffer(blob, dtype=_VECTOR_DTYPE).astype(np.float64).tolist()


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Return the cosine similarity of two vectors.

    Returns ``0.0`` when either vector has zero norm or the dimensions
    differ, and when a component is NaN or infinite.  The result is
    clamped to ``[-1, 1]`` to absorb rounding.
    """
    a = np.asarray(vec_a, dtype=np.float64)
    b = np.asarray(vec_b, dtype=np.float64)
    if a.shape != b.shape or a.size == 0:
        return 0.0

    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = float(np.dot(a, b)) / (norm_a * norm_b)
    if not np.isfinite(similarity):
        return 0.0
    return max(-1.0, min(1.0, similarity))
