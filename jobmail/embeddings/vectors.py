"""Vector math and the storage codec for embeddings."""

import math
import struct
from typing import Optional, Sequence, Tuple

from .exceptions import DimensionMismatch, VectorDecodeError

_FLOAT32 = 4


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors.

    Returns a value in [-1, 1]. A zero-magnitude vector has no direction, so
    the similarity is 0.0 rather than NaN.

    Raises:
        DimensionMismatch: If the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    # Rounding can push parallel vectors a hair past 1
    return max(-1.0, min(1.0, similarity))


def encode_vector(vector: Sequence[float]) -> bytes:
    """Pack a vector as little-endian float32 bytes."""
    return struct.pack(f"<{len(vector)}f", *vector)


def decode_vector(data: bytes, dimension: Optional[int] = None) -> Tuple[float, ...]:
    """Unpack little-endian float32 bytes.

    Args:
        data: Bytes produced by encode_vector
        dimension: Expected length; checked when given

    Raises:
        VectorDecodeError: If the byte length is not a whole number of floats
        DimensionMismatch: If the decoded length differs from ``dimension``
    """
    if len(data) % _FLOAT32:
        raise VectorDecodeError(f"Stored vector has {len(data)} bytes, not a multiple of {_FLOAT32}")
    count = len(data) // _FLOAT32
    if dimension is not None and count != dimension:
        raise DimensionMismatch(count, dimension)
    return struct.unpack(f"<{count}f", data)
