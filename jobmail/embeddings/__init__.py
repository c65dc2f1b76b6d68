"""Embedding index, vector math and the vector storage codec."""

from .exceptions import (
    DimensionMismatch,
    EmbeddingError,
    EmbeddingModelMismatch,
    EmbeddingTimeoutError,
    VectorDecodeError,
)
from .index import EmbeddingIndex
from .vectors import cosine_similarity, decode_vector, encode_vector

__all__ = [
    "EmbeddingIndex",
    "cosine_similarity",
    "encode_vector",
    "decode_vector",
    "EmbeddingError",
    "DimensionMismatch",
    "EmbeddingModelMismatch",
    "EmbeddingTimeoutError",
    "VectorDecodeError",
]
