"""Test helper utilities for jobmail tests."""

from .fakes import (
    TEST_MODEL,
    AllowAllPolicy,
    DenyAllPolicy,
    FakeEmbeddingProvider,
    FakeMailSource,
    FakePageSource,
    FakeTextGenerator,
    FixedClassifier,
    make_config,
    make_message,
    unit_vector,
    vector_with_similarity,
)

__all__ = [
    "TEST_MODEL",
    "AllowAllPolicy",
    "DenyAllPolicy",
    "FakeEmbeddingProvider",
    "FakeMailSource",
    "FakePageSource",
    "FakeTextGenerator",
    "FixedClassifier",
    "make_config",
    "make_message",
    "unit_vector",
    "vector_with_similarity",
]
