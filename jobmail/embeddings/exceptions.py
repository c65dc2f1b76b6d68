"""Exceptions raised by the embedding index."""


class EmbeddingError(Exception):
    """Base exception for embedding computation and comparison errors."""

    pass


class DimensionMismatch(EmbeddingError):
    """Two vectors (or a vector and the configured dimension) differ in length."""

    def __init__(self, left: int, right: int) -> None:
        super().__init__(f"Vector dimensions differ: {left} != {right}")
        self.left = left
        self.right = right


class EmbeddingModelMismatch(EmbeddingError):
    """Vectors produced by different models were about to be compared."""

    def __init__(self, left: str, right: str) -> None:
        super().__init__(f"Embedding models differ: '{left}' vs '{right}'")
        self.left = left
        self.right = right


class EmbeddingTimeoutError(EmbeddingError):
    """The embedding call did not return within its hard timeout."""

    def __init__(self, message: str, timeout: float) -> None:
        super().__init__(message)
        self.timeout = timeout


class VectorDecodeError(EmbeddingError):
    """A stored vector could not be decoded."""

    pass
