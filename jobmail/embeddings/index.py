"""Embedding index: computes and compares model-tagged vectors."""

from typing import Optional

from jobmail.domain.models import Embedding
from jobmail.logging import get_logger
from jobmail.utils.timeouts import run_with_timeout

from .exceptions import DimensionMismatch, EmbeddingError, EmbeddingModelMismatch, EmbeddingTimeoutError
from .vectors import cosine_similarity

logger = get_logger(__name__, component="embeddings")


class EmbeddingIndex:
    """Turns text into embeddings with a fixed model and compares them.

    The provider call runs under a hard timeout: when it expires the call is
    abandoned on its helper thread and EmbeddingTimeoutError is raised, so a
    hung model server never pins a worker.
    """

    def __init__(
        self,
        provider,
        model: str,
        dimension: Optional[int] = None,
        timeout: Optional[float] = 20.0,
    ):
        """Initialize the index.

        Args:
            provider: EmbeddingProvider implementation
            model: Model identifier; stored with every vector
            dimension: Expected vector length (unchecked when None)
            timeout: Hard timeout in seconds for one embedding call
        """
        self.provider = provider
        self.model = model
        self.dimension = dimension
        self.timeout = timeout

    def embed(self, text: str) -> Embedding:
        """Compute the embedding of ``text``.

        Raises:
            EmbeddingTimeoutError: If the provider did not answer in time
            DimensionMismatch: If the vector length differs from the configured dimension
            EmbeddingError: If the provider returned no vector
        """
        vector = run_with_timeout(
            self.provider.embed,
            self.timeout,
            text,
            self.model,
            name="embedding-call",
            error_cls=EmbeddingTimeoutError,
        )
        if not vector:
            raise EmbeddingError(f"Model {self.model} returned an empty embedding")
        if self.dimension is not None and len(vector) != self.dimension:
            raise DimensionMismatch(len(vector), self.dimension)

        logger.debug(
            f"Computed embedding ({len(vector)} dims)",
            extra={"event": "embedding.computed", "model": self.model, "text_length": len(text)},
        )
        return Embedding(vector=tuple(float(x) for x in vector), model=self.model)

    def similarity(self, a: Embedding, b: Embedding) -> float:
        """Cosine similarity of two embeddings from the same model.

        Raises:
            EmbeddingModelMismatch: If the model tags differ
            DimensionMismatch: If the vectors differ in length
        """
        if a.model != b.model:
            raise EmbeddingModelMismatch(a.model, b.model)
        return cosine_similarity(a.vector, b.vector)

    def is_current(self, embedding: Optional[Embedding]) -> bool:
        """Whether a stored embedding was produced by this index's model."""
        return embedding is not None and embedding.model == self.model
