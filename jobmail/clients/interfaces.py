"""Capability interfaces for the pipeline's external collaborators.

The pipeline only depends on these abstract classes; concrete clients are
constructed once at startup and injected. Tests substitute in-memory fakes.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from jobmail.domain.models import Classification, IncomingMessage


class EmbeddingProvider(ABC):
    """Computes embedding vectors."""

    @abstractmethod
    def embed(self, text: str, model: str) -> List[float]:
        """Return the embedding of ``text`` under ``model``.

        Raises:
            ClientError: On transport or response errors
        """


class TextGenerator(ABC):
    """Generates text from a prompt (LLM completion)."""

    @abstractmethod
    def generate(self, prompt: str, model: str, options: Optional[Dict[str, Any]] = None) -> str:
        """Return the model's completion for ``prompt``."""


class PageSource(ABC):
    """Fetches web pages."""

    @abstractmethod
    def fetch_page(self, url: str) -> str:
        """Return the HTML of ``url``.

        Raises:
            ClientHTTPError: On HTTP or connection errors
            ClientTimeoutError: On timeout
        """


class CrawlPolicy(ABC):
    """Decides whether a URL may be fetched."""

    @abstractmethod
    def is_crawlable(self, url: str) -> bool:
        """Whether the page at ``url`` may be fetched."""

    def skip_reason(self, url: str) -> Optional[str]:
        """Why ``url`` is not crawlable, when known."""
        return None


class MailSource(ABC):
    """Delivers messages from a mailbox."""

    @abstractmethod
    def fetch_messages(self, limit: int) -> List[IncomingMessage]:
        """Return up to ``limit`` messages, newest first."""


class MessageClassifier(ABC):
    """Decides whether a message is about jobs or projects."""

    @abstractmethod
    def classify(self, message: IncomingMessage) -> Classification:
        """Return the verdict for ``message``."""
