"""External service clients and the interfaces the pipeline depends on."""

from .exceptions import (
    ClientConfigurationError,
    ClientError,
    ClientHTTPError,
    ClientResponseError,
    ClientTimeoutError,
    is_retryable,
)
from .interfaces import (
    CrawlPolicy,
    EmbeddingProvider,
    MailSource,
    MessageClassifier,
    PageSource,
    TextGenerator,
)
from .mail import KeywordClassifier, LLMClassifier, MaildirSource
from .ollama import OllamaClient
from .pages import PageFetcher
from .platforms import PlatformPolicy

__all__ = [
    # Interfaces
    "EmbeddingProvider",
    "TextGenerator",
    "PageSource",
    "CrawlPolicy",
    "MailSource",
    "MessageClassifier",
    # Clients
    "OllamaClient",
    "PageFetcher",
    "PlatformPolicy",
    "MaildirSource",
    "KeywordClassifier",
    "LLMClassifier",
    # Exceptions
    "ClientError",
    "ClientHTTPError",
    "ClientTimeoutError",
    "ClientResponseError",
    "ClientConfigurationError",
    "is_retryable",
]
