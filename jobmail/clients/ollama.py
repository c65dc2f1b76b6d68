"""Ollama model server client (embeddings and text generation)."""

from typing import Any, Dict, List, Optional

from jobmail.logging import get_logger

from .base import HttpClient
from .exceptions import ClientConfigurationError, ClientError, ClientResponseError
from .interfaces import EmbeddingProvider, TextGenerator

logger = get_logger(__name__, component="ollama")


class OllamaClient(HttpClient, EmbeddingProvider, TextGenerator):
    """Thin client for the Ollama REST API.

    Example:
        >>> client = OllamaClient("http://localhost:11434")
        >>> vector = client.embed("Senior Engineer", "hf.co/Mungert/all-MiniLM-L6-v2-GGUF")
    """

    def __init__(
        self,
        host: str = "http://localhost:11434",
        timeout: float = 120,
        user_agent: str = "jobmail/0.1",
        embed_timeout: Optional[float] = None,
    ):
        """Initialize the client.

        Args:
            host: Base URL of the Ollama server
            timeout: Request timeout for generation calls
            user_agent: User-Agent header
            embed_timeout: Request timeout for embedding calls (defaults to ``timeout``)
        """
        super().__init__(timeout=timeout, user_agent=user_agent)
        self.embed_timeout = embed_timeout
        if not host or not host.startswith(("http://", "https://")):
            raise ClientConfigurationError(f"Ollama host must be an http(s) URL, got: {host!r}")
        self.host = host.rstrip("/")

    def embed(self, text: str, model: str, timeout: Optional[float] = None) -> List[float]:
        """Embedding vector of ``text``.

        Raises:
            ClientResponseError: If the response carries no embedding
        """
        data = self._request_json(
            f"{self.host}/api/embeddings",
            method="POST",
            json_data={"model": model, "prompt": text},
            timeout=timeout or self.embed_timeout,
        )
        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not isinstance(embedding, list) or not embedding:
            raise ClientResponseError(f"Ollama returned no embedding for model {model}")
        return [float(x) for x in embedding]

    def generate(self, prompt: str, model: str, options: Optional[Dict[str, Any]] = None) -> str:
        """Non-streaming completion of ``prompt``."""
        payload: Dict[str, Any] = {"model": model, "prompt": prompt, "stream": False}
        if options:
            payload["options"] = options

        data = self._request_json(f"{self.host}/api/generate", method="POST", json_data=payload)
        if not isinstance(data, dict) or "response" not in data:
            raise ClientResponseError(f"Ollama returned no completion for model {model}")
        return str(data["response"])

    def list_models(self) -> List[str]:
        """Names of locally installed models."""
        data = self._request_json(f"{self.host}/api/tags")
        models = data.get("models", []) if isinstance(data, dict) else []
        return [m.get("name", "") for m in models if isinstance(m, dict)]

    def is_model_available(self, model: str) -> bool:
        """Whether ``model`` is installed; False when the server is unreachable."""
        try:
            names = self.list_models()
        except ClientError as e:
            logger.warning(
                f"Could not list Ollama models: {e}",
                extra={"event": "ollama.models.unavailable", "host": self.host},
            )
            return False
        base = model.split(":")[0]
        return any(name == model or name.split(":")[0] == base for name in names)
