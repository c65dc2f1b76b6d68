"""Custom exceptions for external service clients."""


class ClientError(Exception):
    """Base exception for all client errors.

    Catching this exception catches any failure talking to the model server,
    a job page or the mail source.
    """

    pass


class ClientHTTPError(ClientError):
    """HTTP request failed with a 4xx or 5xx status, or never got a response.

    ``status_code`` is 0 when the connection itself failed.
    """

    def __init__(self, message: str, status_code: int, url: str) -> None:
        """Initialize HTTP error with status code and URL.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (e.g., 404, 500), 0 for connection errors
            url: URL that failed
        """
        super().__init__(message)
        self.status_code = status_code
        self.url = url

    @property
    def retryable(self) -> bool:
        """Connection errors, rate limiting and 5xx are worth retrying; other 4xx are not."""
        return self.status_code == 0 or self.status_code == 429 or self.status_code >= 500


class ClientTimeoutError(ClientError):
    """HTTP request timed out. This is typically a transient error."""

    def __init__(self, message: str, url: str) -> None:
        super().__init__(message)
        self.url = url

    @property
    def retryable(self) -> bool:
        return True


class ClientResponseError(ClientError):
    """Response parsing or validation failed (invalid JSON, missing fields)."""

    pass


class ClientConfigurationError(ClientError):
    """Invalid client configuration (bad host, timeout out of range, missing path)."""

    pass


def is_retryable(error: BaseException) -> bool:
    """Whether a client error is transient."""
    return bool(getattr(error, "retryable", False))
