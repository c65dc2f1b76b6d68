"""Base HTTP client with shared request handling and error mapping."""

import logging
from typing import Any, Dict, Optional

import requests

from jobmail.logging import get_logger

from .exceptions import (
    ClientConfigurationError,
    ClientHTTPError,
    ClientResponseError,
    ClientTimeoutError,
)

logger = get_logger(__name__, component="client")


class HttpClient:
    """Shared requests session, timeout and error mapping for HTTP clients.

    Every ``requests`` failure is translated into the ClientError hierarchy so
    callers can tell transient failures (timeouts, 5xx, connection errors) from
    permanent ones (other 4xx).

    Attributes:
        timeout: HTTP request timeout in seconds
        user_agent: User-Agent header for HTTP requests
    """

    def __init__(self, timeout: float = 30, user_agent: str = "jobmail/0.1") -> None:
        """Initialize client with configuration.

        Args:
            timeout: HTTP request timeout in seconds (1-300)
            user_agent: User-Agent header for requests

        Raises:
            ClientConfigurationError: If timeout is outside valid range or user_agent is empty
        """
        if not 1 <= timeout <= 300:
            raise ClientConfigurationError(f"Timeout must be between 1 and 300 seconds, got: {timeout}")
        if not user_agent or not user_agent.strip():
            raise ClientConfigurationError("user_agent cannot be empty")

        self.timeout = timeout
        self.user_agent = user_agent.strip()

        self._session = requests.Session()
        self._session.headers.update({"User-Agent": self.user_agent})

    def close(self) -> None:
        """Release pooled connections."""
        self._session.close()

    def _request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        json_data: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> requests.Response:
        """Make an HTTP request and map failures to client errors.

        Args:
            url: URL to request
            method: HTTP method (default "GET")
            headers: Additional headers to include (merged with defaults)
            params: Query parameters
            json_data: JSON body
            timeout: Overrides the client timeout for this call

        Returns:
            The response (status below 400)

        Raises:
            ClientHTTPError: On 4xx or 5xx HTTP status, or connection errors
            ClientTimeoutError: On request timeout
        """
        effective_timeout = timeout or self.timeout
        try:
            logger.debug(
                f"HTTP {method} request to {url}",
                extra={"event": "client.request.started", "method": method, "url": url, "timeout": effective_timeout},
            )

            response = self._session.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                json=json_data,
                timeout=effective_timeout,
            )

            if response.status_code >= 400:
                is_retryable = response.status_code >= 500 or response.status_code == 429
                event_name = "client.request.retryable_error" if is_retryable else "client.request.error"
                log_level = logging.WARNING if is_retryable else logging.INFO

                logger.log(
                    log_level,
                    f"HTTP {response.status_code} error from {url}",
                    extra={"event": event_name, "status_code": response.status_code, "url": url},
                )

                raise ClientHTTPError(
                    f"HTTP {response.status_code}: {response.reason}",
                    status_code=response.status_code,
                    url=url,
                )

            return response

        except requests.exceptions.Timeout as e:
            logger.warning(
                f"Request to {url} timed out after {effective_timeout} seconds",
                extra={"event": "client.request.retryable_error", "error_type": "Timeout", "url": url},
            )
            raise ClientTimeoutError(
                f"Request to {url} timed out after {effective_timeout} seconds",
                url=url,
            ) from e
        except requests.exceptions.RequestException as e:
            logger.warning(
                f"Request to {url} failed: {e}",
                extra={"event": "client.request.retryable_error", "error_type": type(e).__name__, "url": url},
            )
            raise ClientHTTPError(f"Request to {url} failed: {e}", status_code=0, url=url) from e

    def _request_json(self, url: str, method: str = "GET", **kwargs) -> Any:
        """Like _request, returning the parsed JSON body.

        Raises:
            ClientResponseError: On invalid JSON
        """
        response = self._request(url, method=method, **kwargs)
        try:
            return response.json()
        except (ValueError, requests.exceptions.JSONDecodeError) as e:
            logger.error(
                f"Failed to parse JSON response from {url}",
                extra={"event": "client.request.error", "error_type": "JSONDecodeError", "url": url},
            )
            raise ClientResponseError(f"Failed to parse JSON response from {url}: {e}") from e
