"""
HTTP client abstraction for the ratelimitclient package.

Every client exposes a single primitive, `send(request)`, which takes a
`requests.PreparedRequest` and returns a `requests.Response`. Decorators
(such as RateLimitedHttpClient) wrap another client and expose the same
primitive, so they can be stacked or swapped for a raw client freely.

Available implementations:
    - SessionHttpClient: Transport backed by a `requests.Session`.
    - ConfigAwareHttpClient: Builds its delegate from `RLC.config`. Default.
    - RateLimitedHttpClient: Decorator that paces, gates and retries requests.

Example:
    >>> from ratelimitclient._http import ConfigAwareHttpClient
    >>> client = ConfigAwareHttpClient()
    >>> with client.get("https://api.example.com/v1/resource") as response:
    ...     print(response.json())

For rate limiting:
    >>> from ratelimitclient._http import SessionHttpClient
    >>> from ratelimitclient._rate_limit import RateLimitedHttpClient
    >>> client = RateLimitedHttpClient(
    ...     delegate=SessionHttpClient(),
    ...     limit=10,
    ...     unit=1.0,
    ... )
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, override

import requests

logger = logging.getLogger(__name__)


# =============================================================================
# Abstract Base Class
# =============================================================================


class HttpClient(ABC):
    """
    Abstract base class for HTTP clients.

    Implementations only need to provide `send()`. The `request()`, `get()`
    and `post()` helpers build a prepared request and go through `send()`,
    so decorators get them for free.

    Implementations must be safe for concurrent use from multiple threads.

    Example:
        >>> class MyHttpClient(HttpClient):
        ...     def send(self, request):
        ...         return requests.Session().send(request, timeout=30)
    """

    @abstractmethod
    def send(self, request: requests.PreparedRequest) -> requests.Response:
        """
        Send a prepared request and return its response.

        Args:
            request: The request to send.

        Returns:
            The HTTP response.

        Raises:
            requests.RequestException: If the HTTP request fails.
        """
        pass

    def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
        data: Any | None = None,
    ) -> requests.Response:
        """
        Build a request and send it through `send()`.

        Args:
            method: HTTP method (GET, POST, ...).
            url: The full URL to request.
            headers: Headers to include.
            params: Query string parameters.
            json: JSON-serializable body.
            data: Raw body (bytes, str or form dict).

        Returns:
            The HTTP response.

        Raises:
            AssertionError: If method or url is empty.
            requests.RequestException: If the HTTP request fails.
        """
        assert method, "Method cannot be empty."
        assert url, "URL cannot be empty."

        prepared = requests.Request(
            method=method.upper(),
            url=url,
            headers=headers,
            params=params,
            json=json,
            data=data,
        ).prepare()
        return self.send(prepared)

    def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> requests.Response:
        """
        Execute a GET request.

        Args:
            url: The full URL to request.
            headers: Headers to include.
            params: Query string parameters.

        Returns:
            The HTTP response.
        """
        return self.request("GET", url, headers=headers, params=params)

    def post(
        self,
        url: str,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        """
        Execute a POST request with JSON body.

        Args:
            url: The full URL to request.
            data: JSON-serializable data to send in the request body.
            headers: Headers to include.

        Returns:
            The HTTP response.
        """
        return self.request("POST", url, headers=headers, json=data)


# =============================================================================
# requests.Session Implementation
# =============================================================================


class SessionHttpClient(HttpClient):
    """
    HTTP transport backed by a `requests.Session`.

    Connection pooling, TLS, proxies and cookies are all handled by the
    session. Timeout and streaming default to `RLC.config.http`.

    Unless configured otherwise, responses are streamed: the body is still
    unread when the response is returned. Reading it (`response.content`,
    `response.json()`) or closing the response completes it.

    Args:
        session: Session to use. A new one is created if None.
        timeout: Request timeout in seconds. Defaults to `RLC.config.http.request_timeout`.
        stream: Whether to defer body download. Defaults to `RLC.config.http.stream`,
            or True when that is None.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float | None = None,
        stream: bool | None = None,
    ):
        from ratelimitclient._config import RLC

        http_config = RLC.config.http
        self.timeout = timeout if timeout is not None else http_config.request_timeout
        if stream is None:
            stream = http_config.stream if http_config.stream is not None else True
        self.stream = stream

        assert self.timeout > 0, "timeout must be greater than 0."

        self._session = session or requests.Session()

    @override
    def send(self, request: requests.PreparedRequest) -> requests.Response:
        """
        Send the request through the session.

        Raises:
            AssertionError: If request is None.
            requests.RequestException: If the HTTP request fails.
        """
        assert request is not None, "Request cannot be None."

        return self._session.send(request, timeout=self.timeout, stream=self.stream)

    def close(self) -> None:
        """Close the underlying session and its pooled connections."""
        self._session.close()


# =============================================================================
# Config-Aware Implementation
# =============================================================================


class ConfigAwareHttpClient(HttpClient):
    """
    HTTP client that assembles itself from the global configuration.

    On first use it creates a SessionHttpClient and, when
    `RLC.config.rate_limit.enabled` is True, wraps it in a
    RateLimitedHttpClient configured from `RLC.config.rate_limit`.

    Creation happens lazily on the first request, allowing configuration
    via `RLC.configure()` after import. Thread-safe (double-checked locking).

    Responses are streamed only when rate limiting is enabled (or when
    `RLC.config.http.stream` says so). A streamed response holds its pooled
    connection until its body is read or it is closed.

    Example:
        >>> from ratelimitclient import RLC, ConfigAwareHttpClient
        >>> RLC.configure(rate_limit={"enabled": True, "limit": 10, "unit": 1.0})
        >>> client = ConfigAwareHttpClient()
        >>> response = client.get("https://api.example.com/endpoint")
    """

    def __init__(self) -> None:
        self._delegate: HttpClient | None = None
        self._lock = threading.Lock()

    def _get_delegate(self) -> HttpClient:
        """Get or create the delegate HTTP client."""
        if self._delegate is None:
            with self._lock:
                if self._delegate is None:
                    self._delegate = self._create_delegate()
        return self._delegate

    def _create_delegate(self) -> HttpClient:
        """Create the base transport, wrapped with rate limiting if configured."""
        from ratelimitclient._config import RLC

        config = RLC.config
        stream = config.http.stream
        if stream is None:
            # Only the rate limiter needs the body left open
            stream = config.rate_limit.enabled
        base_client = SessionHttpClient(stream=stream)
        return self._apply_rate_limiting(base_client)

    def _apply_rate_limiting(self, client: HttpClient) -> HttpClient:
        """
        Wrap the client with rate limiting if configured.

        Args:
            client: The base HTTP client to potentially wrap.

        Returns:
            The client wrapped with rate limiting, or the original client
            if rate limiting is not enabled.
        """
        from ratelimitclient._config import RLC
        from ratelimitclient._rate_limit import RateLimitedHttpClient

        rl_config = RLC.config.rate_limit

        if not rl_config.enabled:
            logger.debug("ConfigAwareHttpClient: Rate limiting disabled. Using the transport directly.")
            return client

        logger.debug(
            "ConfigAwareHttpClient: Applying rate limiting "
            f"(limit={rl_config.limit}, unit={rl_config.unit}s, retries={rl_config.retries})."
        )
        return RateLimitedHttpClient(
            delegate=client,
            limit=rl_config.limit,
            unit=rl_config.unit,
            retries=rl_config.retries,
            max_wait_time=rl_config.max_wait_time,
        )

    @override
    def send(self, request: requests.PreparedRequest) -> requests.Response:
        """Delegate the request to the configured HTTP client."""
        return self._get_delegate().send(request)
