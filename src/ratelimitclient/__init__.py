"""
Rate-limited HTTP client for Python.

Wraps any HTTP client so that requests are admitted at a steady rate, no
more than `limit` requests are in flight at once, and responses rejected
with HTTP 429 are retried with jittered backoff.

Quick Start:
    >>> from ratelimitclient import RateLimitedHttpClient, SessionHttpClient
    >>> client = RateLimitedHttpClient(
    ...     delegate=SessionHttpClient(),
    ...     limit=100,
    ...     unit=1.0,
    ... )
    >>> with client.get("https://api.example.com/items") as response:
    ...     print(response.status_code)

Global Configuration:
    >>> from ratelimitclient import RLC, ConfigAwareHttpClient
    >>> RLC.configure(rate_limit={"enabled": True, "limit": 10, "unit": 1.0})
    >>> client = ConfigAwareHttpClient()

HTTP Client:
    - HttpClient: Abstract base class for HTTP clients.
    - SessionHttpClient: Transport backed by requests.Session.
    - ConfigAwareHttpClient: Client assembled from RLC.config. Default.
    - RateLimitedHttpClient: Decorator with pacing, concurrency gate and 429 retry.

Rate Limiting Primitives:
    - TokenBucketPacer: Shared token bucket with cancellable waits.
    - ConcurrencyGate: Counting semaphore handing out ConcurrencySlot guards.
    - JitteredBackoff: Retry delay of `unit` plus up to `unit / 2` of jitter.

Errors:
    - ClientSideRateLimitError: Base exception for requests not admitted.
    - TokenAcquisitionTimeoutError: Raised when the pacer wait exceeds max_wait_time.
    - RequestCancelledError: Raised when the cancellation signal is set.

Configuration:
    - RLC: Global configuration singleton.
    - RLCConfig, HttpConfig, RateLimitConfig: Configuration dataclasses.
    - ConfigEnvVarError, ConfigValidationError: Configuration errors.
"""

from importlib.metadata import version as _get_version

__version__ = _get_version("ratelimitclient")

from ratelimitclient._config import (
    RLC,
    ConfigEntry,
    ConfigEnvVarError,
    ConfigValidationError,
    HttpConfig,
    RateLimitConfig,
    RLCConfig,
)
from ratelimitclient._http import (
    ConfigAwareHttpClient,
    HttpClient,
    SessionHttpClient,
)
from ratelimitclient._pacer import (
    ClientSideRateLimitError,
    RequestCancelledError,
    TokenAcquisitionTimeoutError,
    TokenBucketPacer,
)
from ratelimitclient._rate_limit import (
    ConcurrencyGate,
    ConcurrencySlot,
    RateLimitedHttpClient,
)
from ratelimitclient._retry import JitteredBackoff, RetryAttempt

__all__ = [
    "__version__",
    # Configuration
    "RLC",
    "RLCConfig",
    "HttpConfig",
    "RateLimitConfig",
    "ConfigEntry",
    "ConfigEnvVarError",
    "ConfigValidationError",
    # HTTP Client
    "HttpClient",
    "SessionHttpClient",
    "ConfigAwareHttpClient",
    "RateLimitedHttpClient",
    # Rate Limiting Primitives
    "TokenBucketPacer",
    "ConcurrencyGate",
    "ConcurrencySlot",
    "JitteredBackoff",
    "RetryAttempt",
    # Errors
    "ClientSideRateLimitError",
    "TokenAcquisitionTimeoutError",
    "RequestCancelledError",
]
