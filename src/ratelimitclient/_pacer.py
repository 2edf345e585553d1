"""
Token bucket pacer shared by all callers of a rate-limited client.

The pacer releases tokens at a steady rate with a small burst allowance.
Tokens are handed out by reservation: each caller reserves the next token
under the lock and then sleeps outside of it until that token becomes
usable. Concurrent waiters are therefore spaced exactly one token interval
apart instead of racing each other for the same refill.

Example:
    >>> from ratelimitclient._pacer import TokenBucketPacer
    >>> pacer = TokenBucketPacer.every(limit=10, unit=1.0)  # 10 tokens/s, burst 1
    >>> pacer.wait()  # blocks until the next token is available
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import Self

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class ClientSideRateLimitError(Exception):
    """
    Base exception for errors raised by the client-side rate limiter.

    These errors originate from the pacer, before any request is dispatched,
    as opposed to server-side rate limiting (HTTP 429), which is surfaced as
    a regular response.

    Example:
        >>> try:
        ...     client.send(request)
        ... except ClientSideRateLimitError as e:
        ...     print(f"Request not admitted: {e}")
    """

    pass


class TokenAcquisitionTimeoutError(ClientSideRateLimitError):
    """
    Raised when the next token would arrive later than max_wait_time allows.

    The check happens before sleeping, so the caller fails fast and no token
    is consumed.

    Attributes:
        required_wait: Seconds the caller would have needed to wait.
        max_wait_time: The configured maximum wait time.
    """

    def __init__(self, required_wait: float, max_wait_time: float):
        self.required_wait = required_wait
        self.max_wait_time = max_wait_time
        super().__init__(
            f"Rate limit timeout: next token in {required_wait:.2f}s, max_wait_time={max_wait_time:.2f}s"
        )


class RequestCancelledError(ClientSideRateLimitError):
    """Raised when the cancellation signal is set while waiting for a token."""

    def __init__(self, message: str = "Request cancelled while waiting for a rate limit token"):
        super().__init__(message)


# =============================================================================
# Token Bucket
# =============================================================================


class TokenBucketPacer:
    """
    Thread-safe token bucket with reservation semantics.

    The bucket holds at most `burst` tokens and refills at `rate` tokens per
    second. A reservation may drive the token count negative: the deficit
    is the queue of callers already waiting, and each new reservation lands
    one token interval after the previous one.

    Over any window of `unit` seconds, a pacer built with `every(limit, unit)`
    grants at most `limit + burst` tokens.

    Args:
        rate: Tokens released per second.
        burst: Maximum number of tokens the bucket can hold (default: 1).
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        rate: float,
        burst: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        assert rate is not None, "rate cannot be None."
        assert rate > 0, "rate must be greater than 0."
        assert burst is not None, "burst cannot be None."
        assert burst >= 1, "burst must be at least 1."

        self.rate = rate
        self.burst = burst
        self._clock = clock

        # Bucket starts full
        self._tokens = float(burst)
        self._last = clock()
        # time_to_act of reservations still waiting, oldest first
        self._pending: deque[float] = deque()
        self._lock = threading.Lock()

    @classmethod
    def every(cls, limit: int, unit: float, burst: int = 1) -> Self:
        """Build a pacer releasing `limit` tokens per `unit` seconds."""
        assert limit is not None and limit > 0, "limit must be greater than 0."
        assert unit is not None and unit > 0, "unit must be greater than 0."
        return cls(rate=limit / unit, burst=burst)

    @property
    def tokens(self) -> float:
        """Tokens currently available (negative when callers are queued)."""
        with self._lock:
            return self._advance(self._clock())

    def _advance(self, now: float) -> float:
        """Return the token count at `now`, capped at burst. Caller holds the lock."""
        elapsed = max(0.0, now - self._last)
        return min(float(self.burst), self._tokens + elapsed * self.rate)

    def reserve(self, max_wait_time: float | None = None) -> float:
        """
        Reserve the next token and return how long to wait before using it.

        Args:
            max_wait_time: If set and the token would only be usable later
                than this many seconds from now, nothing is reserved.

        Returns:
            Seconds to wait before the reserved token may be used (0 if now).

        Raises:
            TokenAcquisitionTimeoutError: If the wait would exceed max_wait_time.
        """
        return self._reserve(max_wait_time)[0]

    def _reserve(self, max_wait_time: float | None) -> tuple[float, float]:
        with self._lock:
            now = self._clock()
            tokens = self._advance(now) - 1.0
            wait_time = 0.0 if tokens >= 0 else -tokens / self.rate

            if max_wait_time is not None and wait_time > max_wait_time:
                raise TokenAcquisitionTimeoutError(
                    required_wait=wait_time,
                    max_wait_time=max_wait_time,
                )

            self._tokens = tokens
            self._last = now
            time_to_act = now + wait_time
            while self._pending and self._pending[0] <= now:
                self._pending.popleft()
            if wait_time > 0:
                self._pending.append(time_to_act)
            return wait_time, time_to_act

    def _cancel_reservation(self, time_to_act: float) -> None:
        """
        Give a reserved token back to the bucket.

        The token is only restored when it is the latest pending reservation;
        otherwise later callers were already scheduled behind it.
        """
        with self._lock:
            if not self._pending or self._pending[-1] != time_to_act:
                return
            self._pending.pop()
            now = self._clock()
            self._tokens = min(float(self.burst), self._advance(now) + 1.0)
            self._last = now

    def wait(
        self,
        cancel_event: threading.Event | None = None,
        max_wait_time: float | None = None,
    ) -> None:
        """
        Block until a token is available.

        Args:
            cancel_event: When set (before or during the wait), the wait is
                aborted and the reserved token is given back.
            max_wait_time: Fail fast instead of waiting longer than this.

        Raises:
            RequestCancelledError: If cancel_event is set.
            TokenAcquisitionTimeoutError: If the wait would exceed max_wait_time.
        """
        if cancel_event is not None and cancel_event.is_set():
            raise RequestCancelledError()

        wait_time, time_to_act = self._reserve(max_wait_time)
        if wait_time <= 0:
            return

        logger.debug(f"Pacer: waiting {wait_time:.3f}s for the next token.")
        if cancel_event is None:
            time.sleep(wait_time)
            return

        if cancel_event.wait(wait_time):
            self._cancel_reservation(time_to_act)
            raise RequestCancelledError()
