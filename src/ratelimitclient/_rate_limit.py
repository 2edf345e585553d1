"""
Rate limiting decorator for HTTP clients.

RateLimitedHttpClient combines three mechanisms in front of a delegate client:

- Concurrency gate: at most `limit` requests may be admitted at once. A slot
  is held from admission until the caller is done with the response body.
- Pacer: a token bucket releasing `limit` tokens per `unit` seconds with a
  burst of 1, so idle periods never turn into a flood of requests.
- Retry: responses with HTTP 429 are retried after `unit` plus a random
  delay of up to `unit / 2`, holding the slot while sleeping.

Example:
    >>> from ratelimitclient._rate_limit import RateLimitedHttpClient
    >>> from ratelimitclient._http import SessionHttpClient
    >>> client = RateLimitedHttpClient(
    ...     delegate=SessionHttpClient(),
    ...     limit=100,
    ...     unit=1.0,
    ... )
    >>> with client.get("https://api.example.com/items") as response:
    ...     if response.status_code == 429:
    ...         print("Still rate limited after all retries")
"""

import logging
import random
import threading
import time
from collections.abc import Callable, Iterator
from typing import Any, override

import requests

from ratelimitclient._http import HttpClient
from ratelimitclient._pacer import TokenBucketPacer
from ratelimitclient._retry import JitteredBackoff, RetryAttempt

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS = 429


# =============================================================================
# Concurrency Gate
# =============================================================================


class ConcurrencySlot:
    """
    One admission into a ConcurrencyGate.

    `release()` is idempotent: only the first call gives the slot back. Once
    `hand_off()` is called, ownership moves to whoever will release it later
    (the response body) and the admitting code must not release it.
    """

    def __init__(self, gate: "ConcurrencyGate"):
        self._gate = gate
        self._released = False
        self._handed_off = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    @property
    def handed_off(self) -> bool:
        return self._handed_off

    def hand_off(self) -> None:
        self._handed_off = True

    def release(self) -> bool:
        """
        Give the slot back to the gate.

        Returns:
            True if this call released the slot, False if it was already released.
        """
        with self._lock:
            if self._released:
                return False
            self._released = True
        self._gate._release()
        return True


class ConcurrencyGate:
    """
    Counting semaphore bounding the number of admitted requests.

    Args:
        capacity: Maximum number of slots held at the same time.
    """

    def __init__(self, capacity: int):
        assert capacity is not None, "capacity cannot be None."
        assert capacity > 0, "capacity must be greater than 0."

        self.capacity = capacity
        self._semaphore = threading.BoundedSemaphore(capacity)
        self._in_use = 0
        self._lock = threading.Lock()

    @property
    def in_use(self) -> int:
        """Number of slots currently held."""
        with self._lock:
            return self._in_use

    def acquire(self) -> ConcurrencySlot:
        """Block until a slot is free and return it."""
        self._semaphore.acquire()
        with self._lock:
            self._in_use += 1
        return ConcurrencySlot(self)

    def _release(self) -> None:
        with self._lock:
            self._in_use -= 1
        self._semaphore.release()


# =============================================================================
# Response Body Wrapper
# =============================================================================


class SlotReleasingStream:
    """
    Proxy around `response.raw` that releases a slot when the body is done.

    The release callback runs once, on whichever comes first:
    - `close()` (called by `Response.close()` and `with response:`)
    - `release_conn()` (called by `Response.close()` after the content was read)
    - the body being read to the end, via `read()` or `stream()`

    Every other attribute is forwarded to the wrapped stream.
    """

    def __init__(self, raw: Any, release: Callable[[], Any]):
        self._raw = raw
        self._release = release

    def read(self, *args: Any, **kwargs: Any) -> Any:
        amt = args[0] if args else kwargs.get("amt")
        data = self._raw.read(*args, **kwargs)
        if amt is None or (not data and amt != 0):
            self._release()
        return data

    def close(self) -> None:
        try:
            self._raw.close()
        finally:
            self._release()

    def _stream(self, stream: Callable[..., Iterator[bytes]], *args: Any, **kwargs: Any) -> Iterator[bytes]:
        yield from stream(*args, **kwargs)
        self._release()

    def _release_conn(self, release_conn: Callable[[], Any]) -> None:
        try:
            release_conn()
        finally:
            self._release()

    def __getattr__(self, name: str) -> Any:
        if name in ("_raw", "_release"):
            raise AttributeError(name)

        # Only expose stream/release_conn when the wrapped stream has them
        attr = getattr(self._raw, name)
        if name == "stream":
            return lambda *args, **kwargs: self._stream(attr, *args, **kwargs)
        if name == "release_conn":
            return lambda: self._release_conn(attr)
        return attr


# =============================================================================
# Rate-Limited Decorator
# =============================================================================


class RateLimitedHttpClient(HttpClient):
    """
    HTTP client decorator enforcing a request rate and retrying HTTP 429.

    Each call to `send()`:
    1. Takes a slot from the concurrency gate (blocks while `limit` are held).
    2. Waits for a pacer token. Cancellation or max_wait_time end the call
       here with ClientSideRateLimitError, before anything is sent.
    3. Sends the request through the delegate. Exceptions from the delegate
       are propagated as-is and never retried.
    4. On HTTP 429, sleeps `unit + uniform[0, unit/2)` and resends the same
       request, up to `retries` times. When retries run out, the last 429
       response is returned as a normal response, not raised.
    5. Any other response is returned with its body wrapped: the slot is
       given back when the caller closes the response (or reads the body
       to the end).

    Caller obligations:
        - Close every returned response (`with client.send(req) as resp:`).
          A response that is never closed nor fully read keeps its slot
          forever, and after `limit` of them every call blocks.
        - Check `status_code`: exhausted retries return a 429 response, not
          an exception.
        - Requests are resent verbatim. A request whose body is a one-shot
          stream (generator, open file) cannot be retried safely.

    This decorator is thread-safe and meant to be shared by all callers.

    Args:
        delegate: The underlying HTTP client to delegate requests to.
        limit: Maximum requests per `unit`, and capacity of the concurrency gate.
        unit: Time window in seconds. Also the base delay between 429 retries.
        cancel_event: Signal aborting pending pacer waits. A private one is
            created if None; see `cancel()`.
        retries: Number of 429 retries (default: 5). Mutable after construction.
        max_wait_time: Maximum seconds to wait for a pacer token. None waits
            indefinitely (default).
        rng: Optional RNG for the retry jitter, for testing.

    Raises:
        RequestCancelledError: If cancel_event is set while waiting for a token.
        TokenAcquisitionTimeoutError: If the next token is further away than max_wait_time.
    """

    def __init__(
        self,
        delegate: HttpClient,
        limit: int,
        unit: float,
        cancel_event: threading.Event | None = None,
        retries: int = 5,
        max_wait_time: float | None = None,
        rng: random.Random | None = None,
    ):
        assert delegate is not None, "Delegate HTTP client is required."
        assert limit is not None, "limit cannot be None."
        assert limit > 0, "limit must be greater than 0."
        assert unit is not None, "unit cannot be None."
        assert unit > 0, "unit must be greater than 0."
        assert retries is not None, "retries cannot be None."
        assert retries >= 0, "retries must be >= 0."
        assert max_wait_time is None or max_wait_time > 0, "max_wait_time must be > 0 or None."

        self.delegate = delegate
        self.limit = limit
        self.unit = unit
        self.retries = retries
        self.max_wait_time = max_wait_time
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()

        self._pacer = TokenBucketPacer.every(limit=limit, unit=unit, burst=1)
        self._gate = ConcurrencyGate(capacity=limit)
        self._backoff = JitteredBackoff(base_delay=unit, jitter_ratio=0.5, rng=rng)

    @property
    def in_flight(self) -> int:
        """Number of admitted requests whose slot has not been released yet."""
        return self._gate.in_use

    def cancel(self) -> None:
        """Abort pending pacer waits and refuse new admissions."""
        self.cancel_event.set()

    @override
    def send(self, request: requests.PreparedRequest) -> requests.Response:
        """
        Gate, pace and send the request, retrying on HTTP 429.

        Args:
            request: The request to send. Resent verbatim on each retry.

        Returns:
            The HTTP response. Its status is 429 if all retries were rejected.

        Raises:
            RequestCancelledError: If cancelled while waiting for a token.
            TokenAcquisitionTimeoutError: If max_wait_time would be exceeded.
            Exception: Whatever the delegate raises, unchanged.
        """
        slot = self._gate.acquire()
        try:
            self._pacer.wait(self.cancel_event, self.max_wait_time)
            return self._send_with_retries(request, slot)
        finally:
            if not slot.handed_off:
                slot.release()

    def _send_with_retries(
        self,
        request: requests.PreparedRequest,
        slot: ConcurrencySlot,
    ) -> requests.Response:
        attempt = RetryAttempt(attempt_number=0, max_retries=self.retries)
        while True:
            response = self.delegate.send(request)

            if response.status_code != TOO_MANY_REQUESTS:
                return self._release_on_close(response, slot)

            if attempt.is_last_attempt:
                if attempt.max_retries > 0:
                    logger.warning(
                        f"Attempt {attempt} rate limited (HTTP 429). "
                        f"Max retries ({attempt.max_retries}) exceeded, returning the rejection."
                    )
                return response

            delay = self._backoff.next_delay()
            logger.warning(f"Attempt {attempt} rate limited (HTTP 429). Retrying in {delay:.2f}s...")
            if response.raw is not None:
                # Hand the discarded connection back to the pool
                response.close()
            time.sleep(delay)
            attempt = attempt.next()

    def _release_on_close(self, response: requests.Response, slot: ConcurrencySlot) -> requests.Response:
        """Tie the slot to the response body so closing the body releases it."""
        slot.hand_off()
        if response.raw is None:
            # Nothing left to read or close
            slot.release()
            return response

        response.raw = SlotReleasingStream(response.raw, slot.release)
        return response
