"""
Retry backoff for requests rejected with HTTP 429 (Too Many Requests).

The delay between attempts is a fixed base (the rate limit unit) plus a
random addition of up to half of it. The random part keeps clients that got
rejected together from coming back together.

Example:
    >>> from ratelimitclient._retry import JitteredBackoff
    >>> backoff = JitteredBackoff(base_delay=1.0)
    >>> backoff.next_delay()  # somewhere in [1.0, 1.5)
    1.27...
"""

from __future__ import annotations

import os
import random
import socket
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryAttempt:
    """
    Represents a single attempt within the retry loop.

    Attributes:
        attempt_number: Zero-based index of the current attempt (0 = first attempt).
        max_retries: Maximum number of retries configured for the call.

    Example:
        >>> attempt = RetryAttempt(attempt_number=0, max_retries=2)
        >>> attempt.is_last_attempt
        False
        >>> attempt.next().next().is_last_attempt
        True
    """

    attempt_number: int
    max_retries: int

    @property
    def is_last_attempt(self) -> bool:
        """Return True if no retry is left after this attempt."""
        return self.attempt_number >= self.max_retries

    def next(self) -> RetryAttempt:
        """Return the attempt that follows this one."""
        return RetryAttempt(self.attempt_number + 1, self.max_retries)

    def __str__(self) -> str:
        return f"{self.attempt_number + 1}/{self.max_retries + 1}"


class JitteredBackoff:
    """
    Backoff policy: `base_delay + uniform[0, base_delay * jitter_ratio)`.

    Uses a per-process seeded RNG so that:
    - Same process = deterministic sequence (reproducible for debugging)
    - Different processes = different sequences (desynchronization)

    Args:
        base_delay: Fixed part of every delay, in seconds.
        jitter_ratio: Upper bound of the random part, as a fraction of
            base_delay (default: 0.5).
        rng: Optional RNG for testing. If None, creates a per-process seeded RNG.
    """

    def __init__(
        self,
        base_delay: float,
        jitter_ratio: float = 0.5,
        rng: random.Random | None = None,
    ):
        assert base_delay is not None, "base_delay cannot be None."
        assert base_delay > 0, "base_delay must be greater than 0."
        assert jitter_ratio is not None, "jitter_ratio cannot be None."
        assert jitter_ratio >= 0, "jitter_ratio must be non-negative."

        self.base_delay = base_delay
        self.jitter_ratio = jitter_ratio
        self._rng = rng or self._create_process_local_rng()

    @staticmethod
    def _create_process_local_rng() -> random.Random:
        """Create a deterministic RNG seeded with hostname and PID."""
        seed = hash((socket.gethostname(), os.getpid()))
        return random.Random(seed)

    def next_delay(self) -> float:
        """Return a new delay in [base_delay, base_delay * (1 + jitter_ratio))."""
        return self.base_delay + self._rng.random() * self.base_delay * self.jitter_ratio
