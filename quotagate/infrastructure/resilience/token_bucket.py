"""Token bucket for a single Direct-Policy action.

The bucket starts full at its burst capacity and refills continuously at the
restore rate, capped at the burst. Every granted call costs exactly one unit.
"""

import math
import time
import logging
from threading import Lock
from typing import Callable, Optional

logger = logging.getLogger(__name__)

NEVER = math.inf  # time_until_available() result when the bucket cannot refill


class TokenBucket:
    """Tracks available call budget for one action."""

    def __init__(
        self,
        owner: str,
        burst_capacity: float,
        restore_rate: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes a full bucket.

        Args:
            owner: The action whose policy this bucket implements.
            burst_capacity: Maximum units available with no wait.
            restore_rate: Units regained per second.
            clock: Monotonic time source, used when callers pass no `now`.
        """
        if burst_capacity < 0 or restore_rate < 0:
            raise ValueError("Burst capacity and restore rate must be non-negative.")

        self.owner = owner
        self.burst_capacity = float(burst_capacity)
        self.restore_rate = float(restore_rate)
        self._clock = clock
        self._capacity = self.burst_capacity
        self._last_refill = clock()
        # refill+consume must be one step per bucket; never held across a remote call
        self._lock = Lock()
        logger.debug(
            f"TokenBucket '{owner}' initialized: burst={self.burst_capacity}, "
            f"restore_rate={self.restore_rate}/s"
        )

    def _refill_locked(self, now: float) -> None:
        elapsed = now - self._last_refill
        if elapsed <= 0:
            return
        self._capacity = min(self.burst_capacity, self._capacity + elapsed * self.restore_rate)
        self._last_refill = now

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    def refill(self, now: Optional[float] = None) -> None:
        """Credits the capacity accrued since the last refill. Never decreases capacity."""
        with self._lock:
            self._refill_locked(self._now(now))

    def try_consume(self, now: Optional[float] = None) -> bool:
        """Takes one unit if available.

        Returns:
            True if the call is granted, False if denied (capacity unchanged).
        """
        with self._lock:
            self._refill_locked(self._now(now))
            if self._capacity >= 1:
                self._capacity -= 1
                return True
            return False

    def time_until_available(self, now: Optional[float] = None) -> float:
        """Seconds until one unit is available.

        Returns 0 if available now, and NEVER when the bucket can never hold a
        whole unit again (zero restore rate, or a burst capacity below 1).
        """
        with self._lock:
            self._refill_locked(self._now(now))
            if self._capacity >= 1:
                return 0.0
            if self.restore_rate == 0 or self.burst_capacity < 1:
                return NEVER
            return (1 - self._capacity) / self.restore_rate

    def snapshot(self, now: Optional[float] = None) -> float:
        """Returns the current (refilled) capacity."""
        with self._lock:
            self._refill_locked(self._now(now))
            return self._capacity

    def __repr__(self) -> str:
        return (
            f"TokenBucket(owner={self.owner!r}, burst={self.burst_capacity}, "
            f"restore_rate={self.restore_rate}, capacity={self._capacity:.4f})"
        )
