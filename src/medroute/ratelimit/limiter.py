"""Per-source token bucket.

refill_period is the time (seconds) the bucket takes to go from empty to
full, so a refill adds floor(elapsed * capacity / refill_period) tokens.

When the bucket is empty, acquire() sleeps a fixed ceil(1000 / refill_period)
milliseconds and then takes a token whether or not the refill produced
one (the count is clamped at zero). This lets a starved caller through
with a small burst overshoot. Pass strict=True to re-check after every
wait instead.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Callable

import structlog

logger = structlog.get_logger()


class RateLimiter:
    """Token bucket guarding one external source.

    Shared across all concurrent queries in the process. The
    refill-then-decrement sequence runs under an asyncio.Lock; the lock
    is released while a caller waits.
    """

    def __init__(
        self,
        name: str,
        capacity: int,
        refill_period: float,
        *,
        strict: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        if refill_period <= 0:
            raise ValueError(f"refill_period must be > 0, got {refill_period}")
        self.name = name
        self.capacity = capacity
        self.refill_period = refill_period
        self.strict = strict
        self._clock = clock
        self._tokens = capacity
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    @property
    def wait_seconds(self) -> float:
        """Fixed backoff applied when the bucket is empty."""
        return math.ceil(1000 / self.refill_period) / 1000

    def refill(self) -> None:
        now = self._clock()
        elapsed = max(now - self._last_refill, 0.0)
        added = math.floor(elapsed * self.capacity / self.refill_period)
        if self._tokens + added >= self.capacity:
            self._tokens = self.capacity
            self._last_refill = now
        elif added > 0:
            self._tokens += added
            # Carry the unused fraction of a token interval forward.
            self._last_refill += added * self.refill_period / self.capacity

    def remaining(self) -> int:
        self.refill()
        return self._tokens

    def _try_take(self) -> bool:
        self.refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    async def acquire(self) -> None:
        """Wait until the caller may make one outbound call."""
        async with self._lock:
            if self._try_take():
                return

        waited = 0
        while True:
            logger.debug(
                "rate_limiter_wait",
                source=self.name,
                wait_ms=round(self.wait_seconds * 1000),
                attempt=waited,
            )
            await asyncio.sleep(self.wait_seconds)
            waited += 1
            async with self._lock:
                if self._try_take():
                    return
                if not self.strict:
                    # Proceed anyway; the count never drops below zero.
                    self._tokens = max(self._tokens - 1, 0)
                    logger.info("rate_limiter_forced_proceed", source=self.name)
                    return

    def snapshot(self) -> dict[str, float | int | str]:
        return {
            "source": self.name,
            "capacity": self.capacity,
            "refill_period": self.refill_period,
            "remaining": self.remaining(),
        }
