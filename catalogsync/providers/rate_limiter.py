"""
Token bucket rate limiter for outbound provider requests.

Refill is computed lazily from elapsed clock time on every call, so no
background timer is needed. One bucket exists per provider per process and
is shared by reference between callers.
"""

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable
from functools import lru_cache

from catalogsync.config import settings

logger = logging.getLogger(__name__)

# Upper bound for a single wait inside acquire()
DEFAULT_MAX_WAIT_SECONDS = 60.0


class TokenBucket:
    """
    Token bucket with lazy refill.

    Invariants:
    - 0 <= tokens <= capacity at all times
    - acquire() debits exactly one token per call
    """

    def __init__(
        self,
        capacity: int,
        refill_rate: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_wait: float = DEFAULT_MAX_WAIT_SECONDS,
    ) -> None:
        """
        Args:
            capacity: Maximum number of tokens the bucket holds
            refill_rate: Tokens added per second
            clock: Monotonic clock in seconds
            sleep: Coroutine used to suspend the caller
            max_wait: Ceiling on a single suspension
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")

        self.capacity = capacity
        self.refill_rate = refill_rate
        self._clock = clock
        self._sleep = sleep
        self._max_wait = max_wait
        self._tokens = float(capacity)
        self._last_refill = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.refill_rate)
        self._last_refill = now

    def available(self) -> int:
        """Whole tokens available right now. Never blocks."""
        self._refill()
        return int(math.floor(self._tokens))

    async def acquire(self) -> None:
        """Wait until a token is available, then take it."""
        while True:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return

            wait = min((1 - self._tokens) / self.refill_rate, self._max_wait)
            logger.debug("Rate limiter empty, waiting %.3fs", wait)
            await self._sleep(wait)


@lru_cache(maxsize=None)
def get_rate_limiter(provider: str) -> TokenBucket:
    """
    Get the process-wide bucket for a provider.

    Built once from settings and cached; every caller in the process shares it.
    """
    return TokenBucket(
        capacity=settings.provider_burst,
        refill_rate=settings.provider_requests_per_minute / 60.0,
    )
