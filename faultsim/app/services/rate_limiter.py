"""Fixed-window rate limiter used by ``mode=ratelimit``.

Each key owns a counter and the time its window ends. The first request
after the window has ended starts a fresh window, so a client can burst up
to ``2 * limit`` requests around a window boundary. That is the intended
behaviour of the simulation, not something to correct here.
"""

import asyncio
import math
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from faultsim.app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RateLimitEntry:
    """Entry for tracking fixed-window state of a single key."""
    count: int = 0
    reset_at: float = 0.0


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    reset_at: float

    def retry_after(self, now: float) -> int:
        """Whole seconds until the window resets, rounded up."""
        return max(0, math.ceil(self.reset_at - now))


class FixedWindowRateLimiter:
    """In-memory fixed-window rate limiter.

    Suitable for single-instance deployments. The table is owned by the
    instance (one per application), never by the module.

    Memory:
    - Uses OrderedDict for LRU behaviour
    - Optional ``max_entries`` cap evicts the least recently used 20%
    - ``cleanup()`` drops entries whose window already ended
    """

    def __init__(
        self,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize rate limiter.

        Args:
            max_entries: Maximum number of keys to track (None = unbounded)
            clock: Returns the current time in epoch seconds
        """
        self.clock = clock
        self._max_entries = max_entries
        self._storage: OrderedDict[str, RateLimitEntry] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._storage)

    def _enforce_lru_limit(self) -> None:
        """Enforce max entries limit using LRU eviction."""
        if self._max_entries is None or len(self._storage) < self._max_entries:
            return
        remove_count = max(1, int(self._max_entries * 0.2))
        for _ in range(min(remove_count, len(self._storage))):
            self._storage.popitem(last=False)
        logger.warning(
            "Rate limit table full, evicted least recently used keys",
            extra={"evicted": remove_count, "max_entries": self._max_entries},
        )

    async def check(self, key: str, limit: int, window_ms: int) -> RateLimitDecision:
        """Count one request for ``key`` and decide whether it is allowed.

        Args:
            key: Rate limit key
            limit: Requests allowed per window (>= 1)
            window_ms: Window length in milliseconds (>= 1)

        Returns:
            RateLimitDecision; ``reset_at`` is the current window's end
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_ms < 1:
            raise ValueError("window_ms must be at least 1")

        async with self._lock:
            now = self.clock()
            entry = self._storage.get(key)

            if entry is None or now >= entry.reset_at:
                if entry is None:
                    self._enforce_lru_limit()
                entry = RateLimitEntry(count=1, reset_at=now + window_ms / 1000)
                self._storage[key] = entry
                self._storage.move_to_end(key)
                return RateLimitDecision(
                    allowed=True,
                    limit=limit,
                    remaining=limit - 1,
                    reset_at=entry.reset_at,
                )

            self._storage.move_to_end(key)
            entry.count += 1

            return RateLimitDecision(
                allowed=entry.count <= limit,
                limit=limit,
                remaining=max(0, limit - entry.count),
                reset_at=entry.reset_at,
            )

    async def cleanup(self) -> int:
        """Remove entries whose window has ended.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            now = self.clock()
            expired = [
                key for key, entry in self._storage.items()
                if now >= entry.reset_at
            ]
            for key in expired:
                del self._storage[key]
        if expired:
            logger.debug("Swept expired rate limit entries", extra={"removed": len(expired)})
        return len(expired)
