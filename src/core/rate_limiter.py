"""Per-client sliding-window limiter for download redemption.

Counts hits per key (``download:<ip>``) inside a rolling window. State is
process-local; a multi-instance deployment gets one allowance per instance.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """Allowance per key and how often idle keys are swept."""

    max_requests: int = 5
    window_seconds: int = 60
    sweep_interval_seconds: int = 300

    @classmethod
    def from_settings(cls) -> RateLimitConfig:
        from src.core.config import get_settings

        settings = get_settings()
        return cls(
            max_requests=settings.download_rate_limit_requests,
            window_seconds=settings.download_rate_limit_window_seconds,
        )


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one hit against the limiter."""

    allowed: bool
    remaining: int
    retry_after: int


class SlidingWindowLimiter:
    """Thread-safe sliding-window counter keyed by client."""

    def __init__(self, config: RateLimitConfig | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = Lock()
        self._sweeper: asyncio.Task | None = None

    def _expire(self, hits: deque[float], now: float) -> None:
        cutoff = now - self.config.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def hit(self, key: str) -> RateLimitDecision:
        """Record a hit for ``key`` unless its allowance is used up.

        Rejected hits are not recorded, so a client that keeps retrying is
        let through again as soon as its oldest hit leaves the window.
        """
        limit = self.config.max_requests
        with self._lock:
            now = self._clock()
            hits = self._hits.setdefault(key, deque())
            self._expire(hits, now)

            if len(hits) >= limit:
                wait = hits[0] + self.config.window_seconds - now
                return RateLimitDecision(allowed=False, remaining=0, retry_after=max(1, math.ceil(wait)))

            hits.append(now)
            return RateLimitDecision(allowed=True, remaining=limit - len(hits), retry_after=0)

    def sweep(self) -> int:
        """Forget keys whose hits have all left the window.

        Returns:
            int: Number of keys removed.
        """
        with self._lock:
            now = self._clock()
            idle = []
            for key, hits in self._hits.items():
                self._expire(hits, now)
                if not hits:
                    idle.append(key)
            for key in idle:
                del self._hits[key]
        return len(idle)

    @property
    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval_seconds)
            removed = self.sweep()
            if removed:
                logger.debug("Rate limiter forgot %d idle clients", removed)

    def start(self) -> None:
        """Start the periodic sweep on the running loop."""
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_forever())

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None


# Global singleton instance
_rate_limiter: SlidingWindowLimiter | None = None


def get_rate_limiter() -> SlidingWindowLimiter:
    """Get or create the process-wide download limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = SlidingWindowLimiter(RateLimitConfig.from_settings())
    return _rate_limiter


async def init_rate_limiter() -> SlidingWindowLimiter:
    """Create the limiter and start its sweep. Call at app startup."""
    limiter = get_rate_limiter()
    limiter.start()
    return limiter


async def shutdown_rate_limiter() -> None:
    """Stop the sweep. Call at app shutdown."""
    if _rate_limiter:
        await _rate_limiter.stop()
