"""
Adaptive client-side throttle for Gemini calls.

Every model call awaits a slot in a sliding 60-second window. A
rate-limit failure from the service shrinks the window's capacity
by `backoff_factor`; `recovery_threshold` consecutive successes grow
it back towards the configured requests per minute. Waiting uses
asyncio.sleep, so a throttled call never blocks the event loop.
"""

import asyncio
import time
import logging
from collections import deque
from typing import Callable, Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    requests_per_minute: int = 15
    window_seconds: float = 60.0
    adaptive_backoff: bool = True
    backoff_factor: float = 0.8
    recovery_threshold: int = 10
    min_requests_per_minute: int = 5  # floor for adaptive backoff


class AdaptiveRateLimiter:
    """Sliding-window limiter shared by every model call of one composition root."""

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._requests: deque = deque()
        self._effective_rpm = self.config.requests_per_minute
        self._consecutive_successes = 0
        self._lock: Optional[asyncio.Lock] = None

        logger.info(f"Gemini throttle at {self._effective_rpm} requests/min")

    @property
    def throttled(self) -> bool:
        return self._effective_rpm < self.config.requests_per_minute

    def _slot_lock(self) -> asyncio.Lock:
        # Lazy: the limiter may be built before the event loop runs
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def _expire(self, now: float) -> None:
        horizon = now - self.config.window_seconds
        while self._requests and self._requests[0] < horizon:
            self._requests.popleft()

    def _delay_for_slot(self) -> float:
        now = self._clock()
        self._expire(now)
        if len(self._requests) < self._effective_rpm:
            return 0.0
        return max(0.0, self._requests[0] + self.config.window_seconds - now)

    async def acquire(self) -> None:
        """Wait until a request slot is free, then claim it."""
        async with self._slot_lock():
            delay = self._delay_for_slot()
            if delay > 0:
                logger.info(f"Gemini throttle: holding call for {delay:.1f}s")
                await asyncio.sleep(delay)
                self._expire(self._clock())
            self._requests.append(self._clock())

    def _set_rpm(self, rpm: int) -> int:
        previous, self._effective_rpm = self._effective_rpm, rpm
        self._consecutive_successes = 0
        return previous

    def report_rate_limit_error(self) -> None:
        """Shrink the window after the service reported a rate limit."""
        if not self.config.adaptive_backoff:
            return
        reduced = int(self._effective_rpm * self.config.backoff_factor)
        previous = self._set_rpm(max(reduced, self.config.min_requests_per_minute))
        logger.warning(f"Gemini rate limited, throttle {previous} -> {self._effective_rpm} requests/min")

    def report_success(self) -> None:
        if not self.config.adaptive_backoff:
            return
        self._consecutive_successes += 1
        if not self.throttled or self._consecutive_successes < self.config.recovery_threshold:
            return
        raised = int(self._effective_rpm / self.config.backoff_factor)
        previous = self._set_rpm(min(raised, self.config.requests_per_minute))
        logger.info(f"Gemini throttle recovering {previous} -> {self._effective_rpm} requests/min")

    def get_stats(self) -> dict:
        self._expire(self._clock())
        return {
            "current_requests": len(self._requests),
            "effective_rpm": self._effective_rpm,
            "max_rpm": self.config.requests_per_minute,
            "is_throttled": self.throttled,
        }
