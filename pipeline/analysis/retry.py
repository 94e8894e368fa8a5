"""
Bounded retry with exponential backoff for remote model calls.

Only TransientServiceError is retried. Every other failure (content blocks,
contract violations, input errors) propagates on the first occurrence.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from pipeline.analysis.errors import TransientKind, TransientServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Runs an async operation up to ``max_attempts`` times.

    Delay before attempt n+1 is ``base_delay * 2 ** (n - 1)``. Each attempt can
    carry a timeout; expiry counts as a transient failure.

    Usage:
        policy = RetryPolicy(max_attempts=3, base_delay=1.5, timeout=60)
        result = await policy.execute(lambda: client.call(...))
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.5,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.timeout = timeout
        self._sleep = sleep

    def backoff(self, attempt: int, base_delay: Optional[float] = None) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        base = self.base_delay if base_delay is None else base_delay
        return base * (2 ** (attempt - 1))

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> T:
        attempts = max_attempts or self.max_attempts
        limit = self.timeout if timeout is None else timeout

        for attempt in range(1, attempts + 1):
            try:
                return await self._attempt(operation, limit)
            except TransientServiceError as e:
                if attempt >= attempts:
                    logger.warning(f"Giving up after {attempt} attempt(s): {e}")
                    raise
                delay = self.backoff(attempt, base_delay)
                logger.warning(
                    f"Transient failure ({e.kind.value}) on attempt {attempt}/{attempts}, "
                    f"retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        # Unreachable: the loop either returns or raises
        raise RuntimeError("retry loop exited without a result")

    async def _attempt(self, operation: Callable[[], Awaitable[T]], limit: Optional[float]) -> T:
        if limit is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=limit)
        except asyncio.TimeoutError as e:
            raise TransientServiceError(TransientKind.TIMEOUT, f"no response within {limit}s") from e
