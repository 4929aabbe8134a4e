"""
Batch rate limiter for quota-constrained APIs (places provider: N requests/second).

Items are processed in consecutive batches of `rate`; between batches the limiter sleeps
the remainder of one second if the previous batch finished sooner. No sleep after the
final batch, nothing at all for an empty list. Retries and dedupe are the caller's job.
"""
import asyncio
import time
from typing import AsyncIterator, Awaitable, Callable, List, Sequence, TypeVar

from tourism_director.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

WINDOW_SECONDS = 1.0


class RateLimiter:
    """Yield work in batches of `rate` items, at most one batch per second."""

    def __init__(
        self,
        rate: int,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if rate < 1:
            raise ValueError("rate_must_be_positive")
        self.rate = rate
        self._sleep = sleep
        self._clock = clock

    async def batches(self, items: Sequence[T]) -> AsyncIterator[List[T]]:
        """
        Async iterator over batches. The caller's work on a batch happens between
        yields, so the elapsed time measured covers it. Breaking out early skips
        any remaining pause.
        """
        total = len(items)
        for start in range(0, total, self.rate):
            batch = list(items[start:start + self.rate])
            started = self._clock()
            yield batch
            if start + self.rate >= total:
                break
            elapsed = self._clock() - started
            if elapsed < WINDOW_SECONDS:
                wait = WINDOW_SECONDS - elapsed
                logger.debug("rate_limiter.pause", seconds=round(wait, 3), batch_size=len(batch))
                await self._sleep(wait)

    async def process(
        self,
        items: Sequence[T],
        handler: Callable[[List[T]], Awaitable[R]],
    ) -> List[R]:
        """Await handler(batch) for every batch; return handler results in order."""
        results: List[R] = []
        async for batch in self.batches(items):
            results.append(await handler(batch))
        return results
