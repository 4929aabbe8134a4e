"""
Batch rate limiter:
- batches of `rate` items, pause for the rest of the second between batches only.
- no pause after the final batch, nothing for an empty list, rate < 1 rejected.
"""
from unittest.mock import AsyncMock

import pytest

from tourism_director.services.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_batches_and_pauses_between_them() -> None:
    sleep = AsyncMock()
    clock = FakeClock()
    limiter = RateLimiter(5, sleep=sleep, clock=clock)

    batches = []
    async for batch in limiter.batches(list(range(12))):
        batches.append(batch)
        clock.now += 0.25

    assert batches == [[0, 1, 2, 3, 4], [5, 6, 7, 8, 9], [10, 11]]
    assert sleep.await_count == 2
    for call in sleep.await_args_list:
        assert call.args[0] == pytest.approx(0.75)


@pytest.mark.asyncio
async def test_no_pause_when_batch_took_longer_than_window() -> None:
    sleep = AsyncMock()
    clock = FakeClock()
    limiter = RateLimiter(2, sleep=sleep, clock=clock)

    async for _ in limiter.batches([1, 2, 3, 4]):
        clock.now += 1.5

    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_list_and_single_batch_never_sleep() -> None:
    sleep = AsyncMock()
    limiter = RateLimiter(5, sleep=sleep)

    assert await limiter.process([], AsyncMock()) == []
    handler = AsyncMock(return_value="done")
    assert await limiter.process([1, 2, 3], handler) == ["done"]
    handler.assert_awaited_once_with([1, 2, 3])
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_process_returns_handler_results_in_order() -> None:
    limiter = RateLimiter(2, sleep=AsyncMock())

    async def handler(batch):
        return sum(batch)

    assert await limiter.process([1, 2, 3, 4, 5], handler) == [3, 7, 5]


def test_rate_must_be_positive() -> None:
    with pytest.raises(ValueError):
        RateLimiter(0)
