"""
Job retry policy and in-process runner:
- generic errors retried with polynomial backoff, re-raised when exhausted.
- rate limits wait 30s and are counted separately; discard-on errors return None at once.
- runner refuses a second task under a running name; stop_jobs cancels running tasks.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from tourism_director.exceptions import ConfigurationError, GenerationInProgressError, RateLimitError
from tourism_director.jobs import is_running, perform_with_retry, start_job, stop_jobs
from tourism_director.jobs.retry import RATE_LIMIT_MAX_ATTEMPTS, polynomial_backoff


def test_polynomial_backoff() -> None:
    assert [polynomial_backoff(n) for n in (1, 2, 3)] == [3, 18, 83]


@pytest.mark.asyncio
async def test_generic_error_retried_then_succeeds() -> None:
    sleep = AsyncMock()
    perform = AsyncMock(side_effect=[RuntimeError("db hiccup"), {"status": "completed"}])

    result = await perform_with_retry("content_generation", perform, max_attempts=3, sleep=sleep)

    assert result == {"status": "completed"}
    sleep.assert_awaited_once_with(3)


@pytest.mark.asyncio
async def test_generic_error_exhausted() -> None:
    sleep = AsyncMock()
    perform = AsyncMock(side_effect=RuntimeError("still broken"))

    with pytest.raises(RuntimeError):
        await perform_with_retry("content_generation", perform, max_attempts=3, sleep=sleep)

    assert perform.await_count == 3
    assert [c.args[0] for c in sleep.await_args_list] == [3, 18]


@pytest.mark.asyncio
async def test_rate_limit_counted_separately() -> None:
    sleep = AsyncMock()
    perform = AsyncMock(side_effect=[RateLimitError("429"), RateLimitError("429"), RuntimeError("x"), "done"])

    result = await perform_with_retry("rebuild_plans", perform, max_attempts=2, sleep=sleep)

    assert result == "done"
    assert [c.args[0] for c in sleep.await_args_list] == [30, 30, 3]


@pytest.mark.asyncio
async def test_rate_limit_exhausted() -> None:
    sleep = AsyncMock()
    perform = AsyncMock(side_effect=RateLimitError("429"))

    with pytest.raises(RateLimitError):
        await perform_with_retry("rebuild_plans", perform, sleep=sleep)

    assert perform.await_count == RATE_LIMIT_MAX_ATTEMPTS


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [ConfigurationError("no key"), GenerationInProgressError("busy")])
async def test_discarded_errors_not_retried(error) -> None:
    sleep = AsyncMock()
    perform = AsyncMock(side_effect=error)

    assert await perform_with_retry("content_generation", perform, sleep=sleep) is None
    assert perform.await_count == 1
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_runner_single_task_per_name() -> None:
    release = asyncio.Event()
    finished = []

    async def job():
        await release.wait()
        finished.append(True)

    assert start_job("rebuild_plans", job) is True
    assert is_running("rebuild_plans") is True
    assert start_job("rebuild_plans", job) is False

    release.set()
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert finished == [True]
    assert is_running("rebuild_plans") is False
    await stop_jobs()


@pytest.mark.asyncio
async def test_stop_jobs_cancels_running_tasks() -> None:
    async def forever():
        await asyncio.Event().wait()

    start_job("content_generation", forever)
    await asyncio.sleep(0)

    await stop_jobs()

    assert is_running("content_generation") is False
