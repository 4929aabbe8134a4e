"""
Retry policy for background jobs.

Generic errors: up to JOB_MAX_ATTEMPTS attempts, polynomial backoff (attempt**4 + 2 seconds).
RateLimitError: up to 10 attempts, fixed 30 second wait. Attempts are counted per kind.
ConfigurationError, CancellationError and GenerationInProgressError are discarded:
logged once, never retried, the job returns None.
"""
import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from tourism_director.config import get_settings
from tourism_director.exceptions import (
    CancellationError,
    ConfigurationError,
    GenerationInProgressError,
    RateLimitError,
)
from tourism_director.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DISCARD_ON = (ConfigurationError, CancellationError, GenerationInProgressError)
RATE_LIMIT_MAX_ATTEMPTS = 10
RATE_LIMIT_WAIT_SECONDS = 30


def polynomial_backoff(attempt: int) -> int:
    return attempt**4 + 2


async def perform_with_retry(
    job_name: str,
    perform: Callable[[], Awaitable[T]],
    max_attempts: Optional[int] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Optional[T]:
    """Run perform() under the job retry policy; re-raise once attempts are exhausted."""
    max_attempts = max_attempts or get_settings().job_max_attempts
    failures = 0
    rate_limited = 0
    while True:
        try:
            return await perform()
        except DISCARD_ON as e:
            logger.warning("job.discarded", job=job_name, error_type=type(e).__name__, error=str(e))
            return None
        except RateLimitError as e:
            rate_limited += 1
            if rate_limited >= RATE_LIMIT_MAX_ATTEMPTS:
                logger.error("job.rate_limit_exhausted", job=job_name, attempts=rate_limited, error=str(e))
                raise
            logger.warning("job.rate_limited", job=job_name, attempt=rate_limited, wait_seconds=RATE_LIMIT_WAIT_SECONDS)
            await sleep(RATE_LIMIT_WAIT_SECONDS)
        except Exception as e:
            failures += 1
            if failures >= max_attempts:
                logger.error("job.failed", job=job_name, attempts=failures, error_type=type(e).__name__, error=str(e))
                raise
            delay = polynomial_backoff(failures)
            logger.warning("job.retrying", job=job_name, attempt=failures, delay_seconds=delay, error=str(e))
            await sleep(delay)
