"""
In-process background runner: one asyncio task per job name, started from the API and
cancelled on shutdown. A job name that is already running is not started twice.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict

from tourism_director.logging_config import get_logger

logger = get_logger(__name__)

_tasks: Dict[str, "asyncio.Task[Any]"] = {}


def is_running(name: str) -> bool:
    task = _tasks.get(name)
    return task is not None and not task.done()


def start_job(name: str, factory: Callable[[], Awaitable[Any]]) -> bool:
    """Schedule factory() as task `name`. False when a task of that name is still running."""
    if is_running(name):
        logger.info("runner.already_running", job=name)
        return False
    task = asyncio.create_task(_run(name, factory), name=name)
    _tasks[name] = task
    logger.info("runner.started", job=name)
    return True


async def _run(name: str, factory: Callable[[], Awaitable[Any]]) -> Any:
    try:
        result = await factory()
        logger.info("runner.finished", job=name)
        return result
    except asyncio.CancelledError:
        logger.info("runner.cancelled", job=name)
        raise
    except Exception as e:
        logger.error("runner.job_error", job=name, error_type=type(e).__name__, error=str(e))
        raise


async def stop_jobs() -> None:
    """Cancel every running task and wait for it to unwind."""
    running = [t for t in _tasks.values() if not t.done()]
    for task in running:
        task.cancel()
    if running:
        await asyncio.gather(*running, return_exceptions=True)
    _tasks.clear()
