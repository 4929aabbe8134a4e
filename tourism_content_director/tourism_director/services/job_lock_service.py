"""
Cross-process mutual exclusion for long-running jobs.

A lock is a row in job_locks keyed by name; the primary key makes the insert atomic.
Expired rows (crashed holder) are removed before trying to insert. Works on PostgreSQL
and SQLite alike.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tourism_director.logging_config import get_logger
from tourism_director.models import JobLock

logger = get_logger(__name__)


def _session_factory(factory: Optional[async_sessionmaker[AsyncSession]]) -> async_sessionmaker[AsyncSession]:
    if factory is not None:
        return factory
    from tourism_director.db import async_session_factory

    return async_session_factory


async def acquire_lock(
    name: str,
    owner: str,
    ttl_seconds: int,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> bool:
    """True if the lock is now held by owner; False if someone else holds it."""
    now = datetime.now(timezone.utc)
    async with _session_factory(session_factory)() as session:
        await session.execute(delete(JobLock).where(JobLock.name == name, JobLock.expires_at < now))
        session.add(
            JobLock(
                name=name,
                owner=owner,
                acquired_at=now,
                expires_at=now + timedelta(seconds=ttl_seconds),
            )
        )
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.info("job_lock.busy", name=name, owner=owner)
            return False
    logger.info("job_lock.acquired", name=name, owner=owner, ttl_seconds=ttl_seconds)
    return True


async def release_lock(
    name: str,
    owner: str,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> None:
    async with _session_factory(session_factory)() as session:
        await session.execute(delete(JobLock).where(JobLock.name == name, JobLock.owner == owner))
        await session.commit()
    logger.info("job_lock.released", name=name, owner=owner)


async def force_release_lock(
    name: str,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> None:
    """Drop the lock whoever holds it (admin reset)."""
    async with _session_factory(session_factory)() as session:
        await session.execute(delete(JobLock).where(JobLock.name == name))
        await session.commit()
    logger.warning("job_lock.force_released", name=name)
