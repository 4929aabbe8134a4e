"""
Persisted key/value store (settings table) and per-job run status on top of it.

Every write commits in its own session so a dashboard polling the status sees it at
once, independent of the running job's transaction. Writes are last-write-wins.
The cancellation flag lives under its own key and is never written by save().
"""
from typing import Any, Dict, Optional

from pydantic_core import to_jsonable_python
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tourism_director.logging_config import get_logger
from tourism_director.models import Setting

logger = get_logger(__name__)

STATUS_IDLE = "idle"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_FAILED = "failed"


async def read_setting(db: AsyncSession, key: str, default: Any = None) -> Any:
    """Read one key inside the caller's session (no separate transaction)."""
    row = await db.get(Setting, key)
    if row is None or row.value is None:
        return default
    return row.value


class SettingStore:
    """get/set over the settings table, one committed session per call."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None) -> None:
        if session_factory is None:
            from tourism_director.db import async_session_factory

            session_factory = async_session_factory
        self._session_factory = session_factory

    async def get(self, key: str, default: Any = None) -> Any:
        async with self._session_factory() as session:
            return await read_setting(session, key, default)

    async def get_many(self, prefix: str) -> Dict[str, Any]:
        """All keys starting with prefix."""
        async with self._session_factory() as session:
            r = await session.execute(select(Setting).where(Setting.key.startswith(prefix)))
            return {row.key: row.value for row in r.scalars().all()}

    async def set(self, key: str, value: Any) -> None:
        value = to_jsonable_python(value)
        async with self._session_factory() as session:
            row = await session.get(Setting, key)
            if row is None:
                session.add(Setting(key=key, value=value))
            else:
                row.value = value
            try:
                await session.commit()
            except IntegrityError:
                # Concurrent first write of the same key: fall back to update.
                await session.rollback()
                row = await session.get(Setting, key)
                row.value = value
                await session.commit()

    async def delete(self, key: str) -> None:
        async with self._session_factory() as session:
            row = await session.get(Setting, key)
            if row is not None:
                await session.delete(row)
                await session.commit()


class RunStatus:
    """
    Status keys of one job namespace: <ns>.status, .message, .started_at, .plan, .results
    and the separate <ns>.cancelled flag.
    """

    def __init__(self, namespace: str, store: Optional[SettingStore] = None) -> None:
        self.namespace = namespace
        self.store = store or SettingStore()

    def key(self, name: str) -> str:
        return f"{self.namespace}.{name}"

    @property
    def cancelled_key(self) -> str:
        return self.key("cancelled")

    async def save(
        self,
        status: str,
        message: Optional[str],
        plan: Any = None,
        results: Any = None,
        started_at: Optional[str] = None,
    ) -> None:
        """Persist a status snapshot. A failed write is logged; the job keeps running."""
        try:
            await self.store.set(self.key("status"), status)
            await self.store.set(self.key("message"), message)
            if started_at is not None:
                await self.store.set(self.key("started_at"), started_at)
            if plan is not None:
                await self.store.set(self.key("plan"), plan)
            if results is not None:
                await self.store.set(self.key("results"), results)
        except SQLAlchemyError as e:
            logger.warning("run_status.save_failed", namespace=self.namespace, status=status, error=str(e))

    async def status(self) -> str:
        return await self.store.get(self.key("status"), STATUS_IDLE)

    async def current(self) -> Dict[str, Any]:
        return {
            "status": await self.store.get(self.key("status"), STATUS_IDLE),
            "message": await self.store.get(self.key("message")),
            "started_at": await self.store.get(self.key("started_at")),
            "plan": await self.store.get(self.key("plan")),
            "results": await self.store.get(self.key("results")),
            "cancelled": bool(await self.store.get(self.cancelled_key, False)),
        }

    async def request_cancel(self, message: str = "Cancellation requested") -> None:
        await self.store.set(self.cancelled_key, True)
        await self.store.set(self.key("message"), message)

    async def is_cancelled(self) -> bool:
        return bool(await self.store.get(self.cancelled_key, False))

    async def clear_cancellation(self) -> None:
        await self.store.set(self.cancelled_key, False)

    async def clear(self) -> None:
        """Back to idle, forget plan and results."""
        await self.store.set(self.key("status"), STATUS_IDLE)
        await self.store.set(self.key("message"), None)
        await self.store.set(self.key("plan"), None)
        await self.store.set(self.key("results"), None)
        await self.clear_cancellation()

    async def force_reset(self, message: str = "Force reset by admin") -> None:
        """Unstick a run left in_progress by a crashed worker."""
        await self.store.set(self.key("status"), STATUS_IDLE)
        await self.store.set(self.key("message"), message)
        await self.clear_cancellation()
