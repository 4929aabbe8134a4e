"""
Shared flow of the rebuild jobs:

analyse -> (dry run stops here) -> delete unsalvageable -> rebuild worst -> similar pairs
-> job-specific extra phases.

Every mutation re-reads its row and is a no-op (False) for user-owned content. Each item
commits on its own; a failing item is rolled back and recorded in results["errors"].
The job session is committed before each status write so the settings session never
observes or discards half-applied work.
"""
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tourism_director.config import get_settings
from tourism_director.db import async_session_factory
from tourism_director.exceptions import RequestError
from tourism_director.logging_config import get_logger
from tourism_director.services.request_queue import RequestQueue
from tourism_director.services.setting_store import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    RunStatus,
    SettingStore,
)

logger = get_logger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RebuildJob:
    """Base class; subclasses set NAMESPACE / MODES and implement analyze() and the phases."""

    NAMESPACE = "rebuild"
    MODES: Sequence[str] = ("all", "quality", "similar")

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        store: Optional[SettingStore] = None,
        queue: Optional[RequestQueue] = None,
        locales: Optional[Sequence[str]] = None,
    ) -> None:
        settings = get_settings()
        self.session_factory = session_factory or async_session_factory
        self.run_status = RunStatus(self.NAMESPACE, store or SettingStore(self.session_factory))
        self.queue = queue or RequestQueue(settings)
        self.locales = tuple(locales or settings.supported_locales)

    # --- status ---------------------------------------------------------------

    @classmethod
    async def current_status(cls, store: Optional[SettingStore] = None) -> Dict[str, Any]:
        status = await RunStatus(cls.NAMESPACE, store).current()
        return {"status": status["status"], "message": status["message"], "results": status["results"] or {}}

    @classmethod
    async def clear_status(cls, store: Optional[SettingStore] = None) -> None:
        await RunStatus(cls.NAMESPACE, store).clear()

    @classmethod
    async def force_reset(cls, store: Optional[SettingStore] = None) -> None:
        await RunStatus(cls.NAMESPACE, store).force_reset()

    async def progress(self, db: AsyncSession, message: str) -> None:
        await db.commit()
        await self.run_status.save(STATUS_IN_PROGRESS, message)

    # --- entry point ----------------------------------------------------------

    async def perform(
        self,
        dry_run: bool = False,
        rebuild_mode: str = "all",
        max_rebuilds: Optional[int] = None,
        delete_similar: bool = False,
    ) -> Dict[str, Any]:
        if rebuild_mode not in self.MODES:
            raise ValueError(f"rebuild_mode must be one of {', '.join(self.MODES)}")
        logger.info(
            "rebuild.started",
            job=self.NAMESPACE,
            dry_run=dry_run,
            mode=rebuild_mode,
            max_rebuilds=max_rebuilds,
        )
        results = self.initial_results()
        results.update(
            {
                "started_at": _now_iso(),
                "dry_run": dry_run,
                "rebuild_mode": rebuild_mode,
                "max_rebuilds": max_rebuilds,
                "errors": [],
            }
        )
        await self.run_status.save(STATUS_IN_PROGRESS, "Starting analysis...", started_at=results["started_at"])

        async with self.session_factory() as db:
            try:
                report = await self.analyze(db)
                self.record_report(results, report)
                await self.progress(db, self.analysis_message(report))

                if dry_run:
                    results["status"] = STATUS_COMPLETED
                    results["finished_at"] = _now_iso()
                    await self.run_status.save(
                        STATUS_COMPLETED, "Analysis complete (preview mode - no changes made)", results=results
                    )
                    return results

                await self.run_phases(db, report, rebuild_mode, max_rebuilds, delete_similar, results)

                await db.commit()
                results["status"] = STATUS_COMPLETED
                results["finished_at"] = _now_iso()
                message = self.completion_message(results)
                await self.run_status.save(STATUS_COMPLETED, message, results=results)
                logger.info("rebuild.completed", job=self.NAMESPACE, message=message)
                return results
            except Exception as e:
                await db.rollback()
                results["status"] = STATUS_FAILED
                results["error"] = str(e)
                results["finished_at"] = _now_iso()
                await self.run_status.save(STATUS_FAILED, str(e), results=results)
                logger.error("rebuild.failed", job=self.NAMESPACE, error_type=type(e).__name__, error=str(e))
                raise

    async def attempt(
        self,
        db: AsyncSession,
        results: Dict[str, Any],
        error_entry: Dict[str, Any],
        action: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run one item mutation and commit it. On failure: rollback, record, return None."""
        try:
            outcome = await action()
            await db.commit()
            return outcome
        except (SQLAlchemyError, RequestError) as e:
            await db.rollback()
            logger.warning("rebuild.item_failed", job=self.NAMESPACE, **error_entry, error=str(e))
            results["errors"].append({**error_entry, "error": str(e)})
            return None

    # --- subclass hooks -------------------------------------------------------

    def initial_results(self) -> Dict[str, Any]:
        raise NotImplementedError

    async def analyze(self, db: AsyncSession) -> Dict[str, Any]:
        raise NotImplementedError

    def record_report(self, results: Dict[str, Any], report: Dict[str, Any]) -> None:
        raise NotImplementedError

    def analysis_message(self, report: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def run_phases(
        self,
        db: AsyncSession,
        report: Dict[str, Any],
        mode: str,
        max_rebuilds: Optional[int],
        delete_similar: bool,
        results: Dict[str, Any],
    ) -> None:
        raise NotImplementedError

    def completion_message(self, results: Dict[str, Any]) -> str:
        raise NotImplementedError


def rebuild_limit_reached(count: int, max_rebuilds: Optional[int]) -> bool:
    return max_rebuilds is not None and count >= max_rebuilds


def issue_lines(issues: Sequence[Dict[str, Any]]) -> str:
    return "\n".join(f"- {i.get('message', i.get('type'))}" for i in issues) or "- none"


def merged_translations(current: Optional[Dict[str, str]], new: Dict[str, str]) -> Dict[str, str]:
    """New non-blank entries override; locales missing from the answer keep their text."""
    merged = dict(current or {})
    merged.update(new)
    return merged


def pair_label(first: Dict[str, Any], second: Dict[str, Any]) -> str:
    return f"{first['id']} vs {second['id']}"
