"""Background entry point for a generation run."""
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tourism_director.db import async_session_factory
from tourism_director.exceptions import GenerationInProgressError
from tourism_director.jobs.retry import perform_with_retry
from tourism_director.logging_config import get_logger
from tourism_director.services.content_orchestrator import ContentOrchestrator, current_status
from tourism_director.services.setting_store import STATUS_IN_PROGRESS, SettingStore

logger = get_logger(__name__)

JOB_NAME = "content_generation"


class ContentGenerationJob:
    """Runs the orchestrator in its own session. Extra kwargs are passed to the orchestrator (test seams)."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        store: Optional[SettingStore] = None,
        **orchestrator_kwargs: Any,
    ) -> None:
        self.session_factory = session_factory or async_session_factory
        self.store = store or SettingStore(self.session_factory)
        self.orchestrator_kwargs = orchestrator_kwargs

    async def perform(
        self,
        max_locations: Optional[int] = None,
        max_experiences: Optional[int] = None,
        max_plans: Optional[int] = None,
        skip_locations: bool = False,
        skip_experiences: bool = False,
        skip_plans: bool = False,
    ) -> Dict[str, Any]:
        status = await current_status(self.store)
        if status["status"] == STATUS_IN_PROGRESS:
            logger.info("generation_job.skipped", reason="already_in_progress")
            return {"status": "skipped", "reason": "Generation already in progress"}

        async with self.session_factory() as db:
            orchestrator = ContentOrchestrator(
                db,
                max_locations=max_locations,
                max_experiences=max_experiences,
                max_plans=max_plans,
                skip_locations=skip_locations,
                skip_experiences=skip_experiences,
                skip_plans=skip_plans,
                store=self.store,
                session_factory=self.session_factory,
                **self.orchestrator_kwargs,
            )
            try:
                return await orchestrator.generate()
            except GenerationInProgressError as e:
                logger.info("generation_job.skipped", reason=str(e))
                return {"status": "skipped", "reason": str(e)}

    async def run(self, **params: Any) -> Optional[Dict[str, Any]]:
        """perform() under the job retry policy."""
        return await perform_with_retry(JOB_NAME, lambda: self.perform(**params))
