"""Generation run API: queue, status, cancel, reset, per-city stats."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tourism_director.db import get_db
from tourism_director.jobs.content_generation_job import JOB_NAME, ContentGenerationJob
from tourism_director.jobs.runner import is_running, start_job
from tourism_director.logging_config import get_logger
from tourism_director.schemas.common import MessageResponse
from tourism_director.schemas.generation import (
    CityStats,
    ContentStatsResponse,
    GenerationQueuedResponse,
    GenerationRequest,
    GenerationStatusResponse,
)
from tourism_director.services.content_orchestrator import (
    cancel_generation,
    content_stats,
    current_status,
    force_reset,
)
from tourism_director.services.setting_store import STATUS_IN_PROGRESS

router = APIRouter(prefix="/api/generation", tags=["generation"])
logger = get_logger(__name__)

IN_PROGRESS_DETAIL = "A generation run is already in progress"


@router.post("", response_model=GenerationQueuedResponse, status_code=status.HTTP_202_ACCEPTED)
async def post_generation(payload: GenerationRequest) -> GenerationQueuedResponse:
    """
    Queue a generation run in the background. Ceilings: omitted = default cap, 0 = unlimited.
    409 if a run is already in progress.
    """
    current = await current_status()
    if current["status"] == STATUS_IN_PROGRESS or is_running(JOB_NAME):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=IN_PROGRESS_DETAIL)

    params = payload.model_dump()
    if not start_job(JOB_NAME, lambda: ContentGenerationJob().run(**params)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=IN_PROGRESS_DETAIL)
    logger.info("generation.queued", **params)
    return GenerationQueuedResponse(queued=True, message="Generation queued")


@router.get("/status", response_model=GenerationStatusResponse)
async def get_generation_status() -> GenerationStatusResponse:
    return GenerationStatusResponse(**await current_status())


@router.post("/cancel", response_model=MessageResponse)
async def post_generation_cancel() -> MessageResponse:
    """Request cancellation; the run stops at its next checkpoint."""
    await cancel_generation()
    return MessageResponse(message="Cancellation requested")


@router.post("/reset", response_model=MessageResponse)
async def post_generation_reset() -> MessageResponse:
    """Force a stuck run back to idle and release its lock."""
    await force_reset()
    return MessageResponse(message="Generation status reset")


@router.get("/stats", response_model=ContentStatsResponse)
async def get_generation_stats(db: AsyncSession = Depends(get_db)) -> ContentStatsResponse:
    stats = await content_stats(db)
    totals = stats["totals"]
    return ContentStatsResponse(
        cities=[CityStats(**city) for city in stats["cities"]],
        total_locations=totals["locations"],
        total_experiences=totals["experiences"],
        total_plans=totals["plans"],
    )
