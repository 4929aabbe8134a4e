"""Rebuild job API for experiences and plans."""
from typing import Type

from fastapi import APIRouter, HTTPException, status

from tourism_director.jobs.rebuild_common import RebuildJob
from tourism_director.jobs.rebuild_experiences_job import RebuildExperiencesJob
from tourism_director.jobs.rebuild_plans_job import RebuildPlansJob
from tourism_director.jobs.retry import perform_with_retry
from tourism_director.jobs.runner import is_running, start_job
from tourism_director.logging_config import get_logger
from tourism_director.schemas.common import MessageResponse
from tourism_director.schemas.rebuild import RebuildRequest, RebuildStatusResponse
from tourism_director.services.setting_store import STATUS_IN_PROGRESS

router = APIRouter(prefix="/api/rebuild", tags=["rebuild"])
logger = get_logger(__name__)


async def _queue(job_class: Type[RebuildJob], payload: RebuildRequest) -> MessageResponse:
    if payload.rebuild_mode not in job_class.MODES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"rebuild_mode must be one of: {', '.join(job_class.MODES)}",
        )
    name = job_class.NAMESPACE
    current = await job_class.current_status()
    if current["status"] == STATUS_IN_PROGRESS or is_running(name):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Rebuild already in progress")

    params = payload.model_dump()
    if not start_job(name, lambda: perform_with_retry(name, lambda: job_class().perform(**params))):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Rebuild already in progress")
    logger.info("rebuild.queued", job=name, **params)
    mode = "preview" if payload.dry_run else payload.rebuild_mode
    return MessageResponse(message=f"Rebuild queued ({mode})")


async def _status(job_class: Type[RebuildJob]) -> RebuildStatusResponse:
    return RebuildStatusResponse(**await job_class.current_status())


@router.post("/experiences", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
async def post_rebuild_experiences(payload: RebuildRequest) -> MessageResponse:
    """Queue the experience rebuild. rebuild_mode: all | quality | similar | accommodations."""
    return await _queue(RebuildExperiencesJob, payload)


@router.get("/experiences/status", response_model=RebuildStatusResponse)
async def get_rebuild_experiences_status() -> RebuildStatusResponse:
    return await _status(RebuildExperiencesJob)


@router.post("/experiences/reset", response_model=MessageResponse)
async def post_rebuild_experiences_reset() -> MessageResponse:
    await RebuildExperiencesJob.force_reset()
    return MessageResponse(message="Experience rebuild status reset")


@router.post("/plans", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
async def post_rebuild_plans(payload: RebuildRequest) -> MessageResponse:
    """Queue the plan rebuild. rebuild_mode: all | quality | similar. User-owned plans are never changed."""
    return await _queue(RebuildPlansJob, payload)


@router.get("/plans/status", response_model=RebuildStatusResponse)
async def get_rebuild_plans_status() -> RebuildStatusResponse:
    return await _status(RebuildPlansJob)


@router.post("/plans/reset", response_model=MessageResponse)
async def post_rebuild_plans_reset() -> MessageResponse:
    await RebuildPlansJob.force_reset()
    return MessageResponse(message="Plan rebuild status reset")
