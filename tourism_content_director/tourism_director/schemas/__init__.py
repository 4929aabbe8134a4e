"""Pydantic request/response schemas."""
from tourism_director.schemas.common import MessageResponse
from tourism_director.schemas.generation import (
    CityStats,
    ContentStatsResponse,
    GenerationQueuedResponse,
    GenerationRequest,
    GenerationStatusResponse,
)
from tourism_director.schemas.places import PlaceRecord
from tourism_director.schemas.rebuild import RebuildRequest, RebuildStatusResponse

__all__ = [
    "MessageResponse",
    "CityStats",
    "ContentStatsResponse",
    "GenerationQueuedResponse",
    "GenerationRequest",
    "GenerationStatusResponse",
    "PlaceRecord",
    "RebuildRequest",
    "RebuildStatusResponse",
]
