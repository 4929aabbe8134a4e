"""Generation run API schemas."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class GenerationRequest(BaseModel):
    """POST /api/generation. Ceilings: None = default cap, 0 = unlimited."""

    max_locations: Optional[int] = Field(None, ge=0)
    max_experiences: Optional[int] = Field(None, ge=0)
    max_plans: Optional[int] = Field(None, ge=0)
    skip_locations: bool = False
    skip_experiences: bool = False
    skip_plans: bool = False


class GenerationQueuedResponse(BaseModel):
    queued: bool
    message: str


class GenerationStatusResponse(BaseModel):
    """GET /api/generation/status."""

    status: str
    message: Optional[str] = None
    started_at: Optional[str] = None
    cancelled: bool = False
    plan: Optional[Dict[str, Any]] = None
    results: Optional[Dict[str, Any]] = None


class CityStats(BaseModel):
    city: str
    locations: int = 0
    experiences: int = 0
    plans: int = 0
    ai_plans: int = 0


class ContentStatsResponse(BaseModel):
    """GET /api/generation/stats."""

    cities: List[CityStats]
    total_locations: int
    total_experiences: int
    total_plans: int
