"""Rebuild job API schemas."""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class RebuildRequest(BaseModel):
    """POST /api/rebuild/{experiences|plans}."""

    dry_run: bool = False
    rebuild_mode: str = Field("all", description="all | quality | similar | accommodations (experiences only)")
    max_rebuilds: Optional[int] = Field(None, ge=1)
    delete_similar: bool = False


class RebuildStatusResponse(BaseModel):
    status: str
    message: Optional[str] = None
    results: Optional[Dict[str, Any]] = None
