"""Common schemas (messages)."""
from pydantic import BaseModel, Field


class MessageResponse(BaseModel):
    """Simple message response."""

    message: str = Field(..., description="Message text")
