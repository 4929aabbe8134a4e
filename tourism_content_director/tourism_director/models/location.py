"""Location model: a place fetched from the places API and enriched by AI."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from tourism_director.db import Base, JsonType


class Location(Base):
    """
    One place in a city.
    descriptions / historical_context: JSON {locale: text}.
    enrichment: JSON {suitable_experiences: [...], practical_info: {...}}.
    needs_ai_regeneration is owned by curation workflows; generation never resets it.
    """

    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    place_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    location_type: Mapped[str] = mapped_column(String(32), nullable=False, default="place")
    budget: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    website: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    categories: Mapped[List[str]] = mapped_column(JsonType, nullable=False, default=list)
    tags: Mapped[List[str]] = mapped_column(JsonType, nullable=False, default=list)
    photo_urls: Mapped[List[str]] = mapped_column(JsonType, nullable=False, default=list)
    descriptions: Mapped[Dict[str, str]] = mapped_column(JsonType, nullable=False, default=dict)
    historical_context: Mapped[Dict[str, str]] = mapped_column(JsonType, nullable=False, default=dict)
    enrichment: Mapped[Dict[str, Any]] = mapped_column(JsonType, nullable=False, default=dict)
    ai_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    needs_ai_regeneration: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
