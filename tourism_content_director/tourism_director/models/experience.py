"""Experience model and its ordered location links."""
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from tourism_director.db import Base, JsonType


class Experience(Base):
    """
    Themed grouping of 1+ locations.
    city: majority city of its locations (thematic experiences span several).
    titles / descriptions: JSON {locale: text}; title caches the en (or first) title.
    user_id set = curated by a person; rebuild jobs never touch it.
    """

    __tablename__ = "experiences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    category_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    estimated_duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # minutes
    seasons: Mapped[List[str]] = mapped_column(JsonType, nullable=False, default=list)
    titles: Mapped[Dict[str, str]] = mapped_column(JsonType, nullable=False, default=dict)
    descriptions: Mapped[Dict[str, str]] = mapped_column(JsonType, nullable=False, default=dict)
    theme_reasoning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cover_photo_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="local")  # local | thematic
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
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


class ExperienceLocation(Base):
    """Location inside an experience; position is 1-based per experience."""

    __tablename__ = "experience_locations"
    __table_args__ = (
        UniqueConstraint("experience_id", "location_id", name="uq_experience_locations_experience_location"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    experience_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("experiences.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    location_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("locations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
