"""Plan model (multi-day itinerary) and its day/position experience entries."""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from tourism_director.db import Base, JsonType


class Plan(Base):
    """
    Multi-day itinerary.
    preferences: JSON {tourist_profile, generated_by_ai, generation_metadata}.
    user_id set = user-owned plan; never modified by generation or rebuild jobs.
    """

    __tablename__ = "plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    city_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    titles: Mapped[Dict[str, str]] = mapped_column(JsonType, nullable=False, default=dict)
    notes: Mapped[Dict[str, str]] = mapped_column(JsonType, nullable=False, default=dict)
    preferences: Mapped[Dict[str, Any]] = mapped_column(JsonType, nullable=False, default=dict)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    @property
    def tourist_profile(self) -> Optional[str]:
        return (self.preferences or {}).get("tourist_profile")


class PlanExperience(Base):
    """Experience scheduled on a plan day. (plan, experience, day_number) is unique."""

    __tablename__ = "plan_experiences"
    __table_args__ = (
        UniqueConstraint("plan_id", "experience_id", "day_number", name="uq_plan_experiences_plan_experience_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    plan_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    experience_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("experiences.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day_number: Mapped[int] = mapped_column(Integer, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
