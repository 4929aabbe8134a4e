"""Key/value setting: runtime tunables and persisted job status (<job>.status, <job>.results, ...)."""
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from tourism_director.db import Base, JsonType


class Setting(Base):
    """One persisted key. value is any JSON value (string, number, dict, list, null)."""

    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[Any] = mapped_column(JsonType, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
