from __future__ import annotations

from datetime import datetime
from typing import Any
from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base
from app.services.durations import exercise_duration


class Exercise(Base):
    __tablename__ = "exercises"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Flat duration in minutes. Ignored for aggregation when is_multi_timer is set.
    duration: Mapped[float] = mapped_column(Float, nullable=False, default=0)

    intensity: Mapped[str] = mapped_column(String(10), nullable=False, default="medium")
    work_type: Mapped[str] = mapped_column(String(20), nullable=False, default="technique")
    difficulty: Mapped[str] = mapped_column(String(20), nullable=False, default="intermediate")

    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    materials: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    protection: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    instructions: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    video_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # [{"name", "duration", "repetitions", "restBetween"}, ...]
    is_multi_timer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    timers: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    is_template: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    visibility: Mapped[str] = mapped_column(String(10), nullable=False, default="private")

    created_by: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_rating: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_exercises_work_type_difficulty_active", "work_type", "difficulty", "is_active"),
        Index("ix_exercises_created_by_visibility", "created_by", "visibility"),
    )

    @property
    def effective_duration(self) -> float:
        return exercise_duration(self.is_multi_timer, self.duration, self.timers)
