from __future__ import annotations

from datetime import datetime
from typing import Any
from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base


class RoutineCompletion(Base):
    __tablename__ = "routine_completions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # RESTRICT: a routine with history can't be deleted
    routine_id: Mapped[int] = mapped_column(
        ForeignKey("routines.id", ondelete="RESTRICT"),
        index=True,
        nullable=False,
    )

    # Snapshot taken when the session is recorded
    routine_name: Mapped[str] = mapped_column(String(255), nullable=False)
    category_id: Mapped[int | None] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    category_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    planned_duration: Mapped[float] = mapped_column(Float, nullable=False)
    actual_duration: Mapped[float] = mapped_column(Float, nullable=False)

    notes: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 1-5

    morning_session: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    afternoon_session: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_full_day_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    block_completions: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    exercise_completions: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    # Trainer who ran the session
    completed_by: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

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
        Index("ix_routine_completions_routine_completed_at", "routine_id", "completed_at"),
        Index("ix_routine_completions_completed_by_completed_at", "completed_by", "completed_at"),
    )

    @property
    def duration_difference(self) -> float:
        return self.actual_duration - self.planned_duration

    @property
    def efficiency_percentage(self) -> float:
        if self.planned_duration == 0:
            return 100.0
        return self.actual_duration * 100 / self.planned_duration
