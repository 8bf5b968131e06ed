from __future__ import annotations

from datetime import datetime
from typing import Any
from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base


class RoutineBlockExercise(Base):
    __tablename__ = "routine_block_exercises"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    routine_block_id: Mapped[int] = mapped_column(
        ForeignKey("routine_blocks.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    # RESTRICT: an exercise used by a block can only be deactivated
    exercise_id: Mapped[int] = mapped_column(
        ForeignKey("exercises.id", ondelete="RESTRICT"),
        index=True,
        nullable=False,
    )

    sort_order: Mapped[int] = mapped_column(Integer, nullable=False)

    # Supersedes the exercise's own duration when set
    duration_override: Mapped[float | None] = mapped_column(Float, nullable=True)
    exercise_notes: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    custom_timers: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("routine_block_id", "sort_order", name="uq_routine_block_exercises_block_sort_order"),
    )
