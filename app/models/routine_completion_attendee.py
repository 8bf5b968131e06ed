from __future__ import annotations

from datetime import datetime
from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base


class RoutineCompletionAttendee(Base):
    __tablename__ = "routine_completion_attendees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    routine_completion_id: Mapped[int] = mapped_column(
        ForeignKey("routine_completions.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    student_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    participation_minutes: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    performance_notes: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    completed_full_session: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("routine_completion_id", "student_id", name="uq_completion_attendee_student"),
    )


def participation_percentage(participation_minutes: float, actual_duration: float) -> float:
    if actual_duration == 0:
        return 100.0
    return participation_minutes * 100 / actual_duration
