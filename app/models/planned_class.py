from __future__ import annotations

import datetime as dt
from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, Integer, String, Text, Time, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base


CLASS_STATUSES = ("planned", "in_progress", "completed", "cancelled")
TERMINAL_STATUSES = ("completed", "cancelled")


class PlannedClass(Base):
    __tablename__ = "planned_classes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)  # minutes, end - start

    routine_id: Mapped[int | None] = mapped_column(
        ForeignKey("routines.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    class_type: Mapped[str] = mapped_column(String(20), nullable=False, default="custom")
    max_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)
    target_students: Mapped[list[int] | None] = mapped_column(JSON, nullable=True)
    materials_needed: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    notes: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="planned", index=True)
    routine_completion_id: Mapped[int | None] = mapped_column(
        ForeignKey("routine_completions.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_by: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_planned_classes_date_start_time", "date", "start_time"),
    )
