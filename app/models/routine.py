from __future__ import annotations

from datetime import datetime
from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base


class Routine(Base):
    __tablename__ = "routines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    objective: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Cached sum of block durations, rewritten on every structural change
    total_duration: Mapped[float] = mapped_column(Float, nullable=False, default=0)

    difficulty: Mapped[str] = mapped_column(String(20), nullable=False, default="intermediate")
    level: Mapped[str] = mapped_column(String(20), nullable=False, default="intermedio")

    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    materials: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    protection: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    is_template: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    is_favorite: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    visibility: Mapped[str] = mapped_column(String(10), nullable=False, default="private")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    repeat_in_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scheduled_days: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)  # monday..sunday

    trainer_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

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
        Index("ix_routines_created_by_visibility_active", "created_by", "visibility", "is_active"),
        Index("ix_routines_difficulty_level", "difficulty", "level"),
    )
