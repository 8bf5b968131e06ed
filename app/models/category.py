from __future__ import annotations

from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Table, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="general")  # exercise/routine/general
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#3B82F6")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


# Link tables. Rows are written and removed through plain inserts/deletes.
exercise_categories = Table(
    "exercise_categories",
    Base.metadata,
    Column("id", Integer, primary_key=True),
    Column("exercise_id", Integer, ForeignKey("exercises.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("category_id", Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False, index=True),
    UniqueConstraint("exercise_id", "category_id", name="uq_exercise_categories"),
)

routine_categories = Table(
    "routine_categories",
    Base.metadata,
    Column("id", Integer, primary_key=True),
    Column("routine_id", Integer, ForeignKey("routines.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("category_id", Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False, index=True),
    UniqueConstraint("routine_id", "category_id", name="uq_routine_categories"),
)
