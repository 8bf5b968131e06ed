from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from app.schemas.exercises import DIFFICULTY_PATTERN, VISIBILITY_PATTERN, TimerSpec

LEVEL_PATTERN = "^(principiante|intermedio|avanzado)$"
COLOR_PATTERN = "^#[0-9A-Fa-f]{6}$"

Weekday = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class BlockExerciseIn(BaseModel):
    exercise_id: int
    duration_override: float | None = Field(default=None, ge=1)
    exercise_notes: list[str] | None = None
    custom_timers: list[TimerSpec] | None = None


class BlockIn(BaseModel):
    # Present when the block already exists and should be kept
    id: int | None = None
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    color: str = Field(default="#3B82F6", pattern=COLOR_PATTERN)
    notes: str | None = Field(default=None, max_length=1000)
    exercises: list[BlockExerciseIn] = Field(min_length=1)


class RoutineCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    objective: str | None = Field(default=None, max_length=1000)
    difficulty: str = Field(default="intermediate", pattern=DIFFICULTY_PATTERN)
    level: str = Field(default="intermedio", pattern=LEVEL_PATTERN)
    tags: list[str] | None = None
    materials: list[str] | None = None
    protection: list[str] | None = None
    is_template: bool = False
    is_favorite: bool = False
    visibility: str = Field(default="private", pattern=VISIBILITY_PATTERN)
    repeat_in_days: int = Field(default=0, ge=0, le=365)
    scheduled_days: list[Weekday] | None = None
    trainer_notes: str | None = Field(default=None, max_length=2000)
    category_ids: list[int] | None = None
    blocks: list[BlockIn] = Field(min_length=1)


class RoutineUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    objective: str | None = Field(default=None, max_length=1000)
    difficulty: str | None = Field(default=None, pattern=DIFFICULTY_PATTERN)
    level: str | None = Field(default=None, pattern=LEVEL_PATTERN)
    tags: list[str] | None = None
    materials: list[str] | None = None
    protection: list[str] | None = None
    is_template: bool | None = None
    is_favorite: bool | None = None
    visibility: str | None = Field(default=None, pattern=VISIBILITY_PATTERN)
    is_active: bool | None = None
    repeat_in_days: int | None = Field(default=None, ge=0, le=365)
    scheduled_days: list[Weekday] | None = None
    trainer_notes: str | None = Field(default=None, max_length=2000)
    category_ids: list[int] | None = None

    @field_validator(
        "name", "difficulty", "level", "is_template", "is_favorite",
        "visibility", "is_active", "repeat_in_days",
    )
    @classmethod
    def not_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value


class ReplaceBlocksIn(BaseModel):
    blocks: list[BlockIn] = Field(min_length=1)


class RoutineFilters(BaseModel):
    difficulty: str | None = None
    level: str | None = None
    category_id: int | None = None
    is_template: bool | None = None
    is_favorite: bool | None = None
    min_duration: float | None = None
    max_duration: float | None = None
    search: str | None = None
    active: bool = True
    sort_by: Literal["name", "usage", "rating", "duration", "created"] = "name"
    sort_direction: Literal["asc", "desc"] = "asc"


class BlockExerciseOut(BaseModel):
    id: int
    exercise_id: int
    exercise_name: str
    sort_order: int
    duration_override: float | None
    effective_duration: float
    exercise_notes: list[str] | None
    custom_timers: list[dict] | None


class BlockOut(BaseModel):
    id: int
    name: str
    description: str | None
    color: str
    notes: str | None
    sort_order: int
    duration: float
    exercises: list[BlockExerciseOut]


class RoutineOut(BaseModel):
    id: int
    name: str
    description: str | None
    objective: str | None
    total_duration: float
    difficulty: str
    level: str
    tags: list[str] | None
    materials: list[str] | None
    protection: list[str] | None
    is_template: bool
    is_favorite: bool
    visibility: str
    is_active: bool
    repeat_in_days: int
    scheduled_days: list[str] | None
    trainer_notes: str | None
    created_by: int
    usage_count: int
    average_rating: Optional[float]
    category_ids: list[int] = []
    blocks: list[BlockOut] = []
    created_at: datetime | None = None
