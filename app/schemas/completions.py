from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AttendeeIn(BaseModel):
    student_id: int
    participation_minutes: float = Field(ge=0)
    performance_notes: list[str] | None = None
    completed_full_session: bool = True


class BlockCompletionIn(BaseModel):
    block_id: int | None = None
    name: str | None = None
    completed: bool = True
    duration: float | None = Field(default=None, ge=0)


class ExerciseCompletionIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    exercise_id: int | None = None
    name: str | None = None
    work_type: str | None = Field(default=None, alias="workType")
    duration: float | None = Field(default=None, ge=0)
    completed: bool = True
    rating: int | None = Field(default=None, ge=1, le=5)


class CompletionCreate(BaseModel):
    routine_id: int
    completed_at: datetime
    actual_duration: float = Field(ge=0)
    rating: int | None = Field(default=None, ge=1, le=5)
    morning_session: bool = False
    afternoon_session: bool = False
    is_full_day_complete: bool = False
    notes: list[str] | None = None
    block_completions: list[BlockCompletionIn] | None = None
    exercise_completions: list[ExerciseCompletionIn] | None = None
    attendees: list[AttendeeIn] = Field(min_length=1)


class CompletionUpdate(BaseModel):
    # Routine and attendee set are fixed once recorded
    model_config = ConfigDict(extra="forbid")

    actual_duration: float | None = Field(default=None, ge=0)
    rating: int | None = Field(default=None, ge=1, le=5)
    notes: list[str] | None = None
    block_completions: list[BlockCompletionIn] | None = None
    exercise_completions: list[ExerciseCompletionIn] | None = None

    @field_validator("actual_duration")
    @classmethod
    def not_null(cls, value):
        # rating may be cleared, the duration may not
        if value is None:
            raise ValueError("may not be null")
        return value


class CompletionFilters(BaseModel):
    start_date: datetime | None = None
    end_date: datetime | None = None
    routine_id: int | None = None
    category_id: int | None = None
    completed_by: int | None = None
    session_type: str | None = Field(default=None, pattern="^(morning|afternoon|full_day)$")
    min_rating: int | None = None
    student_id: int | None = None


class AttendeeOut(BaseModel):
    student_id: int
    participation_minutes: float
    participation_percentage: float
    completed_full_session: bool
    performance_notes: list[str] | None


class CompletionOut(BaseModel):
    id: int
    routine_id: int
    routine_name: str
    category_id: int | None
    category_name: str | None
    completed_at: datetime
    planned_duration: float
    actual_duration: float
    duration_difference: float
    efficiency_percentage: float
    rating: Optional[int]
    morning_session: bool
    afternoon_session: bool
    is_full_day_complete: bool
    notes: list[str] | None
    block_completions: list[dict] | None
    exercise_completions: list[dict] | None
    completed_by: int
    attendees: list[AttendeeOut] = []
