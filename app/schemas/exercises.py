from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

INTENSITY_PATTERN = "^(low|medium|high)$"
WORK_TYPE_PATTERN = "^(strength|coordination|reaction|technique|cardio|flexibility|sparring|conditioning)$"
DIFFICULTY_PATTERN = "^(beginner|intermediate|advanced)$"
VISIBILITY_PATTERN = "^(private|shared|public)$"


class TimerSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=100)
    duration: float = Field(gt=0)
    # 0 repetitions would make the rest term negative
    repetitions: int = Field(ge=1)
    rest_between: float = Field(default=0, ge=0, alias="restBetween")

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)


class ExerciseCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    duration: float = Field(default=0, ge=0, le=300)
    intensity: str = Field(default="medium", pattern=INTENSITY_PATTERN)
    work_type: str = Field(default="technique", pattern=WORK_TYPE_PATTERN)
    difficulty: str = Field(default="intermediate", pattern=DIFFICULTY_PATTERN)
    tags: list[str] | None = None
    materials: list[str] | None = None
    protection: list[str] | None = None
    instructions: list[str] | None = None
    video_url: str | None = Field(default=None, max_length=500)
    image_url: str | None = Field(default=None, max_length=500)
    is_multi_timer: bool = False
    timers: list[TimerSpec] | None = None
    is_template: bool = False
    visibility: str = Field(default="private", pattern=VISIBILITY_PATTERN)
    category_ids: list[int] | None = None

    @model_validator(mode="after")
    def check_duration_source(self):
        if self.is_multi_timer and not self.timers:
            raise ValueError("multi-timer exercises need at least one timer")
        if not self.is_multi_timer and self.duration < 1:
            raise ValueError("duration must be at least 1 minute")
        return self


class ExerciseUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    duration: float | None = Field(default=None, ge=1, le=300)
    intensity: str | None = Field(default=None, pattern=INTENSITY_PATTERN)
    work_type: str | None = Field(default=None, pattern=WORK_TYPE_PATTERN)
    difficulty: str | None = Field(default=None, pattern=DIFFICULTY_PATTERN)
    tags: list[str] | None = None
    materials: list[str] | None = None
    protection: list[str] | None = None
    instructions: list[str] | None = None
    video_url: str | None = Field(default=None, max_length=500)
    image_url: str | None = Field(default=None, max_length=500)
    is_multi_timer: bool | None = None
    timers: list[TimerSpec] | None = None
    is_template: bool | None = None
    visibility: str | None = Field(default=None, pattern=VISIBILITY_PATTERN)
    is_active: bool | None = None
    category_ids: list[int] | None = None

    @field_validator(
        "name", "duration", "intensity", "work_type", "difficulty",
        "is_multi_timer", "is_template", "visibility", "is_active",
    )
    @classmethod
    def not_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value


class CloneIn(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    visibility: str | None = Field(default=None, pattern=VISIBILITY_PATTERN)


class ExerciseFilters(BaseModel):
    work_type: str | None = None
    difficulty: str | None = None
    intensity: str | None = None
    category_id: int | None = None
    search: str | None = None
    is_template: bool | None = None
    multi_timer: bool | None = None
    active: bool = True


class ExerciseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None
    duration: float
    effective_duration: float
    intensity: str
    work_type: str
    difficulty: str
    tags: list[str] | None
    materials: list[str] | None
    protection: list[str] | None
    instructions: list[str] | None
    video_url: str | None
    image_url: str | None
    is_multi_timer: bool
    timers: list[dict] | None
    is_template: bool
    is_active: bool
    visibility: str
    created_by: int
    usage_count: int
    average_rating: Optional[float]
    category_ids: list[int] = []
    created_at: datetime | None = None
