import datetime as dt

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.schemas.completions import CompletionCreate

CLASS_TYPE_PATTERN = "^(morning|afternoon|evening|custom)$"


class PlannedClassCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    routine_id: int | None = None
    class_type: str = Field(default="custom", pattern=CLASS_TYPE_PATTERN)
    max_participants: int | None = Field(default=None, ge=1, le=50)
    target_students: list[int] | None = None
    materials_needed: list[str] | None = None
    notes: list[str] | None = None

    @model_validator(mode="after")
    def check_times(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class PlannedClassUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    date: dt.date | None = None
    start_time: dt.time | None = None
    end_time: dt.time | None = None
    routine_id: int | None = None
    class_type: str | None = Field(default=None, pattern=CLASS_TYPE_PATTERN)
    max_participants: int | None = Field(default=None, ge=1, le=50)
    target_students: list[int] | None = None
    materials_needed: list[str] | None = None
    notes: list[str] | None = None


class DuplicateClassIn(BaseModel):
    date: dt.date
    start_time: dt.time | None = None
    end_time: dt.time | None = None
    title: str | None = Field(default=None, min_length=1, max_length=255)


class CompleteClassIn(BaseModel):
    # Either link a completion recorded earlier or record one now
    routine_completion_id: int | None = None
    completion: CompletionCreate | None = None

    @model_validator(mode="after")
    def check_exactly_one(self):
        if (self.routine_completion_id is None) == (self.completion is None):
            raise ValueError("provide either routine_completion_id or completion")
        return self


class PlannedClassOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str | None
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    duration: int
    routine_id: int | None
    class_type: str
    max_participants: int | None
    target_students: list[int] | None
    materials_needed: list[str] | None
    notes: list[str] | None
    status: str
    routine_completion_id: int | None
    created_by: int
