"""
Planned classes: a scheduled session that moves planned -> in_progress ->
completed, or to cancelled. Completing a class links (or records) the
routine completion that describes what actually happened.
"""
import logging
from calendar import monthrange
from collections import Counter
from datetime import date, datetime, time, timedelta
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import as_utc, utcnow
from app.core.config import settings
from app.core.db import atomic
from app.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.models.planned_class import TERMINAL_STATUSES, PlannedClass
from app.models.routine import Routine
from app.models.routine_completion import RoutineCompletion
from app.models.user import User
from app.schemas.planned_classes import (
    CompleteClassIn,
    DuplicateClassIn,
    PlannedClassCreate,
    PlannedClassUpdate,
)
from app.services import session_recorder
from app.services.visibility import is_elevated

logger = logging.getLogger(__name__)

COPY_SUFFIX = " (Copy)"


def duration_minutes(start: time, end: time) -> int:
    anchor = date(2000, 1, 1)
    delta = datetime.combine(anchor, end) - datetime.combine(anchor, start)
    return int(delta.total_seconds() // 60)


def in_start_window(planned: PlannedClass, now: datetime, lead_minutes: int) -> bool:
    """True when `now` (UTC) falls on the class date between start - lead and end."""
    now = as_utc(now)
    opens = datetime.combine(planned.date, planned.start_time, tzinfo=now.tzinfo) - timedelta(minutes=lead_minutes)
    closes = datetime.combine(planned.date, planned.end_time, tzinfo=now.tzinfo)
    return now.date() == planned.date and opens <= now <= closes


async def get_class_or_404(db: AsyncSession, class_id: int) -> PlannedClass:
    res = await db.execute(select(PlannedClass).where(PlannedClass.id == class_id))
    planned = res.scalar_one_or_none()
    if not planned:
        raise NotFoundError("Planned class", class_id)
    return planned


def _require_staff(actor: User) -> None:
    if not is_elevated(actor):
        raise PermissionDeniedError("Only trainers and admins can manage classes")


async def _check_students(db: AsyncSession, student_ids: Optional[list[int]]) -> None:
    if not student_ids:
        return
    res = await db.execute(select(User.id).where(User.id.in_(student_ids), User.role == "student"))
    valid = {r[0] for r in res.all()}
    invalid = [sid for sid in student_ids if sid not in valid]
    if invalid:
        raise ValidationError(
            "Some target students are not valid students",
            errors={"target_students": [f"User {sid} is not a student" for sid in invalid]},
        )


async def _check_routine(db: AsyncSession, routine_id: Optional[int]) -> None:
    if routine_id is None:
        return
    res = await db.execute(select(Routine.id).where(Routine.id == routine_id))
    if res.scalar_one_or_none() is None:
        raise ValidationError("Unknown routine", errors={"routine_id": [f"Routine {routine_id} does not exist"]})


def _check_not_past(day: date, today: Optional[date] = None) -> None:
    today = today or utcnow().date()
    if day < today:
        raise ValidationError("Class date cannot be in the past", errors={"date": ["Date is in the past"]})


async def create_planned_class(db: AsyncSession, actor: User, payload: PlannedClassCreate) -> PlannedClass:
    _require_staff(actor)
    _check_not_past(payload.date)
    await _check_students(db, payload.target_students)
    await _check_routine(db, payload.routine_id)

    async with atomic(db):
        planned = PlannedClass(
            **payload.model_dump(),
            duration=duration_minutes(payload.start_time, payload.end_time),
            status="planned",
            created_by=actor.id,
        )
        db.add(planned)

    await db.refresh(planned)
    logger.info("Planned class %s created for %s by user %s", planned.id, planned.date, actor.id)
    return planned


async def update_planned_class(db: AsyncSession, actor: User, class_id: int, patch: PlannedClassUpdate) -> PlannedClass:
    _require_staff(actor)
    planned = await get_class_or_404(db, class_id)
    if planned.status in TERMINAL_STATUSES:
        raise ConflictError(f"Cannot modify a {planned.status} class")

    data = patch.model_dump(exclude_unset=True)
    if "date" in data and data["date"] is not None:
        _check_not_past(data["date"])
    if "target_students" in data:
        await _check_students(db, data["target_students"])
    if "routine_id" in data:
        await _check_routine(db, data["routine_id"])

    start = data.get("start_time") or planned.start_time
    end = data.get("end_time") or planned.end_time
    if end <= start:
        raise ValidationError("end_time must be after start_time", errors={"end_time": ["Must be after start_time"]})

    async with atomic(db):
        for key, value in data.items():
            if key in ("title", "date", "start_time", "end_time", "class_type") and value is None:
                continue
            setattr(planned, key, value)
        planned.duration = duration_minutes(start, end)

    await db.refresh(planned)
    logger.info("Planned class %s updated by user %s", planned.id, actor.id)
    return planned


async def delete_planned_class(db: AsyncSession, actor: User, class_id: int) -> None:
    _require_staff(actor)
    planned = await get_class_or_404(db, class_id)
    if planned.status == "completed":
        raise ConflictError("Cannot delete a completed class")

    async with atomic(db):
        await db.execute(delete(PlannedClass).where(PlannedClass.id == class_id))

    logger.info("Planned class %s deleted by user %s", class_id, actor.id)


async def duplicate_planned_class(db: AsyncSession, actor: User, class_id: int, payload: DuplicateClassIn) -> PlannedClass:
    _require_staff(actor)
    source = await get_class_or_404(db, class_id)
    _check_not_past(payload.date)

    start = payload.start_time or source.start_time
    end = payload.end_time or source.end_time
    if end <= start:
        raise ValidationError("end_time must be after start_time", errors={"end_time": ["Must be after start_time"]})

    async with atomic(db):
        copy = PlannedClass(
            title=payload.title or source.title + COPY_SUFFIX,
            description=source.description,
            date=payload.date,
            start_time=start,
            end_time=end,
            duration=duration_minutes(start, end),
            routine_id=source.routine_id,
            class_type=source.class_type,
            max_participants=source.max_participants,
            target_students=source.target_students,
            materials_needed=source.materials_needed,
            notes=source.notes,
            status="planned",
            routine_completion_id=None,
            created_by=actor.id,
        )
        db.add(copy)

    await db.refresh(copy)
    logger.info("Planned class %s duplicated to %s by user %s", source.id, copy.id, actor.id)
    return copy


async def start_class(db: AsyncSession, actor: User, class_id: int, now: Optional[datetime] = None) -> PlannedClass:
    _require_staff(actor)
    planned = await get_class_or_404(db, class_id)
    if planned.status != "planned":
        raise ConflictError(f"Cannot start a {planned.status} class")

    now = now or utcnow()
    if not in_start_window(planned, now, settings.CLASS_START_LEAD_MINUTES):
        logger.warning("Refused to start class %s outside its time window", class_id)
        raise ConflictError(
            f"Class can only be started on {planned.date} from "
            f"{settings.CLASS_START_LEAD_MINUTES} minutes before {planned.start_time} until {planned.end_time}"
        )

    async with atomic(db):
        planned.status = "in_progress"

    await db.refresh(planned)
    logger.info("Planned class %s started by user %s", planned.id, actor.id)
    return planned


async def cancel_class(db: AsyncSession, actor: User, class_id: int) -> PlannedClass:
    _require_staff(actor)
    planned = await get_class_or_404(db, class_id)
    if planned.status in TERMINAL_STATUSES:
        raise ConflictError(f"Cannot cancel a {planned.status} class")

    async with atomic(db):
        planned.status = "cancelled"

    await db.refresh(planned)
    logger.info("Planned class %s cancelled by user %s", planned.id, actor.id)
    return planned


async def complete_class(db: AsyncSession, actor: User, class_id: int, payload: CompleteClassIn) -> PlannedClass:
    """
    Mark a class completed and attach its session record.

    The payload either names a completion recorded earlier or carries a new
    one; a new completion is written in the same transaction as the status
    change, so a rejected completion leaves the class untouched.
    """
    _require_staff(actor)
    planned = await get_class_or_404(db, class_id)
    if planned.status in TERMINAL_STATUSES:
        raise ConflictError(f"Class is already {planned.status}")

    async with atomic(db):
        if payload.routine_completion_id is not None:
            res = await db.execute(
                select(RoutineCompletion.id).where(RoutineCompletion.id == payload.routine_completion_id)
            )
            if res.scalar_one_or_none() is None:
                raise NotFoundError("Completion", payload.routine_completion_id)
            completion_id = payload.routine_completion_id
        else:
            completion = await session_recorder.write_completion(db, actor, payload.completion)
            completion_id = completion.id

        planned.status = "completed"
        planned.routine_completion_id = completion_id

    await db.refresh(planned)
    logger.info("Planned class %s completed with completion %s", planned.id, completion_id)
    return planned


async def list_planned_classes(
    db: AsyncSession,
    start: Optional[date] = None,
    end: Optional[date] = None,
    status: Optional[str] = None,
) -> list[PlannedClass]:
    stmt = select(PlannedClass)
    if start is not None:
        stmt = stmt.where(PlannedClass.date >= start)
    if end is not None:
        stmt = stmt.where(PlannedClass.date <= end)
    if status is not None:
        stmt = stmt.where(PlannedClass.status == status)

    res = await db.execute(stmt.order_by(PlannedClass.date.asc(), PlannedClass.start_time.asc()))
    return list(res.scalars().all())


# --- read views ---

async def _routine_names(db: AsyncSession, classes: list[PlannedClass]) -> dict[int, str]:
    ids = {c.routine_id for c in classes if c.routine_id is not None}
    if not ids:
        return {}
    res = await db.execute(select(Routine.id, Routine.name).where(Routine.id.in_(ids)))
    return {rid: name for rid, name in res.all()}


def _class_row(planned: PlannedClass, routine_names: dict[int, str]) -> dict[str, Any]:
    return {
        "id": planned.id,
        "title": planned.title,
        "date": planned.date,
        "start_time": planned.start_time.strftime("%H:%M"),
        "end_time": planned.end_time.strftime("%H:%M"),
        "duration": planned.duration,
        "status": planned.status,
        "class_type": planned.class_type,
        "routine_id": planned.routine_id,
        "routine_name": routine_names.get(planned.routine_id),
        "max_participants": planned.max_participants,
        "target_student_count": len(planned.target_students or []),
    }


def _count_by(classes: list[PlannedClass], attr: str) -> dict[str, int]:
    return dict(Counter(getattr(c, attr) for c in classes))


async def class_calendar(
    db: AsyncSession,
    start: Optional[date] = None,
    end: Optional[date] = None,
    today: Optional[date] = None,
) -> dict[str, Any]:
    """Classes grouped by day; the range defaults to the current month."""
    today = today or utcnow().date()
    start = start or today.replace(day=1)
    end = end or today.replace(day=monthrange(today.year, today.month)[1])
    if start > end:
        raise ValidationError("start_date must not be after end_date", errors={"start_date": ["After end_date"]})

    classes = await list_planned_classes(db, start, end)
    names = await _routine_names(db, classes)

    days: dict[date, list[PlannedClass]] = {}
    for planned in classes:
        days.setdefault(planned.date, []).append(planned)

    return {
        "start_date": start,
        "end_date": end,
        "calendar": [
            {
                "date": day,
                "classes": [_class_row(c, names) for c in day_classes],
                "class_count": len(day_classes),
                "total_duration": sum(c.duration for c in day_classes),
            }
            for day, day_classes in days.items()
        ],
        "summary": {
            "total_classes": len(classes),
            "by_status": _count_by(classes, "status"),
            "by_class_type": _count_by(classes, "class_type"),
            "total_duration": sum(c.duration for c in classes),
        },
    }


async def todays_classes(db: AsyncSession, now: Optional[datetime] = None) -> dict[str, Any]:
    today = as_utc(now or utcnow()).date()
    classes = await list_planned_classes(db, today, today)
    names = await _routine_names(db, classes)
    by_status = Counter(c.status for c in classes)

    return {
        "date": today,
        "classes": [_class_row(c, names) for c in classes],
        "summary": {
            "total_classes": len(classes),
            "completed": by_status["completed"],
            "in_progress": by_status["in_progress"],
            "upcoming": by_status["planned"],
            "cancelled": by_status["cancelled"],
        },
    }


async def upcoming_classes(db: AsyncSession, days: int = 7, now: Optional[datetime] = None) -> dict[str, Any]:
    """Planned classes from today through `days` days ahead."""
    today = as_utc(now or utcnow()).date()
    classes = await list_planned_classes(db, today, today + timedelta(days=days), status="planned")
    names = await _routine_names(db, classes)
    return {
        "days": days,
        "classes": [_class_row(c, names) for c in classes],
        "count": len(classes),
    }


async def class_statistics(db: AsyncSession, actor: User, now: Optional[datetime] = None) -> dict[str, Any]:
    """Counts over the actor's classes; admins see every class."""
    now = as_utc(now or utcnow())
    today = now.date()
    week_start = today - timedelta(days=today.weekday())
    month_start = today.replace(day=1)
    month_end = today.replace(day=monthrange(today.year, today.month)[1])

    stmt = select(PlannedClass)
    if not actor.is_admin:
        stmt = stmt.where(PlannedClass.created_by == actor.id)
    classes = list((await db.execute(stmt)).scalars().all())

    def upcoming(c: PlannedClass) -> bool:
        if c.status != "planned":
            return False
        return c.date > today or (c.date == today and c.start_time > now.time())

    return {
        "total_classes": len(classes),
        "by_status": _count_by(classes, "status"),
        "by_class_type": _count_by(classes, "class_type"),
        "this_week": sum(1 for c in classes if week_start <= c.date <= week_start + timedelta(days=6)),
        "this_month": sum(1 for c in classes if month_start <= c.date <= month_end),
        "upcoming": sum(1 for c in classes if upcoming(c)),
        "today": sum(1 for c in classes if c.date == today),
    }
