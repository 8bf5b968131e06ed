"""
Read-only statistics over the catalog and the session history.

Counters come from SQL aggregates; the period and per-student breakdowns
load the completions in range and fold them in Python.
"""
import math
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import as_utc, utcnow
from app.core.config import settings
from app.core.errors import ValidationError
from app.models.exercise import Exercise
from app.models.routine import Routine
from app.models.routine_completion import RoutineCompletion
from app.models.routine_completion_attendee import RoutineCompletionAttendee, participation_percentage
from app.models.user import User
from app.services.visibility import visible_filter

POPULAR_LIMIT = 5
RECENT_LIMIT = 5


def _avg(values: list[float], places: int = 2) -> Optional[float]:
    if not values:
        return None
    return round(math.fsum(values) / len(values), places)


async def _count_by(db: AsyncSession, model: Any, column: Any, *where: Any) -> dict[str, int]:
    res = await db.execute(select(column, func.count(model.id)).where(*where).group_by(column))
    return {key: n for key, n in res.all()}


def _summary_row(item: Any) -> dict[str, Any]:
    return {
        "id": item.id,
        "name": item.name,
        "usage_count": item.usage_count,
        "average_rating": item.average_rating,
    }


async def exercise_statistics(db: AsyncSession, actor: User) -> dict[str, Any]:
    visible = (visible_filter(Exercise, actor), Exercise.is_active.is_(True))

    total = (await db.execute(select(func.count(Exercise.id)).where(*visible))).scalar_one()
    multi = (await db.execute(
        select(func.count(Exercise.id)).where(*visible, Exercise.is_multi_timer.is_(True))
    )).scalar_one()
    templates = (await db.execute(
        select(func.count(Exercise.id)).where(*visible, Exercise.is_template.is_(True))
    )).scalar_one()

    popular = await db.execute(
        select(Exercise)
        .where(*visible)
        .order_by(Exercise.usage_count.desc(), Exercise.average_rating.desc().nulls_last(), Exercise.id.asc())
        .limit(POPULAR_LIMIT)
    )
    recent = await db.execute(
        select(Exercise).where(*visible).order_by(Exercise.created_at.desc(), Exercise.id.desc()).limit(RECENT_LIMIT)
    )

    return {
        "total_exercises": total,
        "by_work_type": await _count_by(db, Exercise, Exercise.work_type, *visible),
        "by_difficulty": await _count_by(db, Exercise, Exercise.difficulty, *visible),
        "by_intensity": await _count_by(db, Exercise, Exercise.intensity, *visible),
        "multi_timer_exercises": multi,
        "templates": templates,
        "popular_exercises": [_summary_row(ex) for ex in popular.scalars().all()],
        "recent_exercises": [_summary_row(ex) for ex in recent.scalars().all()],
    }


async def routine_statistics(db: AsyncSession, actor: User, now: Optional[datetime] = None) -> dict[str, Any]:
    visible = (visible_filter(Routine, actor), Routine.is_active.is_(True))
    week_start, _ = _week_bounds(as_utc(now or utcnow()))

    total = (await db.execute(select(func.count(Routine.id)).where(*visible))).scalar_one()
    templates = (await db.execute(
        select(func.count(Routine.id)).where(*visible, Routine.is_template.is_(True))
    )).scalar_one()
    favorites = (await db.execute(
        select(func.count(Routine.id)).where(*visible, Routine.is_favorite.is_(True))
    )).scalar_one()
    this_week = (await db.execute(
        select(func.count(RoutineCompletion.id)).where(RoutineCompletion.completed_at >= week_start)
    )).scalar_one()

    popular = await db.execute(
        select(Routine)
        .where(*visible)
        .order_by(Routine.usage_count.desc(), Routine.average_rating.desc().nulls_last(), Routine.id.asc())
        .limit(POPULAR_LIMIT)
    )

    return {
        "total_routines": total,
        "by_difficulty": await _count_by(db, Routine, Routine.difficulty, *visible),
        "by_level": await _count_by(db, Routine, Routine.level, *visible),
        "templates": templates,
        "favorites": favorites,
        "popular_routines": [_summary_row(r) for r in popular.scalars().all()],
        "completions_this_week": this_week,
    }


# --- session history ---

def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _week_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = _day_start(now.date() - timedelta(days=now.weekday()))
    return start, start + timedelta(days=7)


async def _completions_between(
    db: AsyncSession,
    start: datetime,
    end: datetime,
    trainer_id: Optional[int] = None,
) -> list[RoutineCompletion]:
    stmt = select(RoutineCompletion).where(
        RoutineCompletion.completed_at >= start,
        RoutineCompletion.completed_at < end,
    )
    if trainer_id is not None:
        stmt = stmt.where(RoutineCompletion.completed_by == trainer_id)
    res = await db.execute(stmt.order_by(RoutineCompletion.completed_at.asc(), RoutineCompletion.id.asc()))
    return list(res.scalars().all())


async def _attendees_for(db: AsyncSession, completion_ids: list[int]) -> list[RoutineCompletionAttendee]:
    if not completion_ids:
        return []
    res = await db.execute(
        select(RoutineCompletionAttendee).where(RoutineCompletionAttendee.routine_completion_id.in_(completion_ids))
    )
    return list(res.scalars().all())


async def _period_summary(db: AsyncSession, completions: list[RoutineCompletion]) -> dict[str, Any]:
    attendees = await _attendees_for(db, [c.id for c in completions])
    return {
        "sessions": len(completions),
        "total_minutes": math.fsum(c.actual_duration for c in completions),
        "unique_students": len({a.student_id for a in attendees}),
        "average_rating": _avg([c.rating for c in completions if c.rating is not None]),
    }


async def completion_dashboard(db: AsyncSession, now: Optional[datetime] = None) -> dict[str, Any]:
    now = as_utc(now or utcnow())
    today = _day_start(now.date())
    week_start, _ = _week_bounds(now)
    month_start = _day_start(now.date().replace(day=1))
    horizon = today + timedelta(days=1)

    recent = await db.execute(
        select(RoutineCompletion)
        .order_by(RoutineCompletion.completed_at.desc(), RoutineCompletion.id.desc())
        .limit(RECENT_LIMIT)
    )

    return {
        "today": await _period_summary(db, await _completions_between(db, today, horizon)),
        "this_week": await _period_summary(db, await _completions_between(db, week_start, horizon)),
        "this_month": await _period_summary(db, await _completions_between(db, month_start, horizon)),
        "recent_completions": [
            {
                "id": c.id,
                "routine_id": c.routine_id,
                "routine_name": c.routine_name,
                "completed_at": c.completed_at,
                "actual_duration": c.actual_duration,
                "rating": c.rating,
            }
            for c in recent.scalars().all()
        ],
    }


def default_range(
    start: Optional[date],
    end: Optional[date],
    today: Optional[date] = None,
) -> tuple[date, date]:
    end = end or today or utcnow().date()
    start = start or end - timedelta(days=settings.DEFAULT_ANALYTICS_DAYS)
    if start > end:
        raise ValidationError("start_date must not be after end_date", errors={"start_date": ["After end_date"]})
    return start, end


async def completion_analytics(
    db: AsyncSession,
    start: Optional[date] = None,
    end: Optional[date] = None,
    trainer_id: Optional[int] = None,
) -> dict[str, Any]:
    start, end = default_range(start, end)
    completions = await _completions_between(db, _day_start(start), _day_start(end + timedelta(days=1)), trainer_id)
    attendees = await _attendees_for(db, [c.id for c in completions])
    by_completion: dict[int, list[RoutineCompletionAttendee]] = defaultdict(list)
    for a in attendees:
        by_completion[a.routine_completion_id].append(a)

    daily: dict[str, dict[str, Any]] = {}
    work_minutes: dict[str, float] = defaultdict(float)
    categories: dict[str, dict[str, Any]] = {}
    for c in completions:
        key = as_utc(c.completed_at).date().isoformat()
        day = daily.setdefault(key, {"date": key, "sessions": 0, "minutes": 0.0, "students": set()})
        day["sessions"] += 1
        day["minutes"] += c.actual_duration
        day["students"].update(a.student_id for a in by_completion[c.id])

        for detail in c.exercise_completions or []:
            if detail.get("work_type") and detail.get("duration"):
                work_minutes[detail["work_type"]] += detail["duration"]

        name = c.category_name or "uncategorized"
        cat = categories.setdefault(name, {"category": name, "sessions": 0, "minutes": 0.0})
        cat["sessions"] += 1
        cat["minutes"] += c.actual_duration

    students: dict[int, dict[str, Any]] = {}
    actual_by_id = {c.id: c.actual_duration for c in completions}
    for a in attendees:
        row = students.setdefault(a.student_id, {"student_id": a.student_id, "sessions": 0, "minutes": 0.0, "pcts": []})
        row["sessions"] += 1
        row["minutes"] += a.participation_minutes
        row["pcts"].append(participation_percentage(a.participation_minutes, actual_by_id[a.routine_completion_id]))

    summary = await _period_summary(db, completions)
    return {
        "start_date": start,
        "end_date": end,
        "summary": summary,
        "daily_stats": [
            {"date": d["date"], "sessions": d["sessions"], "minutes": d["minutes"], "unique_students": len(d["students"])}
            for d in daily.values()
        ],
        "work_type_minutes": dict(work_minutes),
        "student_participation": [
            {
                "student_id": s["student_id"],
                "sessions": s["sessions"],
                "minutes": s["minutes"],
                "average_participation": _avg(s["pcts"], 1),
            }
            for s in sorted(students.values(), key=lambda s: (-s["sessions"], s["student_id"]))
        ],
        "category_stats": list(categories.values()),
    }


def consistency_rate(full_sessions: int, total_sessions: int) -> float:
    if total_sessions == 0:
        return 0.0
    return round(full_sessions / total_sessions * 100, 1)


async def student_analytics(
    db: AsyncSession,
    student_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> dict[str, Any]:
    res = await db.execute(select(User).where(User.id == student_id))
    student = res.scalar_one_or_none()
    if not student or not student.is_student:
        raise ValidationError("Not a student", errors={"student_id": [f"User {student_id} is not a student"]})

    start, end = default_range(start, end)
    res = await db.execute(
        select(RoutineCompletionAttendee, RoutineCompletion)
        .join(RoutineCompletion, RoutineCompletion.id == RoutineCompletionAttendee.routine_completion_id)
        .where(
            RoutineCompletionAttendee.student_id == student_id,
            RoutineCompletion.completed_at >= _day_start(start),
            RoutineCompletion.completed_at < _day_start(end + timedelta(days=1)),
        )
        .order_by(RoutineCompletion.completed_at.asc())
    )
    rows = res.all()

    weekly: dict[str, dict[str, Any]] = {}
    categories: dict[str, float] = defaultdict(float)
    pcts = []
    full = 0
    for attendee, completion in rows:
        pcts.append(participation_percentage(attendee.participation_minutes, completion.actual_duration))
        if attendee.completed_full_session:
            full += 1
        day = as_utc(completion.completed_at).date()
        week = (day - timedelta(days=day.weekday())).isoformat()
        bucket = weekly.setdefault(week, {"week_start": week, "sessions": 0, "minutes": 0.0})
        bucket["sessions"] += 1
        bucket["minutes"] += attendee.participation_minutes
        categories[completion.category_name or "uncategorized"] += attendee.participation_minutes

    return {
        "student_id": student_id,
        "start_date": start,
        "end_date": end,
        "total_sessions": len(rows),
        "total_minutes": math.fsum(a.participation_minutes for a, _ in rows),
        "average_participation": _avg(pcts, 1) or 0.0,
        "full_sessions": full,
        "consistency_rate": consistency_rate(full, len(rows)),
        "weekly_progress": list(weekly.values()),
        "category_breakdown": dict(categories),
    }
