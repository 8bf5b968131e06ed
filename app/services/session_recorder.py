"""
Session recorder.

Records one executed session of a routine with its attendees and applies
the statistics that follow from it (routine and exercise usage, average
ratings) inside the same transaction. Nothing else writes usage_count or
average_rating.
"""
import logging
from collections import Counter
from typing import Any, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import as_utc
from app.core.db import atomic
from app.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from app.models.category import Category, routine_categories
from app.models.exercise import Exercise
from app.models.planned_class import PlannedClass
from app.models.routine import Routine
from app.models.routine_completion import RoutineCompletion
from app.models.routine_completion_attendee import RoutineCompletionAttendee, participation_percentage
from app.models.user import User
from app.schemas.completions import CompletionCreate, CompletionFilters, CompletionUpdate
from app.services import exercise_catalog, routine_composer
from app.services.visibility import can_view, is_elevated, visible_filter

logger = logging.getLogger(__name__)


async def get_completion_or_404(db: AsyncSession, completion_id: int) -> RoutineCompletion:
    res = await db.execute(select(RoutineCompletion).where(RoutineCompletion.id == completion_id))
    completion = res.scalar_one_or_none()
    if not completion:
        raise NotFoundError("Completion", completion_id)
    return completion


async def get_completion(db: AsyncSession, actor: User, completion_id: int) -> RoutineCompletion:
    completion = await get_completion_or_404(db, completion_id)
    routine = await routine_composer.get_routine_or_404(db, completion.routine_id)
    if not can_view(routine, actor):
        raise NotFoundError("Completion", completion_id)
    return completion


async def attendees_of(db: AsyncSession, completion_ids: list[int]) -> dict[int, list[RoutineCompletionAttendee]]:
    out: dict[int, list[RoutineCompletionAttendee]] = {cid: [] for cid in completion_ids}
    if not completion_ids:
        return out
    res = await db.execute(
        select(RoutineCompletionAttendee)
        .where(RoutineCompletionAttendee.routine_completion_id.in_(completion_ids))
        .order_by(RoutineCompletionAttendee.id.asc())
    )
    for attendee in res.scalars().all():
        out[attendee.routine_completion_id].append(attendee)
    return out


def _can_manage(completion: RoutineCompletion, actor: User) -> bool:
    return actor.is_admin or completion.completed_by == actor.id


# --- validation (runs before any write) ---

async def _validate_attendees(db: AsyncSession, payload: CompletionCreate) -> None:
    student_ids = [a.student_id for a in payload.attendees]

    duplicates = sorted(sid for sid, n in Counter(student_ids).items() if n > 1)
    if duplicates:
        raise ValidationError(
            "Duplicate attendees",
            errors={"attendees": [f"Student {sid} is listed more than once" for sid in duplicates]},
        )

    res = await db.execute(
        select(User.id).where(User.id.in_(student_ids), User.role == "student")
    )
    valid = {r[0] for r in res.all()}
    invalid = [sid for sid in student_ids if sid not in valid]
    if invalid:
        logger.warning("Rejected completion: non-student attendees %s", invalid)
        raise ValidationError(
            "Some attendees are not valid students",
            errors={"attendees": [f"User {sid} is not a student" for sid in invalid]},
        )


async def _validate_exercise_refs(db: AsyncSession, payload: CompletionCreate | CompletionUpdate) -> list[int]:
    refs = [e.exercise_id for e in payload.exercise_completions or [] if e.exercise_id is not None]
    if not refs:
        return []
    res = await db.execute(select(Exercise.id).where(Exercise.id.in_(set(refs))))
    found = {r[0] for r in res.all()}
    missing = sorted(set(refs) - found)
    if missing:
        raise ValidationError(
            "Exercise completions reference unknown exercises",
            errors={"exercise_completions": [f"Exercise {eid} does not exist" for eid in missing]},
        )
    return refs


async def _first_category(db: AsyncSession, routine_id: int) -> tuple[Optional[int], Optional[str]]:
    res = await db.execute(
        select(Category.id, Category.name)
        .join(routine_categories, routine_categories.c.category_id == Category.id)
        .where(routine_categories.c.routine_id == routine_id)
        .order_by(routine_categories.c.id.asc())
        .limit(1)
    )
    row = res.first()
    return (row.id, row.name) if row else (None, None)


# --- statistics ---

async def recompute_routine_rating(db: AsyncSession, routine_id: int) -> Optional[float]:
    """Plain mean over every rated completion of the routine; None when none are rated."""
    res = await db.execute(
        select(func.avg(RoutineCompletion.rating)).where(
            RoutineCompletion.routine_id == routine_id,
            RoutineCompletion.rating.is_not(None),
        )
    )
    avg = res.scalar_one_or_none()
    average = round(float(avg), 2) if avg is not None else None
    await db.execute(update(Routine).where(Routine.id == routine_id).values(average_rating=average))
    return average


async def _apply_exercise_stats(db: AsyncSession, payload: CompletionCreate) -> None:
    details = payload.exercise_completions or []
    rated = [d for d in details if d.exercise_id is not None and d.rating is not None]
    if rated:
        res = await db.execute(
            select(Exercise).where(Exercise.id.in_({d.exercise_id for d in rated})).with_for_update()
        )
        by_id = {ex.id: ex for ex in res.scalars().all()}
        # Usage count from before this session; repeated ratings of one exercise each add a sample
        samples = {eid: max(ex.usage_count, 1) for eid, ex in by_id.items()}
        for detail in rated:
            exercise_catalog.update_average_rating(by_id[detail.exercise_id], detail.rating, samples[detail.exercise_id])
            samples[detail.exercise_id] += 1
        await db.flush()

    counts = Counter(d.exercise_id for d in details if d.exercise_id is not None)
    for exercise_id, n in sorted(counts.items()):
        await exercise_catalog.increment_usage(db, exercise_id, by=n)


# --- writes ---

async def write_completion(db: AsyncSession, actor: User, payload: CompletionCreate) -> RoutineCompletion:
    """
    Insert the completion, its attendees and the derived statistics.

    Must run inside an open `atomic` block; validation happens first so a
    rejected request never writes anything.
    """
    # Routines the actor cannot see are reported as missing
    routine = await routine_composer.get_routine(db, actor, payload.routine_id)

    await _validate_attendees(db, payload)
    await _validate_exercise_refs(db, payload)

    # Per-row lock so concurrent completions of one routine serialize
    await db.execute(select(Routine.id).where(Routine.id == routine.id).with_for_update())
    category_id, category_name = await _first_category(db, routine.id)

    completion = RoutineCompletion(
        routine_id=routine.id,
        routine_name=routine.name,
        category_id=category_id,
        category_name=category_name,
        completed_at=as_utc(payload.completed_at),
        planned_duration=routine.total_duration,
        actual_duration=payload.actual_duration,
        rating=payload.rating,
        morning_session=payload.morning_session,
        afternoon_session=payload.afternoon_session,
        is_full_day_complete=payload.is_full_day_complete,
        notes=payload.notes,
        block_completions=[b.model_dump() for b in payload.block_completions] if payload.block_completions else None,
        exercise_completions=(
            [e.model_dump() for e in payload.exercise_completions] if payload.exercise_completions else None
        ),
        completed_by=actor.id,
    )
    db.add(completion)
    await db.flush()

    for attendee in payload.attendees:
        db.add(
            RoutineCompletionAttendee(
                routine_completion_id=completion.id,
                student_id=attendee.student_id,
                participation_minutes=attendee.participation_minutes,
                performance_notes=attendee.performance_notes,
                completed_full_session=attendee.completed_full_session,
            )
        )
    await db.flush()

    await db.execute(
        update(Routine).where(Routine.id == routine.id).values(usage_count=Routine.usage_count + 1)
    )
    if payload.rating is not None:
        await recompute_routine_rating(db, routine.id)

    await _apply_exercise_stats(db, payload)
    return completion


async def record_completion(db: AsyncSession, actor: User, payload: CompletionCreate) -> RoutineCompletion:
    if not is_elevated(actor):
        raise PermissionDeniedError("Only trainers and admins can record sessions")

    async with atomic(db):
        completion = await write_completion(db, actor, payload)

    await db.refresh(completion)
    logger.info(
        "Completion %s recorded for routine %s by user %s (%d attendees)",
        completion.id, completion.routine_id, actor.id, len(payload.attendees),
    )
    return completion


async def update_completion(db: AsyncSession, actor: User, completion_id: int, patch: CompletionUpdate) -> RoutineCompletion:
    completion = await get_completion_or_404(db, completion_id)
    if not _can_manage(completion, actor):
        raise PermissionDeniedError()

    data = patch.model_dump(exclude_unset=True)
    if "exercise_completions" in data:
        await _validate_exercise_refs(db, patch)

    async with atomic(db):
        for key, value in data.items():
            setattr(completion, key, value)
        await db.flush()
        if "rating" in data:
            await db.execute(select(Routine.id).where(Routine.id == completion.routine_id).with_for_update())
            await recompute_routine_rating(db, completion.routine_id)

    await db.refresh(completion)
    logger.info("Completion %s updated by user %s", completion.id, actor.id)
    return completion


async def delete_completion(db: AsyncSession, actor: User, completion_id: int) -> None:
    completion = await get_completion_or_404(db, completion_id)
    if not _can_manage(completion, actor):
        raise PermissionDeniedError()

    routine_id = completion.routine_id
    async with atomic(db):
        await db.execute(select(Routine.id).where(Routine.id == routine_id).with_for_update())
        await db.execute(
            update(PlannedClass)
            .where(PlannedClass.routine_completion_id == completion.id)
            .values(routine_completion_id=None)
        )
        await db.execute(
            delete(RoutineCompletionAttendee).where(RoutineCompletionAttendee.routine_completion_id == completion.id)
        )
        await db.execute(delete(RoutineCompletion).where(RoutineCompletion.id == completion.id))
        await recompute_routine_rating(db, routine_id)

    logger.info("Completion %s deleted by user %s", completion_id, actor.id)


# --- reads ---

async def list_completions(db: AsyncSession, actor: User, filters: CompletionFilters) -> list[RoutineCompletion]:
    stmt = select(RoutineCompletion).where(
        RoutineCompletion.routine_id.in_(select(Routine.id).where(visible_filter(Routine, actor)))
    )

    if filters.start_date is not None:
        stmt = stmt.where(RoutineCompletion.completed_at >= as_utc(filters.start_date))
    if filters.end_date is not None:
        stmt = stmt.where(RoutineCompletion.completed_at <= as_utc(filters.end_date))
    if filters.routine_id is not None:
        stmt = stmt.where(RoutineCompletion.routine_id == filters.routine_id)
    if filters.category_id is not None:
        stmt = stmt.where(RoutineCompletion.category_id == filters.category_id)
    if filters.completed_by is not None:
        stmt = stmt.where(RoutineCompletion.completed_by == filters.completed_by)
    if filters.session_type == "morning":
        stmt = stmt.where(RoutineCompletion.morning_session.is_(True))
    elif filters.session_type == "afternoon":
        stmt = stmt.where(RoutineCompletion.afternoon_session.is_(True))
    elif filters.session_type == "full_day":
        stmt = stmt.where(RoutineCompletion.is_full_day_complete.is_(True))
    if filters.min_rating is not None:
        stmt = stmt.where(RoutineCompletion.rating >= filters.min_rating)
    if filters.student_id is not None:
        stmt = stmt.where(
            RoutineCompletion.id.in_(
                select(RoutineCompletionAttendee.routine_completion_id).where(
                    RoutineCompletionAttendee.student_id == filters.student_id
                )
            )
        )

    res = await db.execute(stmt.order_by(RoutineCompletion.completed_at.desc(), RoutineCompletion.id.desc()))
    return list(res.scalars().all())


def completion_view(completion: RoutineCompletion, attendees: list[RoutineCompletionAttendee]) -> dict[str, Any]:
    data = {col.key: getattr(completion, col.key) for col in RoutineCompletion.__table__.columns}
    data["duration_difference"] = completion.duration_difference
    data["efficiency_percentage"] = completion.efficiency_percentage
    data["attendees"] = [
        {
            "student_id": a.student_id,
            "participation_minutes": a.participation_minutes,
            "participation_percentage": participation_percentage(a.participation_minutes, completion.actual_duration),
            "completed_full_session": a.completed_full_session,
            "performance_notes": a.performance_notes,
        }
        for a in attendees
    ]
    return data
