"""
Exercise catalog: CRUD, cloning and the statistics helpers the session
recorder calls.
"""
import logging
from typing import Optional

from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import atomic
from app.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.models.category import Category, exercise_categories
from app.models.exercise import Exercise
from app.models.routine_block_exercise import RoutineBlockExercise
from app.models.user import User
from app.schemas.exercises import CloneIn, ExerciseCreate, ExerciseFilters, ExerciseUpdate
from app.services.duration_cache import refresh_dependent_durations
from app.services.visibility import can_modify, can_view, is_elevated, visible_filter

logger = logging.getLogger(__name__)

COPY_SUFFIX = " (Copy)"

# Never copied by clone_exercise
_CLONE_SKIP = {"id", "created_at", "updated_at", "usage_count", "average_rating", "created_by"}

# Fields that feed effective_duration
_DURATION_FIELDS = {"duration", "is_multi_timer", "timers"}


async def get_exercise_or_404(db: AsyncSession, exercise_id: int) -> Exercise:
    res = await db.execute(select(Exercise).where(Exercise.id == exercise_id))
    exercise = res.scalar_one_or_none()
    if not exercise:
        raise NotFoundError("Exercise", exercise_id)
    return exercise


async def get_exercise(db: AsyncSession, actor: User, exercise_id: int) -> Exercise:
    exercise = await get_exercise_or_404(db, exercise_id)
    # Invisible records are reported as missing
    if not can_view(exercise, actor):
        raise NotFoundError("Exercise", exercise_id)
    return exercise


async def category_ids_for(db: AsyncSession, exercise_ids: list[int]) -> dict[int, list[int]]:
    out: dict[int, list[int]] = {eid: [] for eid in exercise_ids}
    if not exercise_ids:
        return out
    res = await db.execute(
        select(exercise_categories.c.exercise_id, exercise_categories.c.category_id)
        .where(exercise_categories.c.exercise_id.in_(exercise_ids))
        .order_by(exercise_categories.c.id.asc())
    )
    for exercise_id, category_id in res.all():
        out[exercise_id].append(category_id)
    return out


async def ensure_categories_exist(db: AsyncSession, category_ids: list[int]) -> None:
    if not category_ids:
        return
    res = await db.execute(select(Category.id).where(Category.id.in_(category_ids)))
    found = {r[0] for r in res.all()}
    missing = sorted(set(category_ids) - found)
    if missing:
        raise ValidationError(
            "Unknown categories",
            errors={"category_ids": [f"Category {cid} does not exist" for cid in missing]},
        )


async def _replace_categories(db: AsyncSession, exercise_id: int, category_ids: list[int]) -> None:
    await db.execute(delete(exercise_categories).where(exercise_categories.c.exercise_id == exercise_id))
    for category_id in dict.fromkeys(category_ids):
        await db.execute(insert(exercise_categories).values(exercise_id=exercise_id, category_id=category_id))


async def create_exercise(db: AsyncSession, actor: User, payload: ExerciseCreate) -> Exercise:
    if not is_elevated(actor):
        raise PermissionDeniedError("Only trainers and admins can create exercises")

    data = payload.model_dump(exclude={"category_ids", "timers"})
    category_ids = payload.category_ids or []

    async with atomic(db):
        await ensure_categories_exist(db, category_ids)
        exercise = Exercise(
            **data,
            timers=[t.to_json() for t in payload.timers] if payload.timers else None,
            created_by=actor.id,
            usage_count=0,
            average_rating=None,
        )
        db.add(exercise)
        await db.flush()
        if category_ids:
            await _replace_categories(db, exercise.id, category_ids)

    await db.refresh(exercise)
    logger.info("Exercise %s created by user %s", exercise.id, actor.id)
    return exercise


async def update_exercise(db: AsyncSession, actor: User, exercise_id: int, patch: ExerciseUpdate) -> Exercise:
    exercise = await get_exercise(db, actor, exercise_id)
    if not can_modify(exercise, actor):
        raise PermissionDeniedError()

    data = patch.model_dump(exclude_unset=True)
    category_ids = data.pop("category_ids", None)
    if "timers" in data:
        data["timers"] = [t.to_json() for t in patch.timers] if patch.timers else None

    is_multi_timer = data.get("is_multi_timer", exercise.is_multi_timer)
    timers = data.get("timers", exercise.timers)
    if is_multi_timer and not timers:
        raise ValidationError(
            "Multi-timer exercises need at least one timer",
            errors={"timers": ["At least one timer is required"]},
        )
    if not is_multi_timer and data.get("duration", exercise.duration) < 1:
        raise ValidationError(
            "Single-timer exercises need a duration",
            errors={"duration": ["Duration must be at least 1 minute"]},
        )

    async with atomic(db):
        if category_ids is not None:
            await ensure_categories_exist(db, category_ids)
            await _replace_categories(db, exercise.id, category_ids)
        for key, value in data.items():
            setattr(exercise, key, value)
        if _DURATION_FIELDS & data.keys():
            await db.flush()
            refreshed = await refresh_dependent_durations(db, exercise.id)
            if refreshed:
                logger.info("Exercise %s change refreshed durations of routines %s", exercise.id, refreshed)

    await db.refresh(exercise)
    logger.info("Exercise %s updated by user %s", exercise.id, actor.id)
    return exercise


async def set_active(db: AsyncSession, actor: User, exercise_id: int, active: bool) -> Exercise:
    exercise = await get_exercise(db, actor, exercise_id)
    if not can_modify(exercise, actor):
        raise PermissionDeniedError()

    async with atomic(db):
        exercise.is_active = active

    await db.refresh(exercise)
    return exercise


async def is_referenced(db: AsyncSession, exercise_id: int) -> bool:
    res = await db.execute(
        select(func.count(RoutineBlockExercise.id)).where(RoutineBlockExercise.exercise_id == exercise_id)
    )
    return (res.scalar_one() or 0) > 0


async def delete_exercise(db: AsyncSession, actor: User, exercise_id: int) -> None:
    exercise = await get_exercise(db, actor, exercise_id)
    if not can_modify(exercise, actor):
        raise PermissionDeniedError()

    if await is_referenced(db, exercise_id):
        logger.warning("Refused to delete exercise %s: used in routines", exercise_id)
        raise ConflictError("Cannot delete exercise that is being used in routines; deactivate it instead")

    async with atomic(db):
        await db.execute(delete(exercise_categories).where(exercise_categories.c.exercise_id == exercise_id))
        await db.execute(delete(Exercise).where(Exercise.id == exercise_id))

    logger.info("Exercise %s deleted by user %s", exercise_id, actor.id)


async def clone_exercise(db: AsyncSession, actor: User, exercise_id: int, overrides: Optional[CloneIn] = None) -> Exercise:
    source = await get_exercise(db, actor, exercise_id)
    changes = overrides.model_dump(exclude_none=True) if overrides else {}

    attrs = {
        col.key: getattr(source, col.key)
        for col in Exercise.__table__.columns
        if col.key not in _CLONE_SKIP
    }
    attrs["name"] = changes.pop("name", None) or source.name + COPY_SUFFIX
    attrs["is_template"] = False
    attrs.update(changes)

    source_categories = (await category_ids_for(db, [source.id]))[source.id]

    async with atomic(db):
        clone = Exercise(**attrs, created_by=actor.id, usage_count=0, average_rating=None)
        db.add(clone)
        await db.flush()
        for category_id in source_categories:
            await db.execute(insert(exercise_categories).values(exercise_id=clone.id, category_id=category_id))

    await db.refresh(clone)
    logger.info("Exercise %s cloned to %s by user %s", source.id, clone.id, actor.id)
    return clone


async def list_exercises(db: AsyncSession, actor: User, filters: ExerciseFilters) -> list[Exercise]:
    stmt = select(Exercise).where(visible_filter(Exercise, actor), Exercise.is_active == filters.active)

    if filters.work_type:
        stmt = stmt.where(Exercise.work_type == filters.work_type)
    if filters.difficulty:
        stmt = stmt.where(Exercise.difficulty == filters.difficulty)
    if filters.intensity:
        stmt = stmt.where(Exercise.intensity == filters.intensity)
    if filters.is_template is not None:
        stmt = stmt.where(Exercise.is_template == filters.is_template)
    if filters.multi_timer is not None:
        stmt = stmt.where(Exercise.is_multi_timer == filters.multi_timer)
    if filters.category_id is not None:
        stmt = stmt.where(
            Exercise.id.in_(
                select(exercise_categories.c.exercise_id).where(
                    exercise_categories.c.category_id == filters.category_id
                )
            )
        )
    if filters.search:
        like = f"%{filters.search.strip()}%"
        stmt = stmt.where(or_(Exercise.name.ilike(like), Exercise.description.ilike(like)))

    res = await db.execute(stmt.order_by(Exercise.name.asc(), Exercise.id.asc()))
    return list(res.scalars().all())


# --- statistics writers (session recorder only) ---

def next_average_rating(old_average: Optional[float], usage_count: int, rating: float) -> float:
    """
    Running mean that treats the usage count as the number of prior samples.

    With no prior average the previous mean counts as 0 over max(usage_count, 1)
    samples. The result is clamped to the 1-5 scale and rounded to 2 places.
    """
    current = old_average if old_average is not None else 0.0
    samples = max(usage_count, 1)
    new_average = (current * samples + rating) / (samples + 1)
    return round(min(max(new_average, 1.0), 5.0), 2)


def update_average_rating(exercise: Exercise, rating: float, samples: Optional[int] = None) -> float:
    if samples is None:
        samples = exercise.usage_count
    exercise.average_rating = next_average_rating(exercise.average_rating, samples, rating)
    return exercise.average_rating


async def increment_usage(db: AsyncSession, exercise_id: int, by: int = 1) -> None:
    await db.execute(
        update(Exercise)
        .where(Exercise.id == exercise_id)
        .values(usage_count=Exercise.usage_count + by)
    )
