"""
Routine composer.

A routine is an ordered tree: routine -> blocks -> exercise instances. Block
durations are the sum of their instances (override, else the exercise's own
duration) and the routine total is the sum of its blocks. Both are cached on
the rows and rewritten, bottom-up, inside the same transaction as every
structural change.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import as_utc, utcnow
from app.core.db import atomic
from app.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.models.category import routine_categories
from app.models.exercise import Exercise
from app.models.planned_class import PlannedClass
from app.models.routine import Routine
from app.models.routine_block import RoutineBlock
from app.models.routine_block_exercise import RoutineBlockExercise
from app.models.routine_completion import RoutineCompletion
from app.models.user import User
from app.schemas.exercises import CloneIn
from app.schemas.routines import BlockExerciseIn, BlockIn, RoutineCreate, RoutineFilters, RoutineUpdate
from app.services.duration_cache import recompute_durations
from app.services.durations import instance_duration
from app.services.exercise_catalog import COPY_SUFFIX, ensure_categories_exist
from app.services.visibility import can_modify, can_view, is_elevated, visible_filter

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_CLONE_SKIP = {
    "id", "created_at", "updated_at", "usage_count", "average_rating",
    "created_by", "is_favorite", "is_template",
}

_SORT_COLUMNS = {
    "name": Routine.name,
    "usage": Routine.usage_count,
    "rating": Routine.average_rating,
    "duration": Routine.total_duration,
    "created": Routine.created_at,
}


# --- lookups ---

async def get_routine_or_404(db: AsyncSession, routine_id: int) -> Routine:
    res = await db.execute(select(Routine).where(Routine.id == routine_id))
    routine = res.scalar_one_or_none()
    if not routine:
        raise NotFoundError("Routine", routine_id)
    return routine


async def get_routine(db: AsyncSession, actor: User, routine_id: int) -> Routine:
    routine = await get_routine_or_404(db, routine_id)
    if not can_view(routine, actor):
        raise NotFoundError("Routine", routine_id)
    return routine


async def get_modifiable_routine(db: AsyncSession, actor: User, routine_id: int) -> Routine:
    routine = await get_routine(db, actor, routine_id)
    if not can_modify(routine, actor):
        raise PermissionDeniedError()
    return routine


async def _lock_routine(db: AsyncSession, routine_id: int) -> None:
    # Serializes structural writes on one routine (no-op on SQLite)
    await db.execute(select(Routine.id).where(Routine.id == routine_id).with_for_update())


async def blocks_of(db: AsyncSession, routine_id: int) -> list[RoutineBlock]:
    res = await db.execute(
        select(RoutineBlock)
        .where(RoutineBlock.routine_id == routine_id)
        .order_by(RoutineBlock.sort_order.asc(), RoutineBlock.id.asc())
    )
    return list(res.scalars().all())


async def instances_of(db: AsyncSession, block_ids: list[int]) -> dict[int, list[RoutineBlockExercise]]:
    out: dict[int, list[RoutineBlockExercise]] = {bid: [] for bid in block_ids}
    if not block_ids:
        return out
    res = await db.execute(
        select(RoutineBlockExercise)
        .where(RoutineBlockExercise.routine_block_id.in_(block_ids))
        .order_by(
            RoutineBlockExercise.routine_block_id.asc(),
            RoutineBlockExercise.sort_order.asc(),
            RoutineBlockExercise.id.asc(),
        )
    )
    for inst in res.scalars().all():
        out[inst.routine_block_id].append(inst)
    return out


async def routine_category_ids(db: AsyncSession, routine_id: int) -> list[int]:
    res = await db.execute(
        select(routine_categories.c.category_id)
        .where(routine_categories.c.routine_id == routine_id)
        .order_by(routine_categories.c.id.asc())
    )
    return [r[0] for r in res.all()]


async def _replace_categories(db: AsyncSession, routine_id: int, category_ids: list[int]) -> None:
    await db.execute(delete(routine_categories).where(routine_categories.c.routine_id == routine_id))
    for category_id in dict.fromkeys(category_ids):
        await db.execute(insert(routine_categories).values(routine_id=routine_id, category_id=category_id))


# --- validation ---

def _check_tree_shape(blocks: list[BlockIn]) -> None:
    errors: dict[str, list[str]] = {}
    if not blocks:
        errors["blocks"] = ["At least one block is required"]
    for i, block in enumerate(blocks):
        if not block.exercises:
            errors[f"blocks.{i}.exercises"] = ["At least one exercise is required"]
    if errors:
        raise ValidationError("Invalid routine structure", errors=errors)


async def _load_referenced_exercises(db: AsyncSession, blocks: list[BlockIn]) -> dict[int, Exercise]:
    wanted = {inst.exercise_id for block in blocks for inst in block.exercises}
    res = await db.execute(select(Exercise).where(Exercise.id.in_(wanted)))
    found = {ex.id: ex for ex in res.scalars().all()}

    errors: dict[str, list[str]] = {}
    for i, block in enumerate(blocks):
        for j, inst in enumerate(block.exercises):
            if inst.exercise_id not in found:
                errors[f"blocks.{i}.exercises.{j}.exercise_id"] = [f"Exercise {inst.exercise_id} does not exist"]
    if errors:
        raise ValidationError("Routine references unknown exercises", errors=errors)
    return found


# --- structure writes ---

def _instance_fields(spec: BlockExerciseIn) -> dict[str, Any]:
    return {
        "exercise_id": spec.exercise_id,
        "duration_override": spec.duration_override,
        "exercise_notes": spec.exercise_notes,
        "custom_timers": [t.to_json() for t in spec.custom_timers] if spec.custom_timers else None,
    }


def _block_fields(spec: BlockIn) -> dict[str, Any]:
    return {
        "name": spec.name,
        "description": spec.description,
        "color": spec.color,
        "notes": spec.notes,
    }


async def _sync_instances(db: AsyncSession, block: RoutineBlock, specs: list[BlockExerciseIn]) -> None:
    """
    Make the block's instances match `specs` exactly.

    Existing rows are reused per exercise id in their current order, so the
    same list submitted twice keeps the same row ids. Leftover rows are
    deleted; sort_order is the position in `specs`.
    """
    existing = (await instances_of(db, [block.id]))[block.id]
    pool: dict[int, list[RoutineBlockExercise]] = {}
    for inst in existing:
        pool.setdefault(inst.exercise_id, []).append(inst)

    matched: list[Optional[RoutineBlockExercise]] = []
    for spec in specs:
        candidates = pool.get(spec.exercise_id)
        matched.append(candidates.pop(0) if candidates else None)

    leftovers = [inst.id for rows in pool.values() for inst in rows]
    if leftovers:
        await db.execute(delete(RoutineBlockExercise).where(RoutineBlockExercise.id.in_(leftovers)))

    # Park reused rows on negative positions so re-ranking never trips the unique index
    for position, inst in enumerate(matched, start=1):
        if inst is not None:
            inst.sort_order = -position
    await db.flush()

    for position, (spec, inst) in enumerate(zip(specs, matched), start=1):
        if inst is None:
            db.add(RoutineBlockExercise(routine_block_id=block.id, sort_order=position, **_instance_fields(spec)))
        else:
            for key, value in _instance_fields(spec).items():
                setattr(inst, key, value)
            inst.sort_order = position
    await db.flush()


async def create_routine(db: AsyncSession, actor: User, payload: RoutineCreate) -> Routine:
    if not is_elevated(actor):
        raise PermissionDeniedError("Only trainers and admins can create routines")

    _check_tree_shape(payload.blocks)
    await _load_referenced_exercises(db, payload.blocks)
    category_ids = payload.category_ids or []
    await ensure_categories_exist(db, category_ids)

    data = payload.model_dump(exclude={"blocks", "category_ids"})

    async with atomic(db):
        routine = Routine(
            **data,
            total_duration=0,
            created_by=actor.id,
            usage_count=0,
            average_rating=None,
        )
        db.add(routine)
        await db.flush()

        if category_ids:
            await _replace_categories(db, routine.id, category_ids)

        for position, block_spec in enumerate(payload.blocks, start=1):
            block = RoutineBlock(routine_id=routine.id, sort_order=position, duration=0, **_block_fields(block_spec))
            db.add(block)
            await db.flush()
            for inst_position, inst_spec in enumerate(block_spec.exercises, start=1):
                db.add(
                    RoutineBlockExercise(
                        routine_block_id=block.id,
                        sort_order=inst_position,
                        **_instance_fields(inst_spec),
                    )
                )
        await db.flush()
        await recompute_durations(db, routine)

    await db.refresh(routine)
    logger.info(
        "Routine %s created by user %s (%d blocks, %.2f min)",
        routine.id, actor.id, len(payload.blocks), routine.total_duration,
    )
    return routine


async def replace_blocks(db: AsyncSession, actor: User, routine_id: int, blocks: list[BlockIn]) -> Routine:
    """
    Reconcile the routine's blocks with `blocks`.

    Blocks carrying an id are kept and updated, existing blocks whose id is
    absent are deleted with their instances, blocks without an id are created.
    List order is authoritative for sort_order at both levels.
    """
    routine = await get_modifiable_routine(db, actor, routine_id)
    _check_tree_shape(blocks)

    existing = await blocks_of(db, routine.id)
    existing_by_id = {b.id: b for b in existing}

    errors: dict[str, list[str]] = {}
    seen: set[int] = set()
    for i, spec in enumerate(blocks):
        if spec.id is None:
            continue
        if spec.id not in existing_by_id:
            errors[f"blocks.{i}.id"] = [f"Block {spec.id} does not belong to routine {routine.id}"]
        elif spec.id in seen:
            errors[f"blocks.{i}.id"] = [f"Block {spec.id} appears more than once"]
        seen.add(spec.id)
    if errors:
        raise ValidationError("Invalid block list", errors=errors)

    await _load_referenced_exercises(db, blocks)

    async with atomic(db):
        await _lock_routine(db, routine.id)

        orphaned = [bid for bid in existing_by_id if bid not in seen]
        if orphaned:
            await db.execute(delete(RoutineBlockExercise).where(RoutineBlockExercise.routine_block_id.in_(orphaned)))
            await db.execute(delete(RoutineBlock).where(RoutineBlock.id.in_(orphaned)))

        for position, spec in enumerate(blocks, start=1):
            if spec.id is not None:
                existing_by_id[spec.id].sort_order = -position
        await db.flush()

        for position, spec in enumerate(blocks, start=1):
            if spec.id is not None:
                block = existing_by_id[spec.id]
                for key, value in _block_fields(spec).items():
                    setattr(block, key, value)
                block.sort_order = position
            else:
                block = RoutineBlock(routine_id=routine.id, sort_order=position, duration=0, **_block_fields(spec))
                db.add(block)
            await db.flush()
            await _sync_instances(db, block, spec.exercises)

        await recompute_durations(db, routine)

    await db.refresh(routine)
    logger.info(
        "Routine %s blocks replaced by user %s (%d kept, %d removed, %d total)",
        routine.id, actor.id, len(seen), len(orphaned), len(blocks),
    )
    return routine


async def update_routine(db: AsyncSession, actor: User, routine_id: int, patch: RoutineUpdate) -> Routine:
    routine = await get_modifiable_routine(db, actor, routine_id)

    data = patch.model_dump(exclude_unset=True)
    category_ids = data.pop("category_ids", None)
    if category_ids is not None:
        await ensure_categories_exist(db, category_ids)

    async with atomic(db):
        if category_ids is not None:
            await _replace_categories(db, routine.id, category_ids)
        for key, value in data.items():
            setattr(routine, key, value)

    await db.refresh(routine)
    logger.info("Routine %s updated by user %s", routine.id, actor.id)
    return routine


async def toggle_favorite(db: AsyncSession, actor: User, routine_id: int) -> Routine:
    routine = await get_modifiable_routine(db, actor, routine_id)
    async with atomic(db):
        routine.is_favorite = not routine.is_favorite
    await db.refresh(routine)
    return routine


async def set_active(db: AsyncSession, actor: User, routine_id: int, active: bool) -> Routine:
    routine = await get_modifiable_routine(db, actor, routine_id)
    async with atomic(db):
        routine.is_active = active
    await db.refresh(routine)
    return routine


async def delete_routine(db: AsyncSession, actor: User, routine_id: int) -> None:
    routine = await get_modifiable_routine(db, actor, routine_id)

    res = await db.execute(
        select(func.count(RoutineCompletion.id)).where(RoutineCompletion.routine_id == routine.id)
    )
    if (res.scalar_one() or 0) > 0:
        logger.warning("Refused to delete routine %s: it has completion records", routine.id)
        raise ConflictError("Cannot delete routine that has completion records")

    async with atomic(db):
        block_ids = [b.id for b in await blocks_of(db, routine.id)]
        if block_ids:
            await db.execute(delete(RoutineBlockExercise).where(RoutineBlockExercise.routine_block_id.in_(block_ids)))
            await db.execute(delete(RoutineBlock).where(RoutineBlock.id.in_(block_ids)))
        await db.execute(delete(routine_categories).where(routine_categories.c.routine_id == routine.id))
        await db.execute(
            update(PlannedClass).where(PlannedClass.routine_id == routine.id).values(routine_id=None)
        )
        await db.execute(delete(Routine).where(Routine.id == routine.id))

    logger.info("Routine %s deleted by user %s", routine_id, actor.id)


async def clone_routine(db: AsyncSession, actor: User, routine_id: int, overrides: Optional[CloneIn] = None) -> Routine:
    """Deep copy of the routine tree. Completion history and statistics stay behind."""
    source = await get_routine(db, actor, routine_id)
    changes = overrides.model_dump(exclude_none=True) if overrides else {}

    attrs = {
        col.key: getattr(source, col.key)
        for col in Routine.__table__.columns
        if col.key not in _CLONE_SKIP
    }
    attrs["name"] = changes.pop("name", None) or source.name + COPY_SUFFIX
    attrs.update(changes)

    source_blocks = await blocks_of(db, source.id)
    source_instances = await instances_of(db, [b.id for b in source_blocks])
    source_categories = await routine_category_ids(db, source.id)

    async with atomic(db):
        clone = Routine(
            **attrs,
            created_by=actor.id,
            is_template=False,
            is_favorite=False,
            usage_count=0,
            average_rating=None,
        )
        db.add(clone)
        await db.flush()

        for category_id in source_categories:
            await db.execute(insert(routine_categories).values(routine_id=clone.id, category_id=category_id))

        for block in source_blocks:
            block_copy = RoutineBlock(
                routine_id=clone.id,
                name=block.name,
                description=block.description,
                color=block.color,
                notes=block.notes,
                sort_order=block.sort_order,
                duration=block.duration,
            )
            db.add(block_copy)
            await db.flush()
            for inst in source_instances[block.id]:
                db.add(
                    RoutineBlockExercise(
                        routine_block_id=block_copy.id,
                        exercise_id=inst.exercise_id,
                        sort_order=inst.sort_order,
                        duration_override=inst.duration_override,
                        exercise_notes=list(inst.exercise_notes) if inst.exercise_notes else None,
                        custom_timers=[dict(t) for t in inst.custom_timers] if inst.custom_timers else None,
                    )
                )
        await db.flush()
        await recompute_durations(db, clone)

    await db.refresh(clone)
    logger.info("Routine %s cloned to %s by user %s", source.id, clone.id, actor.id)
    return clone


# --- reads ---

async def list_routines(db: AsyncSession, actor: User, filters: RoutineFilters) -> list[Routine]:
    stmt = select(Routine).where(visible_filter(Routine, actor), Routine.is_active == filters.active)

    if filters.difficulty:
        stmt = stmt.where(Routine.difficulty == filters.difficulty)
    if filters.level:
        stmt = stmt.where(Routine.level == filters.level)
    if filters.is_template is not None:
        stmt = stmt.where(Routine.is_template == filters.is_template)
    if filters.is_favorite:
        stmt = stmt.where(Routine.is_favorite.is_(True))
    if filters.min_duration is not None:
        stmt = stmt.where(Routine.total_duration >= filters.min_duration)
    if filters.max_duration is not None:
        stmt = stmt.where(Routine.total_duration <= filters.max_duration)
    if filters.category_id is not None:
        stmt = stmt.where(
            Routine.id.in_(
                select(routine_categories.c.routine_id).where(routine_categories.c.category_id == filters.category_id)
            )
        )
    if filters.search:
        like = f"%{filters.search.strip()}%"
        stmt = stmt.where(
            or_(Routine.name.ilike(like), Routine.description.ilike(like), Routine.objective.ilike(like))
        )

    column = _SORT_COLUMNS[filters.sort_by]
    order = column.desc() if filters.sort_direction == "desc" else column.asc()
    res = await db.execute(stmt.order_by(order, Routine.id.asc()))
    return list(res.scalars().all())


async def load_tree(db: AsyncSession, routine: Routine) -> dict[str, Any]:
    """Routine row plus its ordered blocks and instances, ready for RoutineOut."""
    blocks = await blocks_of(db, routine.id)
    instances = await instances_of(db, [b.id for b in blocks])

    exercise_ids = {inst.exercise_id for rows in instances.values() for inst in rows}
    exercises: dict[int, Exercise] = {}
    if exercise_ids:
        res = await db.execute(select(Exercise).where(Exercise.id.in_(exercise_ids)))
        exercises = {ex.id: ex for ex in res.scalars().all()}

    data = {col.key: getattr(routine, col.key) for col in Routine.__table__.columns}
    data["category_ids"] = await routine_category_ids(db, routine.id)
    data["blocks"] = [
        {
            "id": block.id,
            "name": block.name,
            "description": block.description,
            "color": block.color,
            "notes": block.notes,
            "sort_order": block.sort_order,
            "duration": block.duration,
            "exercises": [
                {
                    "id": inst.id,
                    "exercise_id": inst.exercise_id,
                    "exercise_name": exercises[inst.exercise_id].name,
                    "sort_order": inst.sort_order,
                    "duration_override": inst.duration_override,
                    "effective_duration": instance_duration(
                        inst.duration_override, exercises[inst.exercise_id].effective_duration
                    ),
                    "exercise_notes": inst.exercise_notes,
                    "custom_timers": inst.custom_timers,
                }
                for inst in instances[block.id]
            ],
        }
        for block in blocks
    ]
    return data


# --- scheduling ---

async def last_completed_at(db: AsyncSession, routine_id: int) -> Optional[datetime]:
    res = await db.execute(
        select(func.max(RoutineCompletion.completed_at)).where(RoutineCompletion.routine_id == routine_id)
    )
    value = res.scalar_one_or_none()
    return as_utc(value) if value else None


def is_ready_for_scheduling(routine: Routine, last_completion: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if not routine.repeat_in_days or routine.repeat_in_days <= 0:
        return False
    if last_completion is None:
        return True
    now = now or utcnow()
    return as_utc(last_completion) + timedelta(days=routine.repeat_in_days) < as_utc(now)


def upcoming_schedules(routine: Routine, last_completion: Optional[datetime], now: Optional[datetime] = None) -> list[datetime]:
    """Next occurrence of each scheduled weekday once the repeat interval has passed."""
    if not routine.repeat_in_days or routine.repeat_in_days <= 0 or not routine.scheduled_days:
        return []
    now = now or utcnow()
    start = as_utc(last_completion) + timedelta(days=routine.repeat_in_days) if last_completion else as_utc(now)

    out = []
    for day in routine.scheduled_days:
        ahead = (WEEKDAYS.index(day) - start.weekday()) % 7 or 7
        out.append((start + timedelta(days=ahead)).replace(hour=0, minute=0, second=0, microsecond=0))
    return sorted(out)
