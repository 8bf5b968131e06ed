"""
Writers for the durations cached on blocks and routines.

Block duration is the sum of its instances; routine total_duration is the sum
of its blocks. Callers run these inside their own transaction.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.exercise import Exercise
from app.models.routine import Routine
from app.models.routine_block import RoutineBlock
from app.models.routine_block_exercise import RoutineBlockExercise
from app.services.durations import exercise_duration, instance_duration, sum_durations


async def recompute_block_duration(db: AsyncSession, block: RoutineBlock) -> float:
    res = await db.execute(
        select(
            RoutineBlockExercise.duration_override,
            Exercise.is_multi_timer,
            Exercise.duration,
            Exercise.timers,
        )
        .join(Exercise, RoutineBlockExercise.exercise_id == Exercise.id)
        .where(RoutineBlockExercise.routine_block_id == block.id)
    )
    block.duration = sum_durations(
        instance_duration(row.duration_override, exercise_duration(row.is_multi_timer, row.duration, row.timers))
        for row in res.all()
    )
    return block.duration


def calculate_total_duration(blocks: list[RoutineBlock]) -> float:
    """Sum of cached block durations. Recompute the blocks first after any exercise-level change."""
    return sum_durations(b.duration for b in blocks)


async def recompute_durations(db: AsyncSession, routine: Routine) -> float:
    res = await db.execute(select(RoutineBlock).where(RoutineBlock.routine_id == routine.id))
    blocks = list(res.scalars().all())
    for block in blocks:
        await recompute_block_duration(db, block)
    routine.total_duration = calculate_total_duration(blocks)
    await db.flush()
    return routine.total_duration


async def refresh_dependent_durations(db: AsyncSession, exercise_id: int) -> list[int]:
    """Rewrite the cached durations of every routine that uses the exercise."""
    using = (
        select(RoutineBlock.routine_id)
        .join(RoutineBlockExercise, RoutineBlockExercise.routine_block_id == RoutineBlock.id)
        .where(RoutineBlockExercise.exercise_id == exercise_id)
    )
    res = await db.execute(
        select(Routine).where(Routine.id.in_(using)).order_by(Routine.id.asc()).with_for_update()
    )
    routines = list(res.scalars().all())
    for routine in routines:
        await recompute_durations(db, routine)
    return [r.id for r in routines]
