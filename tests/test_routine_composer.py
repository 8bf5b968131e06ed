from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from app.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.models.planned_class import PlannedClass
from app.models.routine import Routine
from app.models.routine_block import RoutineBlock
from app.schemas.completions import AttendeeIn, CompletionCreate
from app.schemas.exercises import ExerciseUpdate
from app.schemas.routines import BlockExerciseIn, BlockIn, RoutineCreate, RoutineUpdate
from app.services import exercise_catalog, routine_composer, session_recorder


def block(name, *exercise_ids, **overrides):
    return BlockIn(name=name, exercises=[BlockExerciseIn(exercise_id=eid, **overrides) for eid in exercise_ids])


@pytest.fixture
def two_exercises(make_exercise):
    async def _make():
        jab = await make_exercise(name="Jab", duration=10)
        cross = await make_exercise(name="Cross", duration=15)
        return jab, cross

    return _make


@pytest.mark.asyncio
async def test_total_is_sum_of_blocks(db, trainer, two_exercises):
    jab, cross = await two_exercises()
    routine = await routine_composer.create_routine(
        db, trainer, RoutineCreate(name="Basics", blocks=[block("Warm up", jab.id), block("Work", cross.id)])
    )

    assert routine.total_duration == 25
    tree = await routine_composer.load_tree(db, routine)
    assert [b["duration"] for b in tree["blocks"]] == [10, 15]
    assert [b["sort_order"] for b in tree["blocks"]] == [1, 2]


@pytest.mark.asyncio
async def test_override_replaces_exercise_duration(db, trainer, make_exercise):
    jab = await make_exercise(duration=10)
    routine = await routine_composer.create_routine(
        db,
        trainer,
        RoutineCreate(name="Short", blocks=[block("Only", jab.id, duration_override=4)]),
    )
    assert routine.total_duration == 4


@pytest.mark.asyncio
async def test_multi_timer_exercise_contributes_timer_total(db, trainer, make_exercise):
    bag = await make_exercise(
        is_multi_timer=True,
        duration=0,
        timers=[{"name": "round", "duration": 3, "repetitions": 3, "restBetween": 1}],
    )
    routine = await routine_composer.create_routine(
        db, trainer, RoutineCreate(name="Bag", blocks=[block("Rounds", bag.id)])
    )
    assert routine.total_duration == 11


@pytest.mark.asyncio
async def test_creating_routine_leaves_usage_untouched(db, trainer, two_exercises):
    jab, _ = await two_exercises()
    await routine_composer.create_routine(db, trainer, RoutineCreate(name="R", blocks=[block("B", jab.id)]))
    await db.refresh(jab)
    assert jab.usage_count == 0


@pytest.mark.asyncio
async def test_unknown_exercise_rejects_whole_routine(db, trainer, make_exercise):
    jab = await make_exercise()
    with pytest.raises(ValidationError) as exc:
        await routine_composer.create_routine(
            db, trainer, RoutineCreate(name="Bad", blocks=[block("B", jab.id, 999)])
        )
    assert "blocks.0.exercises.1.exercise_id" in exc.value.errors
    assert (await db.execute(select(RoutineBlock))).scalars().all() == []


@pytest.mark.asyncio
async def test_students_cannot_create_routines(db, students, make_exercise):
    jab = await make_exercise()
    with pytest.raises(PermissionDeniedError):
        await routine_composer.create_routine(db, students[0], RoutineCreate(name="R", blocks=[block("B", jab.id)]))


@pytest.mark.asyncio
async def test_replace_blocks_keeps_updates_and_deletes(db, trainer, two_exercises, make_exercise):
    jab, cross = await two_exercises()
    hook = await make_exercise(name="Hook", duration=5)
    routine = await routine_composer.create_routine(
        db, trainer, RoutineCreate(name="R", blocks=[block("A", jab.id), block("B", cross.id)])
    )
    tree = await routine_composer.load_tree(db, routine)
    a_id, b_id = [b["id"] for b in tree["blocks"]]

    new_blocks = [
        BlockIn(id=b_id, name="B renamed", exercises=[BlockExerciseIn(exercise_id=cross.id)]),
        BlockIn(name="C", exercises=[BlockExerciseIn(exercise_id=hook.id)]),
    ]
    routine = await routine_composer.replace_blocks(db, trainer, routine.id, new_blocks)
    tree = await routine_composer.load_tree(db, routine)

    assert [(b["id"] == b_id, b["name"], b["sort_order"]) for b in tree["blocks"]] == [
        (True, "B renamed", 1),
        (False, "C", 2),
    ]
    assert a_id not in [b["id"] for b in tree["blocks"]]
    assert routine.total_duration == 20


@pytest.mark.asyncio
async def test_replace_blocks_is_idempotent(db, trainer, two_exercises):
    jab, cross = await two_exercises()
    routine = await routine_composer.create_routine(
        db, trainer, RoutineCreate(name="R", blocks=[block("A", jab.id, cross.id)])
    )
    tree = await routine_composer.load_tree(db, routine)
    same = [
        BlockIn(
            id=b["id"],
            name=b["name"],
            exercises=[BlockExerciseIn(exercise_id=e["exercise_id"]) for e in b["exercises"]],
        )
        for b in tree["blocks"]
    ]

    await routine_composer.replace_blocks(db, trainer, routine.id, same)
    first = await routine_composer.load_tree(db, routine)
    await routine_composer.replace_blocks(db, trainer, routine.id, same)
    second = await routine_composer.load_tree(db, routine)

    assert first["blocks"] == second["blocks"]
    assert first["total_duration"] == second["total_duration"] == 25


@pytest.mark.asyncio
async def test_replace_blocks_reorders_instances(db, trainer, two_exercises):
    jab, cross = await two_exercises()
    routine = await routine_composer.create_routine(
        db, trainer, RoutineCreate(name="R", blocks=[block("A", jab.id, cross.id)])
    )
    tree = await routine_composer.load_tree(db, routine)
    block_id = tree["blocks"][0]["id"]

    routine = await routine_composer.replace_blocks(db, trainer, routine.id, [block("A", cross.id, jab.id).model_copy(update={"id": block_id})])
    tree = await routine_composer.load_tree(db, routine)
    assert [(e["exercise_id"], e["sort_order"]) for e in tree["blocks"][0]["exercises"]] == [(cross.id, 1), (jab.id, 2)]


@pytest.mark.asyncio
async def test_replace_blocks_rejects_foreign_block_id(db, trainer, two_exercises):
    jab, cross = await two_exercises()
    first = await routine_composer.create_routine(db, trainer, RoutineCreate(name="R1", blocks=[block("A", jab.id)]))
    second = await routine_composer.create_routine(db, trainer, RoutineCreate(name="R2", blocks=[block("B", cross.id)]))
    foreign_id = (await routine_composer.load_tree(db, second))["blocks"][0]["id"]

    with pytest.raises(ValidationError) as exc:
        await routine_composer.replace_blocks(
            db, trainer, first.id, [BlockIn(id=foreign_id, name="X", exercises=[BlockExerciseIn(exercise_id=jab.id)])]
        )
    assert "blocks.0.id" in exc.value.errors


@pytest.mark.asyncio
async def test_clone_is_independent_deep_copy(db, trainer, other_trainer, two_exercises):
    jab, cross = await two_exercises()
    source = await routine_composer.create_routine(
        db,
        trainer,
        RoutineCreate(
            name="Basics",
            visibility="shared",
            is_template=True,
            blocks=[block("A", jab.id, duration_override=7), block("B", cross.id)],
        ),
    )
    clone = await routine_composer.clone_routine(db, other_trainer, source.id)

    src_tree = await routine_composer.load_tree(db, source)
    clone_tree = await routine_composer.load_tree(db, clone)
    assert clone.name == "Basics (Copy)"
    assert clone.created_by == other_trainer.id
    assert clone.is_template is False
    assert clone.usage_count == 0
    assert clone.total_duration == source.total_duration == 22
    assert {b["id"] for b in src_tree["blocks"]}.isdisjoint({b["id"] for b in clone_tree["blocks"]})
    assert clone_tree["blocks"][0]["exercises"][0]["duration_override"] == 7

    # Editing the clone leaves the source alone
    await routine_composer.replace_blocks(db, other_trainer, clone.id, [block("Only", jab.id)])
    assert (await routine_composer.load_tree(db, source))["blocks"] == src_tree["blocks"]


@pytest.mark.asyncio
async def test_routine_with_history_cannot_be_deleted(db, trainer, students, two_exercises):
    jab, _ = await two_exercises()
    routine = await routine_composer.create_routine(db, trainer, RoutineCreate(name="R", blocks=[block("A", jab.id)]))
    await session_recorder.record_completion(
        db,
        trainer,
        CompletionCreate(
            routine_id=routine.id,
            completed_at=datetime.now(timezone.utc),
            actual_duration=10,
            attendees=[AttendeeIn(student_id=students[0].id, participation_minutes=10)],
        ),
    )

    with pytest.raises(ConflictError):
        await routine_composer.delete_routine(db, trainer, routine.id)


@pytest.mark.asyncio
async def test_delete_routine_unlinks_planned_classes(db, trainer, two_exercises):
    jab, _ = await two_exercises()
    routine = await routine_composer.create_routine(db, trainer, RoutineCreate(name="R", blocks=[block("A", jab.id)]))
    planned = PlannedClass(
        title="Monday",
        date=datetime.now(timezone.utc).date(),
        start_time=datetime(2000, 1, 1, 18).time(),
        end_time=datetime(2000, 1, 1, 19).time(),
        duration=60,
        routine_id=routine.id,
        created_by=trainer.id,
    )
    db.add(planned)
    await db.commit()

    await routine_composer.delete_routine(db, trainer, routine.id)

    await db.refresh(planned)
    assert planned.routine_id is None
    assert (await db.execute(select(RoutineBlock).where(RoutineBlock.routine_id == routine.id))).scalars().all() == []
    with pytest.raises(NotFoundError):
        await routine_composer.get_routine_or_404(db, routine.id)


@pytest.mark.asyncio
async def test_private_routine_reported_missing(db, trainer, other_trainer, two_exercises):
    jab, _ = await two_exercises()
    routine = await routine_composer.create_routine(db, trainer, RoutineCreate(name="Mine", blocks=[block("A", jab.id)]))
    with pytest.raises(NotFoundError):
        await routine_composer.get_routine(db, other_trainer, routine.id)


@pytest.mark.asyncio
async def test_update_routine_metadata(db, trainer, two_exercises):
    jab, _ = await two_exercises()
    routine = await routine_composer.create_routine(db, trainer, RoutineCreate(name="R", blocks=[block("A", jab.id)]))
    routine = await routine_composer.update_routine(db, trainer, routine.id, RoutineUpdate(name="Renamed", repeat_in_days=3))
    assert routine.name == "Renamed"
    assert routine.repeat_in_days == 3
    assert routine.total_duration == 10


def test_update_rejects_null_for_required_fields():
    with pytest.raises(ValueError):
        RoutineUpdate(name=None)
    with pytest.raises(ValueError):
        RoutineUpdate(visibility=None)

    # Nullable columns can still be cleared
    assert RoutineUpdate(description=None).model_dump(exclude_unset=True) == {"description": None}


@pytest.mark.asyncio
async def test_exercise_edit_refreshes_routine_durations(db, trainer, two_exercises):
    jab, cross = await two_exercises()
    routine = await routine_composer.create_routine(
        db, trainer, RoutineCreate(name="R", blocks=[block("A", jab.id), block("B", cross.id, duration_override=5)])
    )
    assert routine.total_duration == 15

    await exercise_catalog.update_exercise(db, trainer, jab.id, ExerciseUpdate(duration=20))
    await db.refresh(routine)

    tree = await routine_composer.load_tree(db, routine)
    assert [b["duration"] for b in tree["blocks"]] == [20, 5]
    assert tree["blocks"][0]["exercises"][0]["effective_duration"] == 20
    assert routine.total_duration == 25


def _routine_stub(repeat, days=None):
    return Routine(name="R", repeat_in_days=repeat, scheduled_days=days)


def test_ready_for_scheduling():
    now = datetime(2026, 3, 10, 12, tzinfo=timezone.utc)
    assert not routine_composer.is_ready_for_scheduling(_routine_stub(0), None, now)
    assert routine_composer.is_ready_for_scheduling(_routine_stub(7), None, now)
    assert not routine_composer.is_ready_for_scheduling(_routine_stub(7), now - timedelta(days=3), now)
    assert routine_composer.is_ready_for_scheduling(_routine_stub(7), now - timedelta(days=8), now)


def test_upcoming_schedules_follow_weekdays():
    # 2026-03-10 is a Tuesday
    now = datetime(2026, 3, 10, 12, tzinfo=timezone.utc)
    upcoming = routine_composer.upcoming_schedules(_routine_stub(1, ["monday", "wednesday"]), None, now)
    assert [d.date().isoformat() for d in upcoming] == ["2026-03-11", "2026-03-16"]
