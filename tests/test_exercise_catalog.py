import pytest

from app.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.schemas.exercises import CloneIn, ExerciseCreate, ExerciseFilters, ExerciseUpdate, TimerSpec
from app.schemas.routines import BlockExerciseIn, BlockIn, RoutineCreate
from app.services import exercise_catalog, routine_composer


@pytest.mark.asyncio
async def test_create_multi_timer_exercise(db, trainer):
    payload = ExerciseCreate(
        name="Bag rounds",
        is_multi_timer=True,
        timers=[TimerSpec(name="round", duration=3, repetitions=3, restBetween=1)],
    )
    exercise = await exercise_catalog.create_exercise(db, trainer, payload)

    assert exercise.created_by == trainer.id
    assert exercise.usage_count == 0
    assert exercise.average_rating is None
    assert exercise.timers == [{"name": "round", "duration": 3, "repetitions": 3, "restBetween": 1}]
    assert exercise.effective_duration == 11


def test_multi_timer_without_timers_is_rejected():
    with pytest.raises(ValueError):
        ExerciseCreate(name="Empty", is_multi_timer=True, timers=[])


@pytest.mark.asyncio
async def test_students_cannot_create_exercises(db, students):
    with pytest.raises(PermissionDeniedError):
        await exercise_catalog.create_exercise(db, students[0], ExerciseCreate(name="Jab", duration=5))


@pytest.mark.asyncio
async def test_unknown_category_rejected(db, trainer):
    with pytest.raises(ValidationError) as exc:
        await exercise_catalog.create_exercise(db, trainer, ExerciseCreate(name="Jab", duration=5, category_ids=[404]))
    assert "category_ids" in exc.value.errors


@pytest.mark.asyncio
async def test_private_exercise_hidden_from_others(db, trainer, other_trainer, make_exercise):
    exercise = await make_exercise(visibility="private")

    with pytest.raises(NotFoundError):
        await exercise_catalog.get_exercise(db, other_trainer, exercise.id)

    listed = await exercise_catalog.list_exercises(db, other_trainer, ExerciseFilters())
    assert exercise.id not in [e.id for e in listed]


@pytest.mark.asyncio
async def test_clone_resets_stats_and_keeps_categories(db, trainer, other_trainer, category, make_exercise):
    source = await make_exercise(name="Slip line", usage_count=7, average_rating=4.5, is_template=True)
    await exercise_catalog.update_exercise(db, trainer, source.id, ExerciseUpdate(category_ids=[category.id]))

    clone = await exercise_catalog.clone_exercise(db, other_trainer, source.id)

    assert clone.id != source.id
    assert clone.name == "Slip line (Copy)"
    assert clone.usage_count == 0
    assert clone.average_rating is None
    assert clone.is_template is False
    assert clone.created_by == other_trainer.id
    assert (await exercise_catalog.category_ids_for(db, [clone.id]))[clone.id] == [category.id]


@pytest.mark.asyncio
async def test_clone_with_name_override(db, trainer, make_exercise):
    source = await make_exercise(name="Slip line")
    clone = await exercise_catalog.clone_exercise(db, trainer, source.id, CloneIn(name="Slip line v2"))
    assert clone.name == "Slip line v2"


@pytest.mark.asyncio
async def test_referenced_exercise_cannot_be_deleted(db, trainer, make_exercise):
    exercise = await make_exercise()
    await routine_composer.create_routine(
        db,
        trainer,
        RoutineCreate(name="Basics", blocks=[BlockIn(name="Warm up", exercises=[BlockExerciseIn(exercise_id=exercise.id)])]),
    )

    with pytest.raises(ConflictError):
        await exercise_catalog.delete_exercise(db, trainer, exercise.id)

    deactivated = await exercise_catalog.set_active(db, trainer, exercise.id, False)
    assert deactivated.is_active is False


@pytest.mark.asyncio
async def test_unreferenced_exercise_is_deleted(db, trainer, make_exercise):
    exercise = await make_exercise()
    await exercise_catalog.delete_exercise(db, trainer, exercise.id)
    with pytest.raises(NotFoundError):
        await exercise_catalog.get_exercise_or_404(db, exercise.id)


@pytest.mark.parametrize(
    "old, usage, rating, expected",
    [
        (None, 0, 5, 2.5),
        (4.0, 1, 5, 4.5),
        (4.0, 3, 1, 3.25),
        (None, 0, 1, 1.0),
    ],
)
def test_next_average_rating(old, usage, rating, expected):
    assert exercise_catalog.next_average_rating(old, usage, rating) == expected


@pytest.mark.asyncio
async def test_increment_usage_is_additive(db, make_exercise):
    exercise = await make_exercise()
    await exercise_catalog.increment_usage(db, exercise.id)
    await exercise_catalog.increment_usage(db, exercise.id, by=2)
    await db.commit()
    await db.refresh(exercise)
    assert exercise.usage_count == 3


@pytest.mark.asyncio
async def test_turning_off_multi_timer_needs_a_duration(db, trainer, make_exercise):
    exercise = await make_exercise(
        duration=0,
        is_multi_timer=True,
        timers=[{"name": "round", "duration": 3, "repetitions": 2, "restBetween": 1}],
    )

    with pytest.raises(ValidationError) as exc:
        await exercise_catalog.update_exercise(db, trainer, exercise.id, ExerciseUpdate(is_multi_timer=False))
    assert "duration" in exc.value.errors

    updated = await exercise_catalog.update_exercise(
        db, trainer, exercise.id, ExerciseUpdate(is_multi_timer=False, duration=6)
    )
    assert updated.effective_duration == 6


def test_update_rejects_null_for_required_fields():
    with pytest.raises(ValueError):
        ExerciseUpdate(name=None)
    with pytest.raises(ValueError):
        ExerciseUpdate(is_active=None)
    assert ExerciseUpdate(video_url=None).model_dump(exclude_unset=True) == {"video_url": None}
