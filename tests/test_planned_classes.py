from datetime import date, datetime, time, timedelta, timezone

import pytest

from app.core.errors import ConflictError, PermissionDeniedError, ValidationError
from app.models.planned_class import PlannedClass
from app.schemas.completions import AttendeeIn, CompletionCreate
from app.schemas.planned_classes import CompleteClassIn, DuplicateClassIn, PlannedClassCreate, PlannedClassUpdate
from app.schemas.routines import BlockExerciseIn, BlockIn, RoutineCreate
from app.services import planned_classes, routine_composer

CLASS_DAY = (datetime.now(timezone.utc) + timedelta(days=7)).date()


def at(hour, minute=0, day=CLASS_DAY):
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


@pytest.fixture
def make_class(db, trainer):
    async def _make(**overrides):
        fields = {"title": "Evening boxing", "date": CLASS_DAY, "start_time": time(18), "end_time": time(19, 30)}
        fields.update(overrides)
        return await planned_classes.create_planned_class(db, trainer, PlannedClassCreate(**fields))

    return _make


@pytest.fixture
def routine(db, trainer, make_exercise):
    async def _make():
        jab = await make_exercise(duration=20)
        return await routine_composer.create_routine(
            db, trainer, RoutineCreate(name="Class plan", blocks=[BlockIn(name="A", exercises=[BlockExerciseIn(exercise_id=jab.id)])])
        )

    return _make


@pytest.mark.asyncio
async def test_create_derives_duration(make_class):
    planned = await make_class()
    assert planned.duration == 90
    assert planned.status == "planned"


@pytest.mark.asyncio
async def test_past_date_rejected(make_class):
    with pytest.raises(ValidationError):
        await make_class(date=datetime.now(timezone.utc).date() - timedelta(days=1))


@pytest.mark.asyncio
async def test_target_students_must_be_students(make_class, students, trainer):
    with pytest.raises(ValidationError):
        await make_class(target_students=[students[0].id, trainer.id])


def test_end_must_follow_start():
    with pytest.raises(ValueError):
        PlannedClassCreate(title="x", date=CLASS_DAY, start_time=time(19), end_time=time(18))


@pytest.mark.asyncio
async def test_students_cannot_plan(db, students):
    with pytest.raises(PermissionDeniedError):
        await planned_classes.create_planned_class(
            db, students[0], PlannedClassCreate(title="x", date=CLASS_DAY, start_time=time(18), end_time=time(19))
        )


@pytest.mark.asyncio
async def test_start_inside_window(db, trainer, make_class):
    planned = await make_class()
    started = await planned_classes.start_class(db, trainer, planned.id, now=at(17, 50))
    assert started.status == "in_progress"


@pytest.mark.asyncio
@pytest.mark.parametrize("now", [at(17, 30), at(19, 31), at(18, 0, day=CLASS_DAY - timedelta(days=1))])
async def test_start_outside_window_is_conflict(db, trainer, make_class, now):
    planned = await make_class()
    with pytest.raises(ConflictError):
        await planned_classes.start_class(db, trainer, planned.id, now=now)


@pytest.mark.asyncio
async def test_start_twice_is_conflict(db, trainer, make_class):
    planned = await make_class()
    await planned_classes.start_class(db, trainer, planned.id, now=at(18, 5))
    with pytest.raises(ConflictError):
        await planned_classes.start_class(db, trainer, planned.id, now=at(18, 10))


@pytest.mark.asyncio
async def test_complete_records_session(db, trainer, students, make_class, routine):
    planned = await make_class()
    plan = await routine()
    body = CompletionCreate(
        routine_id=plan.id,
        completed_at=at(19, 30),
        actual_duration=25,
        attendees=[AttendeeIn(student_id=students[0].id, participation_minutes=25)],
    )

    done = await planned_classes.complete_class(db, trainer, planned.id, CompleteClassIn(completion=body))
    await db.refresh(plan)

    assert done.status == "completed"
    assert done.routine_completion_id is not None
    assert plan.usage_count == 1

    with pytest.raises(ConflictError):
        await planned_classes.complete_class(db, trainer, planned.id, CompleteClassIn(routine_completion_id=done.routine_completion_id))


@pytest.mark.asyncio
async def test_rejected_completion_leaves_class_planned(db, trainer, students, make_class, routine):
    planned = await make_class()
    plan = await routine()
    class_id, plan_id, trainer_id = planned.id, plan.id, trainer.id
    body = CompletionCreate(
        routine_id=plan_id,
        completed_at=at(19, 30),
        actual_duration=25,
        attendees=[AttendeeIn(student_id=trainer_id, participation_minutes=25)],
    )

    with pytest.raises(ValidationError):
        await planned_classes.complete_class(db, trainer, class_id, CompleteClassIn(completion=body))

    reloaded = await planned_classes.get_class_or_404(db, class_id)
    await db.refresh(reloaded)
    assert reloaded.status == "planned"
    assert reloaded.routine_completion_id is None


def test_complete_needs_exactly_one_source():
    with pytest.raises(ValueError):
        CompleteClassIn()


@pytest.mark.asyncio
async def test_cancelled_class_is_terminal(db, trainer, make_class):
    planned = await make_class()
    await planned_classes.cancel_class(db, trainer, planned.id)

    with pytest.raises(ConflictError):
        await planned_classes.update_planned_class(db, trainer, planned.id, PlannedClassUpdate(title="Later"))
    with pytest.raises(ConflictError):
        await planned_classes.start_class(db, trainer, planned.id, now=at(18))


@pytest.mark.asyncio
async def test_update_recomputes_duration(db, trainer, make_class):
    planned = await make_class()
    updated = await planned_classes.update_planned_class(db, trainer, planned.id, PlannedClassUpdate(end_time=time(18, 45)))
    assert updated.duration == 45


@pytest.mark.asyncio
async def test_duplicate_resets_status(db, trainer, make_class):
    planned = await make_class()
    await planned_classes.start_class(db, trainer, planned.id, now=at(18))

    copy = await planned_classes.duplicate_planned_class(
        db, trainer, planned.id, DuplicateClassIn(date=CLASS_DAY + timedelta(days=7))
    )
    assert copy.id != planned.id
    assert copy.title == "Evening boxing (Copy)"
    assert copy.status == "planned"
    assert copy.duration == 90


def test_duration_minutes():
    assert planned_classes.duration_minutes(time(9, 15), time(10, 0)) == 45


# A Tuesday; rows are inserted directly so the dates can sit in the past
VIEW_DAY = date(2026, 3, 10)
VIEW_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def add_class(db, trainer):
    async def _add(day, start, end, **overrides):
        fields = {
            "title": "Boxing",
            "date": day,
            "start_time": start,
            "end_time": end,
            "duration": planned_classes.duration_minutes(start, end),
            "status": "planned",
            "class_type": "custom",
            "created_by": trainer.id,
        }
        fields.update(overrides)
        planned = PlannedClass(**fields)
        db.add(planned)
        await db.commit()
        await db.refresh(planned)
        return planned

    return _add


@pytest.mark.asyncio
async def test_calendar_groups_by_day(db, add_class, routine):
    plan = await routine()
    await add_class(VIEW_DAY, time(18), time(19), class_type="evening", routine_id=plan.id, target_students=[1, 2])
    await add_class(VIEW_DAY, time(9), time(10, 30), class_type="morning")
    await add_class(VIEW_DAY + timedelta(days=2), time(18), time(19), status="cancelled")
    await add_class(date(2026, 4, 1), time(18), time(19))

    view = await planned_classes.class_calendar(db, today=VIEW_DAY)

    assert view["start_date"] == date(2026, 3, 1)
    assert view["end_date"] == date(2026, 3, 31)
    first, second = view["calendar"]
    assert first["date"] == VIEW_DAY
    assert first["class_count"] == 2
    assert first["total_duration"] == 150
    assert [c["start_time"] for c in first["classes"]] == ["09:00", "18:00"]
    assert first["classes"][1]["routine_name"] == "Class plan"
    assert first["classes"][1]["target_student_count"] == 2
    assert second["class_count"] == 1
    assert view["summary"] == {
        "total_classes": 3,
        "by_status": {"planned": 2, "cancelled": 1},
        "by_class_type": {"evening": 1, "morning": 1, "custom": 1},
        "total_duration": 210,
    }


@pytest.mark.asyncio
async def test_calendar_rejects_inverted_range(db):
    with pytest.raises(ValidationError):
        await planned_classes.class_calendar(db, VIEW_DAY, VIEW_DAY - timedelta(days=1))


@pytest.mark.asyncio
async def test_today_summary(db, add_class):
    await add_class(VIEW_DAY, time(9), time(10), status="completed")
    await add_class(VIEW_DAY, time(11), time(13), status="in_progress")
    await add_class(VIEW_DAY, time(18), time(19))
    await add_class(VIEW_DAY + timedelta(days=1), time(18), time(19))

    view = await planned_classes.todays_classes(db, now=VIEW_NOW)

    assert view["date"] == VIEW_DAY
    assert len(view["classes"]) == 3
    assert view["summary"] == {"total_classes": 3, "completed": 1, "in_progress": 1, "upcoming": 1, "cancelled": 0}


@pytest.mark.asyncio
async def test_upcoming_lists_planned_classes_in_window(db, add_class):
    soon = await add_class(VIEW_DAY + timedelta(days=3), time(18), time(19))
    await add_class(VIEW_DAY + timedelta(days=3), time(9), time(10), status="cancelled")
    await add_class(VIEW_DAY + timedelta(days=10), time(18), time(19))
    await add_class(VIEW_DAY - timedelta(days=1), time(18), time(19))

    view = await planned_classes.upcoming_classes(db, days=7, now=VIEW_NOW)

    assert view["count"] == 1
    assert [c["id"] for c in view["classes"]] == [soon.id]


@pytest.mark.asyncio
async def test_class_statistics_scoped_to_creator(db, trainer, other_trainer, admin, add_class):
    await add_class(VIEW_DAY, time(9), time(10), status="completed")
    await add_class(VIEW_DAY, time(18), time(19))
    await add_class(VIEW_DAY + timedelta(days=4), time(18), time(19), class_type="evening")
    await add_class(date(2026, 2, 1), time(18), time(19), status="cancelled")
    await add_class(VIEW_DAY, time(18), time(19), created_by=other_trainer.id)

    mine = await planned_classes.class_statistics(db, trainer, now=VIEW_NOW)
    assert mine["total_classes"] == 4
    assert mine["by_status"] == {"completed": 1, "planned": 2, "cancelled": 1}
    assert mine["by_class_type"] == {"custom": 3, "evening": 1}
    assert mine["today"] == 2
    # Monday 9th to Sunday 15th
    assert mine["this_week"] == 3
    assert mine["this_month"] == 3
    assert mine["upcoming"] == 2

    everyone = await planned_classes.class_statistics(db, admin, now=VIEW_NOW)
    assert everyone["total_classes"] == 5
