from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import get_current_user
from app.models.exercise import Exercise
from app.models.user import User
from app.schemas.exercises import CloneIn, ExerciseCreate, ExerciseFilters, ExerciseOut, ExerciseUpdate
from app.services import exercise_catalog

router = APIRouter(prefix="/exercises", tags=["exercises"])


async def _out(db: AsyncSession, exercise: Exercise) -> ExerciseOut:
    out = ExerciseOut.model_validate(exercise)
    out.category_ids = (await exercise_catalog.category_ids_for(db, [exercise.id]))[exercise.id]
    return out


@router.get("", response_model=list[ExerciseOut])
async def list_exercises(
    filters: ExerciseFilters = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    exercises = await exercise_catalog.list_exercises(db, user, filters)
    categories = await exercise_catalog.category_ids_for(db, [ex.id for ex in exercises])
    return [
        ExerciseOut.model_validate(ex).model_copy(update={"category_ids": categories[ex.id]})
        for ex in exercises
    ]


@router.post("", response_model=ExerciseOut, status_code=201)
async def create_exercise(
    payload: ExerciseCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    exercise = await exercise_catalog.create_exercise(db, user, payload)
    return await _out(db, exercise)


@router.get("/{exercise_id}", response_model=ExerciseOut)
async def get_exercise(
    exercise_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _out(db, await exercise_catalog.get_exercise(db, user, exercise_id))


@router.patch("/{exercise_id}", response_model=ExerciseOut)
async def update_exercise(
    exercise_id: int,
    payload: ExerciseUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    exercise = await exercise_catalog.update_exercise(db, user, exercise_id, payload)
    return await _out(db, exercise)


@router.post("/{exercise_id}/clone", response_model=ExerciseOut, status_code=201)
async def clone_exercise(
    exercise_id: int,
    payload: CloneIn | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    clone = await exercise_catalog.clone_exercise(db, user, exercise_id, payload)
    return await _out(db, clone)


@router.post("/{exercise_id}/deactivate", response_model=ExerciseOut)
async def deactivate_exercise(
    exercise_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _out(db, await exercise_catalog.set_active(db, user, exercise_id, False))


@router.post("/{exercise_id}/activate", response_model=ExerciseOut)
async def activate_exercise(
    exercise_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _out(db, await exercise_catalog.set_active(db, user, exercise_id, True))


@router.delete("/{exercise_id}", status_code=204)
async def delete_exercise(
    exercise_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await exercise_catalog.delete_exercise(db, user, exercise_id)
