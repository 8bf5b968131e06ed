from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import get_current_user
from app.models.user import User
from app.schemas.exercises import CloneIn
from app.schemas.routines import ReplaceBlocksIn, RoutineCreate, RoutineFilters, RoutineOut, RoutineUpdate
from app.services import routine_composer

router = APIRouter(prefix="/routines", tags=["routines"])


@router.get("", response_model=list[RoutineOut])
async def list_routines(
    filters: RoutineFilters = Depends(),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    routines = await routine_composer.list_routines(db, user, filters)
    return [await routine_composer.load_tree(db, r) for r in routines]


@router.post("", response_model=RoutineOut, status_code=201)
async def create_routine(
    payload: RoutineCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    routine = await routine_composer.create_routine(db, user, payload)
    return await routine_composer.load_tree(db, routine)


@router.get("/{routine_id}", response_model=RoutineOut)
async def get_routine(
    routine_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    routine = await routine_composer.get_routine(db, user, routine_id)
    return await routine_composer.load_tree(db, routine)


@router.patch("/{routine_id}", response_model=RoutineOut)
async def update_routine(
    routine_id: int,
    payload: RoutineUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    routine = await routine_composer.update_routine(db, user, routine_id, payload)
    return await routine_composer.load_tree(db, routine)


@router.put("/{routine_id}/blocks", response_model=RoutineOut)
async def replace_blocks(
    routine_id: int,
    payload: ReplaceBlocksIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    routine = await routine_composer.replace_blocks(db, user, routine_id, payload.blocks)
    return await routine_composer.load_tree(db, routine)


@router.post("/{routine_id}/clone", response_model=RoutineOut, status_code=201)
async def clone_routine(
    routine_id: int,
    payload: CloneIn | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    clone = await routine_composer.clone_routine(db, user, routine_id, payload)
    return await routine_composer.load_tree(db, clone)


@router.post("/{routine_id}/favorite", response_model=RoutineOut)
async def toggle_favorite(
    routine_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    routine = await routine_composer.toggle_favorite(db, user, routine_id)
    return await routine_composer.load_tree(db, routine)


@router.post("/{routine_id}/deactivate", response_model=RoutineOut)
async def deactivate_routine(
    routine_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    routine = await routine_composer.set_active(db, user, routine_id, False)
    return await routine_composer.load_tree(db, routine)


@router.get("/{routine_id}/schedule")
async def routine_schedule(
    routine_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    routine = await routine_composer.get_routine(db, user, routine_id)
    last = await routine_composer.last_completed_at(db, routine.id)
    return {
        "routine_id": routine.id,
        "last_completed_at": last,
        "ready_for_scheduling": routine_composer.is_ready_for_scheduling(routine, last),
        "upcoming": routine_composer.upcoming_schedules(routine, last),
    }


@router.delete("/{routine_id}", status_code=204)
async def delete_routine(
    routine_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await routine_composer.delete_routine(db, user, routine_id)
