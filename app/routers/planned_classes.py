from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import get_current_user, require_staff
from app.models.user import User
from app.schemas.planned_classes import (
    CompleteClassIn,
    DuplicateClassIn,
    PlannedClassCreate,
    PlannedClassOut,
    PlannedClassUpdate,
)
from app.services import planned_classes

router = APIRouter(prefix="/planned-classes", tags=["planned-classes"])


@router.get("", response_model=list[PlannedClassOut])
async def list_classes(
    start_date: date | None = None,
    end_date: date | None = None,
    status: str | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await planned_classes.list_planned_classes(db, start_date, end_date, status)


# Fixed paths go before /{class_id}

@router.get("/calendar")
async def class_calendar(
    start_date: date | None = None,
    end_date: date | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await planned_classes.class_calendar(db, start_date, end_date)


@router.get("/today")
async def todays_classes(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await planned_classes.todays_classes(db)


@router.get("/upcoming")
async def upcoming_classes(
    days: int = Query(default=7, ge=1, le=90),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await planned_classes.upcoming_classes(db, days)


@router.get("/statistics")
async def class_statistics(user: User = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await planned_classes.class_statistics(db, user)


@router.post("", response_model=PlannedClassOut, status_code=201)
async def create_class(
    payload: PlannedClassCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await planned_classes.create_planned_class(db, user, payload)


@router.get("/{class_id}", response_model=PlannedClassOut)
async def get_class(
    class_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await planned_classes.get_class_or_404(db, class_id)


@router.patch("/{class_id}", response_model=PlannedClassOut)
async def update_class(
    class_id: int,
    payload: PlannedClassUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await planned_classes.update_planned_class(db, user, class_id, payload)


@router.post("/{class_id}/duplicate", response_model=PlannedClassOut, status_code=201)
async def duplicate_class(
    class_id: int,
    payload: DuplicateClassIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await planned_classes.duplicate_planned_class(db, user, class_id, payload)


@router.post("/{class_id}/start", response_model=PlannedClassOut)
async def start_class(
    class_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await planned_classes.start_class(db, user, class_id)


@router.post("/{class_id}/cancel", response_model=PlannedClassOut)
async def cancel_class(
    class_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await planned_classes.cancel_class(db, user, class_id)


@router.post("/{class_id}/complete", response_model=PlannedClassOut)
async def complete_class(
    class_id: int,
    payload: CompleteClassIn,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await planned_classes.complete_class(db, user, class_id, payload)


@router.delete("/{class_id}", status_code=204)
async def delete_class(
    class_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await planned_classes.delete_planned_class(db, user, class_id)
