from datetime import date

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import get_current_user, require_staff
from app.core.errors import PermissionDeniedError
from app.models.user import User
from app.services import statistics

router = APIRouter(prefix="/statistics", tags=["statistics"])


@router.get("/exercises")
async def exercise_statistics(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await statistics.exercise_statistics(db, user)


@router.get("/routines")
async def routine_statistics(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await statistics.routine_statistics(db, user)


@router.get("/completions/dashboard")
async def completion_dashboard(user: User = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await statistics.completion_dashboard(db)


@router.get("/completions/analytics")
async def completion_analytics(
    start_date: date | None = None,
    end_date: date | None = None,
    trainer_id: int | None = None,
    user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await statistics.completion_analytics(db, start_date, end_date, trainer_id)


@router.get("/students/{student_id}")
async def student_analytics(
    student_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    # Students may only look at their own numbers
    if user.is_student and user.id != student_id:
        raise PermissionDeniedError()
    return await statistics.student_analytics(db, student_id, start_date, end_date)
