from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.deps import get_current_user, require_staff
from app.models.user import User
from app.schemas.completions import CompletionCreate, CompletionFilters, CompletionOut, CompletionUpdate
from app.services import session_recorder

router = APIRouter(prefix="/completions", tags=["completions"])


async def _out(db: AsyncSession, completion) -> dict:
    attendees = await session_recorder.attendees_of(db, [completion.id])
    return session_recorder.completion_view(completion, attendees[completion.id])


@router.get("", response_model=list[CompletionOut])
async def list_completions(
    filters: CompletionFilters = Depends(),
    user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    completions = await session_recorder.list_completions(db, user, filters)
    attendees = await session_recorder.attendees_of(db, [c.id for c in completions])
    return [session_recorder.completion_view(c, attendees[c.id]) for c in completions]


@router.post("", response_model=CompletionOut, status_code=201)
async def record_completion(
    payload: CompletionCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    completion = await session_recorder.record_completion(db, user, payload)
    return await _out(db, completion)


@router.get("/{completion_id}", response_model=CompletionOut)
async def get_completion(
    completion_id: int,
    user: User = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await _out(db, await session_recorder.get_completion(db, user, completion_id))


@router.patch("/{completion_id}", response_model=CompletionOut)
async def update_completion(
    completion_id: int,
    payload: CompletionUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    completion = await session_recorder.update_completion(db, user, completion_id, payload)
    return await _out(db, completion)


@router.delete("/{completion_id}", status_code=204)
async def delete_completion(
    completion_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await session_recorder.delete_completion(db, user, completion_id)
