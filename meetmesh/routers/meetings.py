"""Scheduled meeting endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.session import get_session
from ..schemas import meetings as schemas
from ..services import meetings as meetings_service

router = APIRouter()


@router.post("/meetings", response_model=schemas.MeetingRead, status_code=status.HTTP_201_CREATED)
async def create_meeting(
    payload: schemas.MeetingCreate,
    session: AsyncSession = Depends(get_session),
) -> schemas.MeetingRead:
    """Schedule a meeting."""

    return await meetings_service.schedule_meeting(payload, session)


@router.get("/meetings", response_model=list[schemas.MeetingRead])
async def list_meetings(session: AsyncSession = Depends(get_session)) -> list[schemas.MeetingRead]:
    """List meetings ordered by date."""

    return await meetings_service.upcoming_meetings(session)
