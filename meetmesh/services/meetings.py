"""Scheduled meeting use cases."""
from __future__ import annotations

from datetime import timezone
from secrets import token_urlsafe

from sqlalchemy.ext.asyncio import AsyncSession

from ..repositories import meetings as meetings_repo
from ..schemas import meetings as schemas


async def schedule_meeting(payload: schemas.MeetingCreate, session: AsyncSession) -> schemas.MeetingRead:
    """Store a meeting, generating a room id when the caller did not pick one."""

    date = payload.date if payload.date.tzinfo else payload.date.replace(tzinfo=timezone.utc)
    async with session.begin():
        meeting = await meetings_repo.create_meeting(
            session,
            title=payload.title,
            meeting_id=payload.meeting_id or token_urlsafe(8),
            date=date,
            creator=payload.creator,
        )
    return schemas.MeetingRead.model_validate(meeting)


async def upcoming_meetings(session: AsyncSession) -> list[schemas.MeetingRead]:
    meetings = await meetings_repo.list_meetings(session)
    return [schemas.MeetingRead.model_validate(meeting) for meeting in meetings]
