"""Scheduled meeting persistence helpers."""
from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.meeting import Meeting


async def create_meeting(
    session: AsyncSession,
    *,
    title: str,
    meeting_id: str,
    date: datetime,
    creator: str | None = None,
) -> Meeting:
    """Persist a new meeting and return it."""

    meeting = Meeting(
        id=str(uuid4()),
        title=title,
        meeting_id=meeting_id,
        date=date,
        creator=creator,
        created_at=datetime.now(timezone.utc),
    )
    session.add(meeting)
    await session.flush()
    return meeting


async def list_meetings(session: AsyncSession) -> list[Meeting]:
    """Return all meetings, earliest first."""

    result = await session.execute(select(Meeting).order_by(Meeting.date.asc()))
    return list(result.scalars().all())
