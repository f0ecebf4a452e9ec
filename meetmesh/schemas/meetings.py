"""Schemas for scheduled meetings."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class MeetingCreate(BaseModel):
    title: str = Field(..., min_length=1)
    date: datetime
    meeting_id: str | None = Field(default=None, description="Room id; generated when omitted")
    creator: str | None = None


class MeetingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    meeting_id: str
    date: datetime
    creator: str | None = None
    created_at: datetime
