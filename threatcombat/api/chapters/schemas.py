"""
Chapter Schemas

Pydantic models for chapter and executive roster endpoints.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from threatcombat.api.db.models import ChapterStatus, ExecutivePosition


class ChapterCreateRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    university: str = Field(..., min_length=2, max_length=200)
    location: str = Field(..., min_length=2, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    status: ChapterStatus = ChapterStatus.ACTIVE


class ChapterUpdateRequest(BaseModel):
    """Chapter update. Only administrators may change the status."""

    name: Optional[str] = Field(None, min_length=2, max_length=200)
    location: Optional[str] = Field(None, min_length=2, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    status: Optional[ChapterStatus] = None


class ExecutiveTermResponse(BaseModel):
    id: int
    user_id: UUID
    position: ExecutivePosition
    term: str
    start_date: Optional[datetime]
    end_date: Optional[datetime]

    class Config:
        from_attributes = True


class ChapterResponse(BaseModel):
    id: UUID
    name: str
    university: str
    location: str
    description: Optional[str]
    status: ChapterStatus
    member_count: int
    created_at: Optional[datetime]
    executive_team: List[ExecutiveTermResponse] = []

    class Config:
        from_attributes = True


class ChapterStatsResponse(BaseModel):
    chapter_id: UUID
    total_members: int
    active_members: int
    pending_members: int
    current_executives: int
    total_executives: int


class AddExecutiveRequest(BaseModel):
    user_id: UUID
    position: ExecutivePosition
    term: str = Field(..., min_length=4, max_length=20)
