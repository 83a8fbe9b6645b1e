"""
Event Schemas
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class EventCreateRequest(BaseModel):
    """New event. Super admins must name the chapter; everyone else uses their own."""

    title: str = Field(..., min_length=3, max_length=300)
    description: str = Field(..., min_length=10, max_length=5000)
    starts_at: datetime
    location: str = Field(..., min_length=2, max_length=300)
    capacity: Optional[int] = Field(None, ge=1)
    chapter_id: Optional[UUID] = None


class EventUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=3, max_length=300)
    description: Optional[str] = Field(None, min_length=10, max_length=5000)
    starts_at: Optional[datetime] = None
    location: Optional[str] = Field(None, min_length=2, max_length=300)
    capacity: Optional[int] = Field(None, ge=1)


class EventResponse(BaseModel):
    id: UUID
    title: str
    description: str
    starts_at: datetime
    location: str
    capacity: Optional[int]
    registered_count: int
    chapter_id: UUID
    created_by: Optional[UUID]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class EventListResponse(BaseModel):
    count: int
    events: List[EventResponse]


class RegistrationResponse(BaseModel):
    user_id: UUID
    created_at: Optional[datetime]

    class Config:
        from_attributes = True
