"""
Research Schemas

Pydantic models for research paper endpoints.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from threatcombat.api.db.models import ResearchStatus


class ResearchCreateRequest(BaseModel):
    title: str = Field(..., min_length=5, max_length=300)
    abstract: str = Field(..., min_length=20, max_length=5000)
    content: str = Field(..., min_length=20)
    references: List[str] = Field(default_factory=list, max_length=200)


class ResearchUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=5, max_length=300)
    abstract: Optional[str] = Field(None, min_length=20, max_length=5000)
    content: Optional[str] = Field(None, min_length=20)
    references: Optional[List[str]] = Field(None, max_length=200)


class ResearchResponse(BaseModel):
    id: UUID
    title: str
    abstract: str
    content: str
    references: List[str] = []
    status: ResearchStatus
    published_at: Optional[datetime]
    author_id: Optional[UUID]
    chapter_id: Optional[UUID]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class ResearchListResponse(BaseModel):
    count: int
    research: List[ResearchResponse]
