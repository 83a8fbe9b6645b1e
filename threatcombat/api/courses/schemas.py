"""
Course Schemas
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from threatcombat.api.db.models import CourseCategory, CourseLevel, CourseStatus


class CourseCreateRequest(BaseModel):
    title: str = Field(..., min_length=3, max_length=300)
    description: str = Field(..., min_length=10, max_length=5000)
    category: CourseCategory
    level: CourseLevel
    duration_hours: int = Field(..., ge=1, le=1000)
    price: Decimal = Field(Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    max_enrollment: Optional[int] = Field(None, ge=1)
    status: CourseStatus = CourseStatus.DRAFT


class CourseUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=3, max_length=300)
    description: Optional[str] = Field(None, min_length=10, max_length=5000)
    category: Optional[CourseCategory] = None
    level: Optional[CourseLevel] = None
    duration_hours: Optional[int] = Field(None, ge=1, le=1000)
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    max_enrollment: Optional[int] = Field(None, ge=1)
    status: Optional[CourseStatus] = None


class CourseResponse(BaseModel):
    id: UUID
    title: str
    description: str
    category: CourseCategory
    level: CourseLevel
    duration_hours: int
    price: Decimal
    status: CourseStatus
    max_enrollment: Optional[int]
    enrollment_count: int
    instructor_id: Optional[UUID]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class CourseListResponse(BaseModel):
    count: int
    courses: List[CourseResponse]
