"""
Audit Administration Schemas
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from threatcombat.api.access.audit import ReviewStatus


class AuditLogResponse(BaseModel):
    id: UUID
    user_id: Optional[UUID]
    user_role: Optional[str]
    user_chapter_id: Optional[UUID]
    action: str
    resource: str
    resource_id: Optional[str]
    details: Dict[str, Any] = {}
    ip_address: str
    user_agent: Optional[str]
    method: Optional[str]
    url: Optional[str]
    status_code: Optional[int]
    success: bool
    error_message: Optional[str]
    duration_ms: Optional[int]
    risk_level: str
    requires_review: bool
    review_status: str
    reviewer_id: Optional[UUID]
    review_notes: Optional[str]
    reviewed_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class AuditLogListResponse(BaseModel):
    count: int
    entries: List[AuditLogResponse]


class ActionSummary(BaseModel):
    action: str
    total: int
    successful: int
    failed: int


class ActivitySummaryResponse(BaseModel):
    days: int
    actions: List[ActionSummary]


class ReviewRequest(BaseModel):
    status: ReviewStatus
    notes: Optional[str] = Field(None, max_length=2000)
