"""
Audit Administration Routes

Triage endpoints over the audit trail for chapter and super admins.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from threatcombat.api.access.audit import AuditRecorder, RequestInfo
from threatcombat.api.access.rbac import Role, ensure_user_management_scope
from threatcombat.api.admin.schemas import (
    ActivitySummaryResponse,
    AuditLogListResponse,
    AuditLogResponse,
    ReviewRequest,
)
from threatcombat.api.db.models import User
from threatcombat.api.db.session import get_db
from threatcombat.api.dependencies import (
    get_audit_recorder,
    require_analytics_access,
    require_super_admin,
)
from threatcombat.api.errors import NotFoundError


router = APIRouter()


def _chapter_scope(user: User) -> Optional[UUID]:
    """Chapter admins only see entries written by members of their chapter."""
    return None if user.role == Role.SUPER_ADMIN else user.chapter_id


def _entries(entries) -> AuditLogListResponse:
    return AuditLogListResponse(
        count=len(entries),
        entries=[AuditLogResponse.model_validate(e) for e in entries],
    )


@router.get(
    "/suspicious",
    response_model=AuditLogListResponse,
    summary="Suspicious activity",
)
async def suspicious_activity(
    days: int = Query(7, ge=1, le=365),
    limit: int = Query(100, ge=1, le=1000),
    current_user: User = Depends(require_analytics_access),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> AuditLogListResponse:
    """
    High and critical risk entries, security events and entries awaiting
    review, newest first. Chapter admins see their own chapter only.
    """
    entries = await audit.suspicious_activity(
        days=days, limit=limit, chapter_id=_chapter_scope(current_user)
    )
    return _entries(entries)


@router.get(
    "/summary",
    response_model=ActivitySummaryResponse,
    summary="Activity summary",
)
async def activity_summary(
    days: int = Query(30, ge=1, le=365),
    current_user: User = Depends(require_analytics_access),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> ActivitySummaryResponse:
    return ActivitySummaryResponse(
        days=days,
        actions=await audit.activity_summary(
            days=days, chapter_id=_chapter_scope(current_user)
        ),
    )


@router.get(
    "/users/{user_id}",
    response_model=AuditLogListResponse,
    summary="Activity of one user",
)
async def user_activity(
    user_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    current_user: User = Depends(require_analytics_access),
    audit: AuditRecorder = Depends(get_audit_recorder),
    db: AsyncSession = Depends(get_db),
) -> AuditLogListResponse:
    """Chapter admins may only look at users of their own chapter."""
    target = await db.get(User, user_id)
    if target is not None:
        ensure_user_management_scope(current_user, target)
    elif current_user.role != Role.SUPER_ADMIN:
        raise NotFoundError("User", user_id)

    return _entries(await audit.user_activity(user_id, limit=limit))


@router.post(
    "/{entry_id}/review",
    response_model=AuditLogResponse,
    summary="Review an audit entry",
)
async def review_entry(
    entry_id: UUID,
    data: ReviewRequest,
    request: Request,
    current_user: User = Depends(require_super_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> AuditLogResponse:
    entry = await audit.review(
        entry_id,
        current_user,
        data.status,
        data.notes,
        request_info=RequestInfo.from_request(request),
    )
    return AuditLogResponse.model_validate(entry)
