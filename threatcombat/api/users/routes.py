"""
User Management Routes

API endpoints for member administration and role assignment.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from threatcombat.api.access.audit import AuditAction, AuditRecorder, AuditResource, audit_log
from threatcombat.api.access.rbac import Role
from threatcombat.api.auth.schemas import MessageResponse, UserResponse
from threatcombat.api.db.models import MembershipStatus, User
from threatcombat.api.db.session import get_db
from threatcombat.api.dependencies import (
    get_audit_recorder,
    get_current_user,
    get_outbox,
    require_chapter_admin,
    require_cross_chapter_access,
)
from threatcombat.api.services.notifications import NotificationOutbox
from threatcombat.api.users.schemas import (
    AssignAdminRoleRequest,
    DirectoryEntry,
    DirectoryResponse,
    ProfileUpdateRequest,
    PromoteRequest,
    SuspendRequest,
    UserListResponse,
    UserStatsResponse,
    UserUpdateRequest,
)
from threatcombat.api.users.service import UserService


router = APIRouter()


def get_user_service(
    db: AsyncSession = Depends(get_db),
    outbox: NotificationOutbox = Depends(get_outbox),
) -> UserService:
    """Dependency to get user service."""
    return UserService(db, outbox)


def _list(users) -> UserListResponse:
    return UserListResponse(
        count=len(users),
        users=[UserResponse.model_validate(u) for u in users],
    )


# ==================== COLLECTION ====================


@router.get("/", response_model=UserListResponse, summary="List users")
async def list_users(
    role: Optional[Role] = None,
    chapter_id: Optional[UUID] = None,
    membership_status: Optional[MembershipStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=100),
    current_user: User = Depends(require_chapter_admin),
    service: UserService = Depends(get_user_service),
) -> UserListResponse:
    """
    List users.

    Super admins see every user and may filter by chapter. Chapter admins
    only see members of their own chapter.
    """
    users = await service.list_users(
        current_user,
        role=role,
        chapter_id=chapter_id,
        status=membership_status,
        search=search,
    )
    return _list(users)


@router.get("/stats", response_model=UserStatsResponse, summary="User statistics")
async def user_stats(
    chapter_id: Optional[UUID] = None,
    current_user: User = Depends(require_chapter_admin),
    service: UserService = Depends(get_user_service),
) -> UserStatsResponse:
    stats = await service.user_stats(current_user, chapter_id)
    return UserStatsResponse(**stats)


@router.get("/directory", response_model=DirectoryResponse, summary="Member directory")
async def member_directory(
    chapter_id: Optional[UUID] = None,
    search: Optional[str] = Query(None, max_length=100),
    current_user: User = Depends(require_cross_chapter_access),
    service: UserService = Depends(get_user_service),
) -> DirectoryResponse:
    """Active members across chapters, without contact details."""
    members = await service.directory(chapter_id, search)
    return DirectoryResponse(
        count=len(members),
        members=[DirectoryEntry.model_validate(m) for m in members],
    )


@router.get("/me", response_model=UserResponse, summary="My profile")
async def get_my_profile(
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    return UserResponse.model_validate(current_user)


@router.patch("/me", response_model=UserResponse, summary="Update my profile")
@audit_log(AuditAction.USER_UPDATE, AuditResource.USER)
async def update_my_profile(
    data: ProfileUpdateRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    """Members may only change their name, bio and phone."""
    user = await service.update_profile(current_user, data)
    return UserResponse.model_validate(user)


@router.get(
    "/chapter/{chapter_id}",
    response_model=UserListResponse,
    summary="Members of a chapter",
)
async def chapter_members(
    chapter_id: UUID,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
) -> UserListResponse:
    users = await service.chapter_members(current_user, chapter_id)
    return _list(users)


# ==================== ROLE ASSIGNMENT ====================


@router.post(
    "/assign-admin-role",
    response_model=UserResponse,
    summary="Assign an administrative role",
)
@audit_log(AuditAction.ROLE_ASSIGNMENT, AuditResource.USER)
async def assign_admin_role(
    data: AssignAdminRoleRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    """
    Grant chapter_admin, super_admin or executive.

    - Super admins grant any of the three; super_admin only to industry partners
    - Chapter admins grant executive inside their own chapter
    """
    user = await service.assign_admin_role(
        current_user, data.email, data.role, data.chapter_id
    )
    return UserResponse.model_validate(user)


@router.post(
    "/{user_id}/assign-executive",
    response_model=UserResponse,
    summary="Assign the executive role",
)
@audit_log(AuditAction.ROLE_ASSIGNMENT, AuditResource.USER, "user_id")
async def assign_executive_role(
    user_id: UUID,
    request: Request,
    current_user: User = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    user = await service.assign_executive_role(current_user, user_id)
    return UserResponse.model_validate(user)


# ==================== SINGLE USER ====================


@router.get("/{user_id}", response_model=UserResponse, summary="Get user")
async def get_user(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    user = await service.get_user(current_user, user_id)
    return UserResponse.model_validate(user)


@router.patch("/{user_id}", response_model=UserResponse, summary="Update user")
@audit_log(AuditAction.USER_UPDATE, AuditResource.USER, "user_id")
async def update_user(
    user_id: UUID,
    data: UserUpdateRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    user = await service.update_user(current_user, user_id, data)
    return UserResponse.model_validate(user)


@router.delete("/{user_id}", response_model=MessageResponse, summary="Delete user")
@audit_log(AuditAction.USER_DELETE, AuditResource.USER, "user_id")
async def delete_user(
    user_id: UUID,
    request: Request,
    current_user: User = Depends(require_chapter_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: UserService = Depends(get_user_service),
) -> MessageResponse:
    await service.delete_user(current_user, user_id)
    return MessageResponse(message="User deleted")


@router.post("/{user_id}/promote", response_model=UserResponse, summary="Promote to executive")
@audit_log(AuditAction.USER_PROMOTE, AuditResource.USER, "user_id")
async def promote_to_executive(
    user_id: UUID,
    data: PromoteRequest,
    request: Request,
    current_user: User = Depends(require_chapter_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    user = await service.promote_to_executive(
        current_user, user_id, data.position, data.term
    )
    return UserResponse.model_validate(user)


@router.post("/{user_id}/demote", response_model=UserResponse, summary="Demote to member")
@audit_log(AuditAction.USER_DEMOTE, AuditResource.USER, "user_id")
async def demote_from_executive(
    user_id: UUID,
    request: Request,
    current_user: User = Depends(require_chapter_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    user = await service.demote_from_executive(current_user, user_id)
    return UserResponse.model_validate(user)


@router.post("/{user_id}/activate", response_model=UserResponse, summary="Activate membership")
@audit_log(AuditAction.USER_ACTIVATE, AuditResource.USER, "user_id")
async def activate_membership(
    user_id: UUID,
    request: Request,
    current_user: User = Depends(require_chapter_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    user = await service.activate(current_user, user_id)
    return UserResponse.model_validate(user)


@router.post("/{user_id}/suspend", response_model=UserResponse, summary="Suspend membership")
@audit_log(AuditAction.USER_SUSPEND, AuditResource.USER, "user_id")
async def suspend_membership(
    user_id: UUID,
    request: Request,
    data: Optional[SuspendRequest] = None,
    current_user: User = Depends(require_chapter_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: UserService = Depends(get_user_service),
) -> UserResponse:
    user = await service.suspend(current_user, user_id, data.reason if data else None)
    return UserResponse.model_validate(user)
