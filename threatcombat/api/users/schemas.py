"""
User Management Schemas
"""

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from threatcombat.api.access.rbac import Role
from threatcombat.api.auth.schemas import UserResponse
from threatcombat.api.db.models import ExecutivePosition, MembershipStatus


class ProfileUpdateRequest(BaseModel):
    """Fields a member may change on their own profile."""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    bio: Optional[str] = Field(None, max_length=2000)
    phone: Optional[str] = Field(None, max_length=30)


class UserUpdateRequest(ProfileUpdateRequest):
    """Administrators may also change the membership status."""

    membership_status: Optional[MembershipStatus] = None


class UserListResponse(BaseModel):
    count: int
    users: List[UserResponse]


class UserStatsResponse(BaseModel):
    total_users: int = 0
    active_users: int = 0
    pending_users: int = 0
    suspended_users: int = 0
    executives: int = 0
    chapter_admins: int = 0
    industry_partners: int = 0


class PromoteRequest(BaseModel):
    position: Optional[ExecutivePosition] = None
    term: Optional[str] = Field(None, max_length=20)


class SuspendRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AssignAdminRoleRequest(BaseModel):
    email: EmailStr
    role: Role
    chapter_id: Optional[UUID] = None


class DirectoryEntry(BaseModel):
    """Public face of a member. Contact details are left out."""

    id: UUID
    name: str
    role: Role
    chapter_id: Optional[UUID]
    university: Optional[str] = None
    bio: Optional[str] = None
    executive_position: Optional[ExecutivePosition] = None

    class Config:
        from_attributes = True


class DirectoryResponse(BaseModel):
    count: int
    members: List[DirectoryEntry]
