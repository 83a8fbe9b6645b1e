"""
Authentication Schemas

Pydantic models for auth request/response validation.
"""

from datetime import datetime
from typing import Dict, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, computed_field

from threatcombat.api.access.rbac import Role, permission_flags
from threatcombat.api.db.models import ExecutivePosition, MembershipStatus


class UserRegisterRequest(BaseModel):
    """User registration request."""

    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    university: str = Field(..., min_length=2, max_length=200)
    location: str = Field(..., min_length=2, max_length=200)
    phone: Optional[str] = Field(None, max_length=30)


class UserLoginRequest(BaseModel):
    """User login request."""

    email: EmailStr
    password: str


class UserResponse(BaseModel):
    """User data response. The credential hash is never exposed."""

    id: UUID
    name: str
    email: str
    role: Role
    chapter_id: Optional[UUID]
    university: Optional[str] = None
    phone: Optional[str] = None
    bio: Optional[str] = None
    membership_status: MembershipStatus
    email_verified: bool
    executive_position: Optional[ExecutivePosition] = None
    executive_term: Optional[str] = None
    last_login_at: Optional[datetime] = None
    login_count: int = 0
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @computed_field
    @property
    def permissions(self) -> Dict[str, bool]:
        return permission_flags(self.role)


class LoginResponse(BaseModel):
    """Login response. The token is only included for non-browser clients."""

    success: bool = True
    message: str = "Login successful"
    user: UserResponse
    token: Optional[str] = None
    expires_in: int


class PasswordChangeRequest(BaseModel):
    """Password change request."""

    current_password: str
    new_password: str = Field(..., min_length=8, max_length=100)


class VerifyEmailRequest(BaseModel):
    """Email verification request."""

    token: str = Field(..., min_length=1)


class PasswordResetRequest(BaseModel):
    """Password reset request."""

    email: EmailStr


class PasswordResetConfirm(BaseModel):
    """Password reset confirmation."""

    token: str
    new_password: str = Field(..., min_length=8, max_length=100)


class MessageResponse(BaseModel):
    """Simple message response."""

    message: str
    success: bool = True
