"""
Authentication Routes

API endpoints for login, registration and credential management.
"""

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from threatcombat.api.access.audit import (
    AuditAction,
    AuditRecorder,
    AuditResource,
    RequestInfo,
    audit_log,
)
from threatcombat.api.auth.schemas import (
    LoginResponse,
    MessageResponse,
    PasswordChangeRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    UserLoginRequest,
    UserRegisterRequest,
    UserResponse,
    VerifyEmailRequest,
)
from threatcombat.api.auth.service import AuthService
from threatcombat.api.config import settings
from threatcombat.api.db.models import User
from threatcombat.api.db.session import get_db
from threatcombat.api.dependencies import (
    TOKEN_COOKIE,
    get_audit_recorder,
    get_current_user,
    get_outbox,
)
from threatcombat.api.rate_limit import limiter
from threatcombat.api.services.notifications import NotificationOutbox


router = APIRouter()


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
    outbox: NotificationOutbox = Depends(get_outbox),
) -> AuthService:
    """Dependency to get auth service."""
    return AuthService(db, audit, outbox)


@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Login and receive a session cookie",
)
@limiter.limit(settings.RATE_LIMIT_LOGIN)
async def login(
    data: UserLoginRequest,
    request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """
    Authenticate with email and password.

    Sets an httpOnly ``token`` cookie. The token is also returned in the
    body when the server is configured for non-browser clients.
    """
    result = await auth_service.login(
        data.email, data.password, RequestInfo.from_request(request)
    )

    response.set_cookie(
        key=TOKEN_COOKIE,
        value=result.token,
        max_age=result.expires_in,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
    )

    return LoginResponse(
        user=UserResponse.model_validate(result.user),
        token=result.token if settings.RETURN_TOKEN_IN_BODY else None,
        expires_in=result.expires_in,
    )


@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new member",
)
@limiter.limit(settings.RATE_LIMIT_REGISTER)
@audit_log(AuditAction.REGISTER, AuditResource.USER, success_status=201)
async def register(
    data: UserRegisterRequest,
    request: Request,
    audit: AuditRecorder = Depends(get_audit_recorder),
    auth_service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """
    Register a new member account.

    - **email**: Valid email address (must be unique)
    - **password**: Minimum 8 characters
    - **university**: Used to place the member in a chapter
    """
    user = await auth_service.register(data)
    return UserResponse.model_validate(user)


@router.post(
    "/verify-email",
    response_model=UserResponse,
    summary="Verify email address",
)
@audit_log(AuditAction.EMAIL_VERIFICATION, AuditResource.USER)
async def verify_email(
    data: VerifyEmailRequest,
    request: Request,
    audit: AuditRecorder = Depends(get_audit_recorder),
    auth_service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Confirm the address a verification token was sent to."""
    user = await auth_service.verify_email(data.token)
    return UserResponse.model_validate(user)


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    summary="Request a password reset link",
)
@limiter.limit(settings.RATE_LIMIT_PASSWORD_RESET)
@audit_log(AuditAction.PASSWORD_RESET_REQUEST, AuditResource.AUTHENTICATION)
async def forgot_password(
    data: PasswordResetRequest,
    request: Request,
    audit: AuditRecorder = Depends(get_audit_recorder),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Always answers the same way, whether or not the email is registered."""
    message = await auth_service.request_password_reset(data.email)
    return MessageResponse(message=message)


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    summary="Set a new password with a reset token",
)
@audit_log(
    AuditAction.PASSWORD_RESET_COMPLETE,
    AuditResource.AUTHENTICATION,
    include_request=False,
)
async def reset_password(
    data: PasswordResetConfirm,
    request: Request,
    audit: AuditRecorder = Depends(get_audit_recorder),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await auth_service.reset_password(data.token, data.new_password)
    return MessageResponse(message="Password has been reset")


@router.post(
    "/change-password",
    response_model=MessageResponse,
    summary="Change password",
)
@audit_log(AuditAction.PASSWORD_CHANGE, AuditResource.USER, include_request=False)
async def change_password(
    data: PasswordChangeRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit_recorder),
    auth_service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await auth_service.change_password(
        current_user, data.current_password, data.new_password
    )
    return MessageResponse(message="Password changed")


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Logout",
)
@audit_log(AuditAction.LOGOUT, AuditResource.AUTHENTICATION)
async def logout(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    audit: AuditRecorder = Depends(get_audit_recorder),
) -> MessageResponse:
    """Clear the session cookie."""
    response.delete_cookie(TOKEN_COOKIE, httponly=True, samesite="strict")
    return MessageResponse(message="Logged out")


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Current user",
)
async def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.model_validate(current_user)
