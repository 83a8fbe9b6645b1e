"""
Authentication Service

Business logic for login, registration, email verification and password
management.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from threatcombat.api.access.audit import (
    AuditAction,
    AuditRecorder,
    RequestInfo,
    is_locked_out,
)
from threatcombat.api.access.rbac import Role
from threatcombat.api.auth.jwt import create_access_token, get_token_expiry_seconds
from threatcombat.api.auth.passwords import (
    generate_token,
    hash_password,
    hash_token,
    verify_password,
)
from threatcombat.api.auth.schemas import UserRegisterRequest
from threatcombat.api.chapters.service import ChapterService
from threatcombat.api.config import settings
from threatcombat.api.db.models import Chapter, MembershipStatus, User
from threatcombat.api.errors import (
    ConflictError,
    EmailNotVerifiedError,
    InternalError,
    InvalidCredentialsError,
    MembershipInactiveError,
    NotFoundError,
    ThreatCombatError,
    TooManyAttemptsError,
    UnauthorizedError,
    ValidationError,
)
from threatcombat.api.services.notifications import NotificationKind, NotificationOutbox

logger = logging.getLogger(__name__)

STORE_ERRORS = (SQLAlchemyError, asyncio.TimeoutError)

RESET_REQUESTED_MESSAGE = "If that email is registered, a password reset link has been sent"


def _expired(moment: Optional[datetime]) -> bool:
    if moment is None:
        return True
    # SQLite hands back naive datetimes; every stored value is UTC
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment <= datetime.now(timezone.utc)


@dataclass
class LoginResult:
    user: User
    token: str
    expires_in: int


class AuthService:
    """Authentication service with password and JWT management."""

    def __init__(
        self,
        db: AsyncSession,
        audit: AuditRecorder,
        outbox: Optional[NotificationOutbox] = None,
    ):
        self.db = db
        self.audit = audit
        self.outbox = outbox

    # ==================== LOGIN ====================

    async def login(
        self,
        email: str,
        password: str,
        request_info: Optional[RequestInfo] = None,
    ) -> LoginResult:
        """
        Authenticate a user and issue a token.

        Gates run in order and the first failure is audited and raised:
        credential lookup, password check, email verification, membership
        status, then the per-address lockout.

        Raises:
            InvalidCredentialsError: unknown email or wrong password
            EmailNotVerifiedError: email not verified
            MembershipInactiveError: membership not active
            TooManyAttemptsError: address locked out
            InternalError: store failure
        """
        info = request_info or RequestInfo()
        email = email.strip().lower()

        try:
            user = await self.get_user_by_email(email)
        except STORE_ERRORS as e:
            logger.exception("Credential lookup failed")
            raise InternalError("Login failed due to a server error") from e

        if not user:
            await self._reject(email, info, InvalidCredentialsError())

        if not verify_password(password, user.password_hash):
            await self._reject(email, info, InvalidCredentialsError(), user=user)

        if user.role != Role.SUPER_ADMIN:
            if not user.email_verified:
                await self._reject(email, info, EmailNotVerifiedError(), user=user)

            if user.membership_status != MembershipStatus.ACTIVE:
                await self._reject(
                    email,
                    info,
                    MembershipInactiveError(MembershipStatus(user.membership_status).value),
                    user=user,
                )

        try:
            failures = await self.audit.failed_attempts(
                info.ip_address, settings.LOCKOUT_WINDOW_HOURS
            )
        except STORE_ERRORS as e:
            logger.exception("Lockout check failed")
            raise InternalError("Login failed due to a server error") from e

        if is_locked_out(failures, settings.LOCKOUT_THRESHOLD):
            logger.warning("Locking out %s after %d failed attempts", info.ip_address, failures)
            await self.audit.record_security_event(
                AuditAction.ACCOUNT_LOCKOUT,
                request_info=info,
                actor=user,
                details={"email": email, "failed_attempts": failures},
                status_code=TooManyAttemptsError.status_code,
                error_message="Too many failed login attempts",
            )
            raise TooManyAttemptsError(failures)

        try:
            user.last_login_at = datetime.now(timezone.utc)
            user.login_count = (user.login_count or 0) + 1
            await self.db.commit()
        except STORE_ERRORS as e:
            await self.db.rollback()
            logger.exception("Failed to update login activity")
            raise InternalError("Login failed due to a server error") from e

        token = create_access_token(user.id, user.role, user.chapter_id)
        await self.audit.record_auth_attempt(email, True, request_info=info, user=user)

        return LoginResult(user=user, token=token, expires_in=get_token_expiry_seconds())

    async def _reject(
        self,
        email: str,
        info: RequestInfo,
        error: ThreatCombatError,
        user: Optional[User] = None,
    ) -> None:
        await self.audit.record_auth_attempt(
            email,
            False,
            request_info=info,
            user=user,
            status_code=error.status_code,
            error_message=error.message,
        )
        raise error

    # ==================== REGISTRATION ====================

    async def register(self, data: UserRegisterRequest) -> User:
        """
        Register a new member.

        The member joins the chapter of their university (created pending
        when none exists) and must verify their email.

        Raises:
            ConflictError: email already registered
        """
        email = data.email.strip().lower()
        if await self.get_user_by_email(email):
            raise ConflictError("User already exists with this email")

        chapters = ChapterService(self.db)
        chapter = await chapters.find_or_create_for_university(data.university, data.location)

        token = generate_token()
        user = User(
            name=data.name.strip(),
            email=email,
            password_hash=hash_password(data.password),
            university=data.university.strip(),
            phone=data.phone,
            role=Role.MEMBER,
            chapter_id=chapter.id,
            membership_status=MembershipStatus.PENDING,
            email_verified=False,
            email_verification_token=hash_token(token),
            email_verification_expires=datetime.now(timezone.utc)
            + timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS),
        )
        self.db.add(user)
        await self.db.flush()
        await chapters.refresh_member_count(chapter.id)
        await self.db.commit()
        await self.db.refresh(user)

        logger.info("Registered user %s in chapter %s", user.id, chapter.name)
        await self._notify(NotificationKind.EMAIL_VERIFICATION, user, token=token)
        return user

    async def verify_email(self, token: str) -> User:
        """
        Confirm an email address.

        Raises:
            NotFoundError: unknown token
            ValidationError: token expired (it is cleared)
        """
        result = await self.db.execute(
            select(User).where(User.email_verification_token == hash_token(token))
        )
        user = result.scalar_one_or_none()
        if not user:
            raise NotFoundError("VerificationToken")

        if _expired(user.email_verification_expires):
            user.email_verification_token = None
            user.email_verification_expires = None
            await self.db.commit()
            raise ValidationError("Verification token has expired")

        user.email_verified = True
        user.email_verification_token = None
        user.email_verification_expires = None
        await self.db.commit()
        await self.db.refresh(user)

        chapter = await self.db.get(Chapter, user.chapter_id) if user.chapter_id else None
        await self._notify(
            NotificationKind.WELCOME,
            user,
            chapter=chapter.name if chapter else None,
        )
        return user

    # ==================== PASSWORDS ====================

    async def request_password_reset(self, email: str) -> str:
        """Start a reset. The reply never reveals whether the email exists."""
        user = await self.get_user_by_email(email.strip().lower())
        if user:
            token = generate_token()
            user.password_reset_token = hash_token(token)
            user.password_reset_expires = datetime.now(timezone.utc) + timedelta(
                hours=settings.PASSWORD_RESET_EXPIRE_HOURS
            )
            await self.db.commit()
            await self._notify(NotificationKind.PASSWORD_RESET, user, token=token)

        return RESET_REQUESTED_MESSAGE

    async def reset_password(self, token: str, new_password: str) -> User:
        """
        Complete a reset. The token is single use.

        Raises:
            ValidationError: unknown or expired token
        """
        result = await self.db.execute(
            select(User).where(User.password_reset_token == hash_token(token))
        )
        user = result.scalar_one_or_none()
        if not user:
            raise ValidationError("Invalid or expired reset token")

        if _expired(user.password_reset_expires):
            user.password_reset_token = None
            user.password_reset_expires = None
            await self.db.commit()
            raise ValidationError("Invalid or expired reset token")

        user.password_hash = hash_password(new_password)
        user.password_reset_token = None
        user.password_reset_expires = None
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def change_password(
        self, user: User, current_password: str, new_password: str
    ) -> User:
        """
        Change user's password.

        Raises:
            UnauthorizedError: current password wrong
        """
        if not verify_password(current_password, user.password_hash):
            raise UnauthorizedError("Current password is incorrect")

        user.password_hash = hash_password(new_password)
        await self.db.commit()
        return user

    # ==================== LOOKUPS ====================

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by email address."""
        result = await self.db.execute(
            select(User).where(User.email == email)
        )
        return result.scalar_one_or_none()

    async def _notify(self, kind: NotificationKind, user: User, **payload) -> None:
        if self.outbox is None:
            return
        await self.outbox.send(kind, user.email, {"name": user.name, **payload})
