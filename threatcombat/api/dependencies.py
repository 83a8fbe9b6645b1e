"""
FastAPI Dependencies

Common dependencies for dependency injection: the authenticated
principal, role gates, the audit recorder and the notification outbox.
"""

from typing import Callable, Iterable, Optional
from uuid import UUID

from fastapi import BackgroundTasks, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from threatcombat.api.access import rbac
from threatcombat.api.access.audit import AuditRecorder
from threatcombat.api.access.rbac import Role
from threatcombat.api.auth.jwt import verify_token
from threatcombat.api.db.models import MembershipStatus, User
from threatcombat.api.db.session import get_db, get_session_maker
from threatcombat.api.errors import ForbiddenError, MembershipInactiveError, UnauthorizedError
from threatcombat.api.services.notifications import NotificationOutbox, Notifier


TOKEN_COOKIE = "token"

security = HTTPBearer(auto_error=False)


def get_audit_recorder() -> AuditRecorder:
    """Audit recorder bound to its own session factory."""
    return AuditRecorder(get_session_maker())


def get_notifier() -> Notifier:
    return Notifier()


def get_outbox(
    background_tasks: BackgroundTasks,
    notifier: Notifier = Depends(get_notifier),
) -> NotificationOutbox:
    """Notifications queued to run after the response."""
    return NotificationOutbox(notifier, background_tasks)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Get the current authenticated user from the token cookie or bearer header.

    Raises:
        UnauthorizedError: If token is missing, invalid or the user is gone
        MembershipInactiveError: If the membership is no longer active
    """
    token = request.cookies.get(TOKEN_COOKIE)
    if not token and credentials:
        token = credentials.credentials

    if not token:
        raise UnauthorizedError("Not authorized, no token")

    payload = verify_token(token, "access")
    if not payload:
        raise UnauthorizedError("Not authorized, token failed")

    try:
        user_id = UUID(payload.get("id") or payload["sub"])
    except (KeyError, ValueError):
        raise UnauthorizedError("Not authorized, token failed")

    user = await db.get(User, user_id)
    if not user:
        raise UnauthorizedError("Not authorized, user not found")

    # Tokens outlive status changes; re-check on every request
    if user.role != Role.SUPER_ADMIN and not user.is_active_member:
        raise MembershipInactiveError(MembershipStatus(user.membership_status).value)

    return user


def require_role(allowed_roles: Iterable[Role], label: str = "Required") -> Callable:
    """
    Build a dependency that admits only the given roles.

    Fails closed: a principal without a role is refused.

    Usage:
        @router.get("/", dependencies=[Depends(require_role({Role.SUPER_ADMIN}))])
    """
    allowed = frozenset(Role(r) for r in allowed_roles)

    async def dependency(user: User = Depends(get_current_user)) -> User:
        rbac.check_role(user, allowed, label)
        return user

    return dependency


def _gate(capability: str, label: str) -> Callable:
    return require_role(rbac.CAPABILITIES[capability], label)


require_super_admin = _gate("is_super_admin", "Super admin")
require_chapter_admin = _gate("is_chapter_admin", "Chapter admin")
require_executive = _gate("is_executive_or_higher", "Executive")
require_global_access = _gate("has_global_access", "Global access")
require_cross_chapter_access = _gate("has_cross_chapter_access", "Cross-chapter access")
require_research_access = _gate("can_manage_research", "Research management")
require_event_access = _gate("can_manage_events", "Event management")
require_course_access = _gate("can_manage_courses", "Course management")
require_analytics_access = _gate("has_analytics_access", "Analytics")


async def require_active_membership(
    user: User = Depends(get_current_user),
) -> User:
    """
    Require an active membership. Super admins always pass.

    Raises:
        ForbiddenError: membership not active
    """
    if user.role != Role.SUPER_ADMIN and not user.is_active_member:
        raise ForbiddenError("Active membership required")
    return user
