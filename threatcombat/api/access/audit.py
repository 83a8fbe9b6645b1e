"""
Threat Combat - Audit Logging System

Audit trail for authentication, administrative and security-relevant
actions. Every entry carries a risk level and a review flag so that
administrators can triage the trail.

The recorder is a best-effort sink: it writes through its own session and
never fails the request it describes.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, FrozenSet, List, Optional
from uuid import UUID

from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder
from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from threatcombat.api.access.rbac import Role
from threatcombat.api.config import settings
from threatcombat.api.db.models import AuditLog
from threatcombat.api.errors import NotFoundError, ThreatCombatError, ValidationError


logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("threatcombat.audit")


# ============================================================
# Audit Vocabulary
# ============================================================


class AuditAction(str, Enum):
    """Auditable actions."""

    # Authentication
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    REGISTER = "REGISTER"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    PASSWORD_RESET_REQUEST = "PASSWORD_RESET_REQUEST"
    PASSWORD_RESET_COMPLETE = "PASSWORD_RESET_COMPLETE"
    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"

    # User Management
    USER_CREATE = "USER_CREATE"
    USER_UPDATE = "USER_UPDATE"
    USER_DELETE = "USER_DELETE"
    USER_ACTIVATE = "USER_ACTIVATE"
    USER_SUSPEND = "USER_SUSPEND"
    USER_PROMOTE = "USER_PROMOTE"
    USER_DEMOTE = "USER_DEMOTE"
    ROLE_CHANGE = "ROLE_CHANGE"
    ROLE_ASSIGNMENT = "ROLE_ASSIGNMENT"

    # Chapter Management
    CHAPTER_CREATE = "CHAPTER_CREATE"
    CHAPTER_UPDATE = "CHAPTER_UPDATE"
    CHAPTER_DELETE = "CHAPTER_DELETE"
    CHAPTER_JOIN = "CHAPTER_JOIN"
    CHAPTER_LEAVE = "CHAPTER_LEAVE"

    # Content
    RESEARCH_CREATE = "RESEARCH_CREATE"
    RESEARCH_UPDATE = "RESEARCH_UPDATE"
    RESEARCH_DELETE = "RESEARCH_DELETE"
    RESEARCH_PUBLISH = "RESEARCH_PUBLISH"
    EVENT_CREATE = "EVENT_CREATE"
    EVENT_UPDATE = "EVENT_UPDATE"
    EVENT_DELETE = "EVENT_DELETE"
    EVENT_REGISTER = "EVENT_REGISTER"
    COURSE_CREATE = "COURSE_CREATE"
    COURSE_UPDATE = "COURSE_UPDATE"
    COURSE_DELETE = "COURSE_DELETE"
    COURSE_ENROLL = "COURSE_ENROLL"

    # Security
    LOGIN_ATTEMPT_FAILED = "LOGIN_ATTEMPT_FAILED"
    ACCOUNT_LOCKOUT = "ACCOUNT_LOCKOUT"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # System
    SYSTEM_BACKUP = "SYSTEM_BACKUP"
    SYSTEM_UPDATE = "SYSTEM_UPDATE"
    CONFIGURATION_CHANGE = "CONFIGURATION_CHANGE"
    AUDIT_REVIEW = "AUDIT_REVIEW"


class AuditResource(str, Enum):
    USER = "USER"
    CHAPTER = "CHAPTER"
    RESEARCH = "RESEARCH"
    EVENT = "EVENT"
    COURSE = "COURSE"
    SYSTEM = "SYSTEM"
    AUTHENTICATION = "AUTHENTICATION"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ReviewStatus(str, Enum):
    PENDING = "PENDING"
    REVIEWED = "REVIEWED"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"


# ============================================================
# Risk Classification
# ============================================================


CRITICAL_ACTIONS: FrozenSet[AuditAction] = frozenset({
    AuditAction.USER_DELETE,
    AuditAction.CHAPTER_DELETE,
    AuditAction.ACCOUNT_LOCKOUT,
    AuditAction.SUSPICIOUS_ACTIVITY,
})

HIGH_ACTIONS: FrozenSet[AuditAction] = frozenset({
    AuditAction.USER_SUSPEND,
    AuditAction.USER_PROMOTE,
    AuditAction.USER_DEMOTE,
    AuditAction.ROLE_CHANGE,
    AuditAction.ROLE_ASSIGNMENT,
    AuditAction.PASSWORD_RESET_COMPLETE,
})

MEDIUM_ACTIONS: FrozenSet[AuditAction] = frozenset({
    AuditAction.USER_CREATE,
    AuditAction.USER_UPDATE,
    AuditAction.PASSWORD_CHANGE,
    AuditAction.LOGIN_ATTEMPT_FAILED,
})

ALWAYS_REVIEWED: FrozenSet[AuditAction] = frozenset({
    AuditAction.USER_DELETE,
    AuditAction.CHAPTER_DELETE,
    AuditAction.ACCOUNT_LOCKOUT,
})

# Reviewed unless an administrator performed them
PRIVILEGE_CHANGES: FrozenSet[AuditAction] = frozenset({
    AuditAction.USER_SUSPEND,
    AuditAction.USER_PROMOTE,
    AuditAction.USER_DEMOTE,
    AuditAction.ROLE_CHANGE,
    AuditAction.ROLE_ASSIGNMENT,
})

ADMIN_ROLES: FrozenSet[Role] = frozenset({Role.CHAPTER_ADMIN, Role.SUPER_ADMIN})

SUSPICIOUS_ACTIONS: FrozenSet[AuditAction] = frozenset({
    AuditAction.LOGIN_ATTEMPT_FAILED,
    AuditAction.ACCOUNT_LOCKOUT,
    AuditAction.SUSPICIOUS_ACTIVITY,
})


def classify_risk(
    action: AuditAction,
    role: Optional[Role] = None,
    status_code: int = 200,
) -> RiskLevel:
    """Risk level of an action; any failed request is at least MEDIUM."""
    action = AuditAction(action)
    if action in CRITICAL_ACTIONS:
        return RiskLevel.CRITICAL
    if action in HIGH_ACTIONS:
        return RiskLevel.HIGH
    if action in MEDIUM_ACTIONS or status_code >= 400:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def requires_review(
    action: AuditAction,
    role: Optional[Role] = None,
    status_code: int = 200,
) -> bool:
    """Whether an entry must be looked at by an administrator."""
    action = AuditAction(action)
    if action in ALWAYS_REVIEWED:
        return True
    if action in PRIVILEGE_CHANGES:
        return role is None or Role(role) not in ADMIN_ROLES
    if action == AuditAction.LOGIN_ATTEMPT_FAILED:
        return status_code >= 400
    return False


# ============================================================
# Redaction & Lockout
# ============================================================


REDACTED = "[REDACTED]"
SENSITIVE_KEYS: FrozenSet[str] = frozenset(
    {"password", "token", "secret", "key", "authorization"}
)


def redact(payload: Any) -> Any:
    """
    Replace sensitive top-level fields with a marker.

    Only exact key names are matched; nested structures are left as-is.
    """
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        return payload
    return {
        k: REDACTED if k in SENSITIVE_KEYS else v
        for k, v in payload.items()
    }


def is_locked_out(failed_count: int, threshold: int = 5) -> bool:
    """An address is locked out once its failed attempts reach the threshold."""
    return failed_count >= threshold


# ============================================================
# Request Context
# ============================================================


@dataclass
class RequestInfo:
    """Where an audited action came from."""

    ip_address: str = "unknown"
    user_agent: Optional[str] = None
    method: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_request(cls, request: Optional[Request]) -> "RequestInfo":
        if request is None:
            return cls()

        ip_address = request.client.host if request.client else "unknown"
        if settings.TRUST_PROXY_HEADERS:
            forwarded = request.headers.get("x-forwarded-for")
            if forwarded:
                ip_address = forwarded.split(",")[0].strip()

        return cls(
            ip_address=ip_address,
            user_agent=request.headers.get("user-agent"),
            method=request.method,
            url=str(request.url.path),
        )


def _actor_fields(actor: Any) -> Dict[str, Any]:
    if actor is None:
        return {"user_id": None, "user_role": None, "user_chapter_id": None}
    role = getattr(actor, "role", None)
    return {
        "user_id": getattr(actor, "id", None),
        "user_role": role.value if isinstance(role, Enum) else role,
        "user_chapter_id": getattr(actor, "chapter_id", None),
    }


# ============================================================
# Audit Recorder
# ============================================================


class AuditRecorder:
    """
    Central audit service.

    Writes go through a session of their own, so an entry survives the
    rollback of the request that produced it.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def record(
        self,
        action: AuditAction,
        resource: AuditResource,
        actor: Any = None,
        resource_id: Any = None,
        details: Optional[Dict[str, Any]] = None,
        request_info: Optional[RequestInfo] = None,
        status_code: int = 200,
        error_message: Optional[str] = None,
        duration_ms: Optional[int] = None,
        risk_level: Optional[RiskLevel] = None,
        review: Optional[bool] = None,
    ) -> Optional[AuditLog]:
        """
        Persist one audit entry.

        Never raises. A failed write is logged and None is returned.
        """
        action = AuditAction(action)
        info = request_info or RequestInfo()
        actor_fields = _actor_fields(actor)
        role = actor_fields["user_role"]

        try:
            entry = AuditLog(
                **actor_fields,
                action=action.value,
                resource=AuditResource(resource).value,
                resource_id=str(resource_id) if resource_id is not None else None,
                details=jsonable_encoder(details or {}),
                ip_address=info.ip_address or "unknown",
                user_agent=info.user_agent,
                method=info.method,
                url=info.url,
                status_code=status_code,
                success=status_code < 400,
                error_message=error_message,
                duration_ms=duration_ms,
                risk_level=(risk_level or classify_risk(action, role, status_code)).value,
                requires_review=(
                    review if review is not None
                    else requires_review(action, role, status_code)
                ),
                review_status=ReviewStatus.PENDING.value,
            )

            audit_logger.info(
                "%s %s/%s by %s from %s -> %s (%s)",
                entry.action,
                entry.resource,
                entry.resource_id or "-",
                entry.user_id or "anonymous",
                entry.ip_address,
                status_code,
                entry.risk_level,
            )

            async with self.session_factory() as session:
                session.add(entry)
                await session.commit()
            return entry

        except Exception:
            logger.exception("Failed to write audit entry for %s", action.value)
            return None

    async def record_auth_attempt(
        self,
        email: str,
        success: bool,
        request_info: Optional[RequestInfo] = None,
        user: Any = None,
        status_code: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """Record a login success or failure."""
        if success:
            return await self.record(
                AuditAction.LOGIN,
                AuditResource.AUTHENTICATION,
                actor=user,
                resource_id=getattr(user, "id", None),
                details={"email": email},
                request_info=request_info,
                status_code=status_code or 200,
            )

        return await self.record(
            AuditAction.LOGIN_ATTEMPT_FAILED,
            AuditResource.AUTHENTICATION,
            actor=user,
            details={"email": email},
            request_info=request_info,
            status_code=status_code or 401,
            error_message=error_message,
        )

    async def record_security_event(
        self,
        action: AuditAction,
        request_info: Optional[RequestInfo] = None,
        actor: Any = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 403,
        error_message: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """Record a security event. Always HIGH or above and always reviewed."""
        risk = classify_risk(action, None, status_code)
        if risk not in (RiskLevel.HIGH, RiskLevel.CRITICAL):
            risk = RiskLevel.HIGH

        return await self.record(
            action,
            AuditResource.SYSTEM,
            actor=actor,
            details=details,
            request_info=request_info,
            status_code=status_code,
            error_message=error_message,
            risk_level=risk,
            review=True,
        )

    # --------------------------------------------------------
    # Queries
    # --------------------------------------------------------

    async def failed_attempts(self, ip_address: str, window_hours: int = 1) -> int:
        """Count failed logins from an address inside the window. Store errors propagate."""
        since = datetime.now(timezone.utc) - timedelta(hours=window_hours)
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(AuditLog.id)).where(
                    AuditLog.action == AuditAction.LOGIN_ATTEMPT_FAILED.value,
                    AuditLog.ip_address == ip_address,
                    AuditLog.created_at >= since,
                )
            )
            return result.scalar() or 0

    async def user_activity(self, user_id: UUID, limit: int = 50) -> List[AuditLog]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(AuditLog)
                .where(AuditLog.user_id == user_id)
                .order_by(AuditLog.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def suspicious_activity(
        self,
        days: int = 7,
        limit: int = 100,
        chapter_id: Optional[UUID] = None,
    ) -> List[AuditLog]:
        """
        High-risk, security-flagged or review-pending entries, newest first.

        With a chapter, only entries whose actor belonged to it are returned.
        """
        since = datetime.now(timezone.utc) - timedelta(days=days)
        query = select(AuditLog)
        if chapter_id is not None:
            query = query.where(AuditLog.user_chapter_id == chapter_id)
        async with self.session_factory() as session:
            result = await session.execute(
                query
                .where(
                    AuditLog.created_at >= since,
                    or_(
                        AuditLog.risk_level.in_(
                            [RiskLevel.HIGH.value, RiskLevel.CRITICAL.value]
                        ),
                        AuditLog.action.in_([a.value for a in SUSPICIOUS_ACTIONS]),
                        AuditLog.requires_review.is_(True),
                    ),
                )
                .order_by(AuditLog.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def activity_summary(
        self, days: int = 30, chapter_id: Optional[UUID] = None
    ) -> List[Dict[str, Any]]:
        """Per-action totals over the window, optionally for one chapter."""
        since = datetime.now(timezone.utc) - timedelta(days=days)
        successful = func.sum(case((AuditLog.success.is_(True), 1), else_=0))
        conditions = [AuditLog.created_at >= since]
        if chapter_id is not None:
            conditions.append(AuditLog.user_chapter_id == chapter_id)
        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    AuditLog.action,
                    func.count(AuditLog.id).label("total"),
                    successful.label("successful"),
                )
                .where(*conditions)
                .group_by(AuditLog.action)
                .order_by(func.count(AuditLog.id).desc())
            )
            return [
                {
                    "action": row.action,
                    "total": row.total,
                    "successful": int(row.successful or 0),
                    "failed": row.total - int(row.successful or 0),
                }
                for row in result.all()
            ]

    async def review(
        self,
        entry_id: UUID,
        reviewer: Any,
        status: ReviewStatus,
        notes: Optional[str] = None,
        request_info: Optional[RequestInfo] = None,
    ) -> AuditLog:
        """
        Mark an entry as reviewed.

        This is the only mutation audit entries accept.

        Raises:
            ValidationError: status is PENDING
            NotFoundError: entry does not exist
        """
        status = ReviewStatus(status)
        if status == ReviewStatus.PENDING:
            raise ValidationError("Review status must move past PENDING")

        async with self.session_factory() as session:
            entry = await session.get(AuditLog, entry_id)
            if not entry:
                raise NotFoundError("AuditLog", entry_id)

            entry.review_status = status.value
            entry.reviewer_id = reviewer.id
            entry.review_notes = notes
            entry.reviewed_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(entry)

        await self.record(
            AuditAction.AUDIT_REVIEW,
            AuditResource.SYSTEM,
            actor=reviewer,
            resource_id=entry_id,
            details={"review_status": status.value, "reviewed_action": entry.action},
            request_info=request_info,
        )
        return entry


# ============================================================
# Audit Decorator
# ============================================================


def _payload(data: Any) -> Any:
    if data is None or isinstance(data, Response):
        return None
    return jsonable_encoder(data)


def _resource_id_from(result: Any) -> Optional[str]:
    if isinstance(result, dict):
        value = result.get("id")
    else:
        value = getattr(result, "id", None)
    return str(value) if value is not None else None


def audit_log(
    action: AuditAction,
    resource: AuditResource,
    resource_id_param: Optional[str] = None,
    include_request: bool = True,
    include_response: bool = True,
    success_status: int = 200,
) -> Callable:
    """
    Decorator to audit a route.

    The route must accept ``request``, ``current_user`` and ``audit``
    keyword arguments. A pydantic body named ``data`` and the result are
    captured redacted unless disabled.
    Exactly one entry is written per call and errors are re-raised.

    Usage:
        @router.delete("/{user_id}")
        @audit_log(AuditAction.USER_DELETE, AuditResource.USER, "user_id")
        async def delete_user(user_id: UUID, request: Request, ...):
            ...
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.monotonic()

            recorder: Optional[AuditRecorder] = kwargs.get("audit")
            actor = kwargs.get("current_user")
            info = RequestInfo.from_request(kwargs.get("request"))
            resource_id = kwargs.get(resource_id_param) if resource_id_param else None

            details: Dict[str, Any] = {}
            body = _payload(kwargs.get("data")) if include_request else None
            if body is not None:
                details["body"] = redact(body)

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                status_code = e.status_code if isinstance(e, ThreatCombatError) else 500
                if recorder is not None:
                    await recorder.record(
                        action,
                        resource,
                        actor=actor,
                        resource_id=resource_id,
                        details=details,
                        request_info=info,
                        status_code=status_code,
                        error_message=str(getattr(e, "message", e)),
                        duration_ms=int((time.monotonic() - start_time) * 1000),
                    )
                raise

            response = _payload(result) if include_response else None
            if response is not None:
                details["response"] = redact(response)
            if resource_id is None:
                resource_id = _resource_id_from(result)

            if recorder is not None:
                await recorder.record(
                    action,
                    resource,
                    actor=actor,
                    resource_id=resource_id,
                    details=details,
                    request_info=info,
                    status_code=success_status,
                    duration_ms=int((time.monotonic() - start_time) * 1000),
                )

            return result

        return wrapper
    return decorator
