"""
Threat Combat - Role-Based Access Control (RBAC)

Defines roles, capability predicates, and chapter scoping rules.
This is the authoritative source for access control.

Every predicate is a pure function of the role. Permission flags exposed
on users are computed from these and never stored.
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Protocol
from uuid import UUID

from threatcombat.api.errors import CrossChapterError, InsufficientRoleError


# ============================================================
# Roles
# ============================================================


class Role(str, Enum):
    """System roles. The first four form a hierarchy, highest first."""

    SUPER_ADMIN = "super_admin"
    CHAPTER_ADMIN = "chapter_admin"
    EXECUTIVE = "executive"
    MEMBER = "member"
    INDUSTRY_PARTNER = "industry_partner"


# Global roles live outside any chapter
GLOBAL_ROLES: FrozenSet[Role] = frozenset({Role.SUPER_ADMIN, Role.INDUSTRY_PARTNER})

# Roles that can be compared by rank; industry_partner is parallel
ROLE_RANK: Dict[Role, int] = {
    Role.SUPER_ADMIN: 3,
    Role.CHAPTER_ADMIN: 2,
    Role.EXECUTIVE: 1,
    Role.MEMBER: 0,
}


class Principal(Protocol):
    """Anything that acts: an authenticated user."""

    id: UUID
    role: Role
    chapter_id: Optional[UUID]


def outranks(role: Role, other: Role) -> Optional[bool]:
    """
    Compare two roles on the linear hierarchy.

    Returns None when either role is outside the hierarchy
    (industry_partner), since no ordering is defined there.
    """
    if role not in ROLE_RANK or other not in ROLE_RANK:
        return None
    return ROLE_RANK[role] > ROLE_RANK[other]


def requires_chapter(role: Role) -> bool:
    """Whether a user holding this role must belong to a chapter."""
    return role not in GLOBAL_ROLES


# ============================================================
# Capability Predicates
# ============================================================


CAPABILITIES: Dict[str, FrozenSet[Role]] = {
    "is_super_admin": frozenset({Role.SUPER_ADMIN}),
    "is_chapter_admin": frozenset({Role.CHAPTER_ADMIN, Role.SUPER_ADMIN}),
    "is_executive_or_higher": frozenset(
        {Role.EXECUTIVE, Role.CHAPTER_ADMIN, Role.SUPER_ADMIN}
    ),
    "has_global_access": frozenset({Role.SUPER_ADMIN, Role.INDUSTRY_PARTNER}),
    "has_cross_chapter_access": frozenset({Role.SUPER_ADMIN, Role.INDUSTRY_PARTNER}),
    "can_manage_research": frozenset(
        {Role.EXECUTIVE, Role.CHAPTER_ADMIN, Role.SUPER_ADMIN, Role.INDUSTRY_PARTNER}
    ),
    "can_manage_events": frozenset(
        {Role.EXECUTIVE, Role.CHAPTER_ADMIN, Role.SUPER_ADMIN}
    ),
    "can_manage_courses": frozenset(
        {Role.CHAPTER_ADMIN, Role.SUPER_ADMIN, Role.INDUSTRY_PARTNER}
    ),
    "has_analytics_access": frozenset({Role.CHAPTER_ADMIN, Role.SUPER_ADMIN}),
    "can_manage_users": frozenset({Role.CHAPTER_ADMIN, Role.SUPER_ADMIN}),
    "can_manage_chapter": frozenset({Role.CHAPTER_ADMIN, Role.SUPER_ADMIN}),
}


def _has(capability: str, role: Optional[Role]) -> bool:
    if role is None:
        return False
    return Role(role) in CAPABILITIES[capability]


def is_super_admin(role: Optional[Role]) -> bool:
    return _has("is_super_admin", role)


def is_chapter_admin(role: Optional[Role]) -> bool:
    return _has("is_chapter_admin", role)


def is_executive_or_higher(role: Optional[Role]) -> bool:
    return _has("is_executive_or_higher", role)


def has_global_access(role: Optional[Role]) -> bool:
    return _has("has_global_access", role)


def has_cross_chapter_access(role: Optional[Role]) -> bool:
    return _has("has_cross_chapter_access", role)


def can_manage_research(role: Optional[Role]) -> bool:
    return _has("can_manage_research", role)


def can_manage_events(role: Optional[Role]) -> bool:
    return _has("can_manage_events", role)


def can_manage_courses(role: Optional[Role]) -> bool:
    return _has("can_manage_courses", role)


def has_analytics_access(role: Optional[Role]) -> bool:
    return _has("has_analytics_access", role)


def can_manage_users(role: Optional[Role]) -> bool:
    return _has("can_manage_users", role)


def can_manage_chapter(role: Optional[Role]) -> bool:
    return _has("can_manage_chapter", role)


def permission_flags(role: Optional[Role]) -> Dict[str, bool]:
    """Permission flags returned to clients alongside the user summary."""
    return {
        "can_manage_chapter": can_manage_chapter(role),
        "can_manage_users": can_manage_users(role),
        "can_manage_research": can_manage_research(role),
        "can_manage_events": can_manage_events(role),
        "can_access_global_features": has_global_access(role),
    }


# ============================================================
# Role Gates
# ============================================================


def check_role(principal: Optional[Any], allowed: FrozenSet[Role], label: str) -> None:
    """
    Fail closed unless the principal holds one of the allowed roles.

    Raises:
        InsufficientRoleError: role absent or not allowed
    """
    role = getattr(principal, "role", None) if principal is not None else None
    if role is None or Role(role) not in allowed:
        raise InsufficientRoleError(f"Access denied. {label} privileges required.")


# ============================================================
# Chapter Scoping
# ============================================================


def same_chapter(a: Optional[UUID], b: Optional[UUID]) -> bool:
    return a is not None and b is not None and str(a) == str(b)


def ensure_chapter_scope(principal: Principal, target_chapter_id: Optional[UUID]) -> None:
    """
    Allow a principal to act on a chapter-owned target.

    super_admin bypasses scoping. chapter_admin and executive may only act
    inside their own chapter. Every other role is refused.

    Raises:
        CrossChapterError: target chapter differs from the principal's
        InsufficientRoleError: role cannot manage chapter resources at all
    """
    role = Role(principal.role)
    if role == Role.SUPER_ADMIN:
        return

    if role in (Role.CHAPTER_ADMIN, Role.EXECUTIVE):
        if not same_chapter(principal.chapter_id, target_chapter_id):
            raise CrossChapterError(
                "Access denied. You can only manage your own chapter."
            )
        return

    raise InsufficientRoleError("Access denied. Insufficient privileges.")


def ensure_user_management_scope(principal: Principal, target: Principal) -> None:
    """
    Allow a principal to manage another user.

    super_admin manages everyone; chapter_admin manages users of their own
    chapter; nobody else manages users.
    """
    role = Role(principal.role)
    if role == Role.SUPER_ADMIN:
        return

    if role == Role.CHAPTER_ADMIN:
        if not same_chapter(principal.chapter_id, target.chapter_id):
            raise CrossChapterError(
                "Access denied. You can only manage users in your chapter."
            )
        return

    raise InsufficientRoleError(
        "Access denied. Insufficient privileges for user management."
    )


# ============================================================
# Role Assignment Rules
# ============================================================


ROLE_ASSIGNMENT_TARGETS: Dict[Role, FrozenSet[Role]] = {
    Role.SUPER_ADMIN: frozenset({Role.CHAPTER_ADMIN, Role.SUPER_ADMIN, Role.EXECUTIVE}),
    Role.CHAPTER_ADMIN: frozenset({Role.EXECUTIVE}),
}

# Roles whose assignment implies the account is vouched for
VOUCHED_ROLES: FrozenSet[Role] = frozenset(
    {Role.CHAPTER_ADMIN, Role.EXECUTIVE, Role.SUPER_ADMIN}
)


def can_assign_role(assigner: Role, target_role: Role) -> bool:
    """Check if assigner can grant target role."""
    return Role(target_role) in ROLE_ASSIGNMENT_TARGETS.get(Role(assigner), frozenset())
