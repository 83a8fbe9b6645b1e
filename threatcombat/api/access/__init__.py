"""
Threat Combat - Access & Authority Module

Role-based access control, chapter scoping, and audit logging.

Components:
- rbac.py: Role definitions, capability predicates, chapter scoping
- audit.py: Audit recorder, risk classification, lockout, audit decorator

Usage:
    from threatcombat.api.access.rbac import (
        Role,
        ensure_chapter_scope,
        can_manage_users,
    )

    from threatcombat.api.access.audit import (
        AuditRecorder,
        AuditAction,
        audit_log,
    )
"""

from threatcombat.api.access.rbac import (
    Role,
    Principal,
    CAPABILITIES,
    GLOBAL_ROLES,
    ROLE_ASSIGNMENT_TARGETS,
    can_assign_role,
    check_role,
    ensure_chapter_scope,
    ensure_user_management_scope,
    permission_flags,
    requires_chapter,
)

__all__ = [
    "Role",
    "Principal",
    "CAPABILITIES",
    "GLOBAL_ROLES",
    "ROLE_ASSIGNMENT_TARGETS",
    "can_assign_role",
    "check_role",
    "ensure_chapter_scope",
    "ensure_user_management_scope",
    "permission_flags",
    "requires_chapter",
]
