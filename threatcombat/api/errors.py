"""
Threat Combat - Error Taxonomy
==============================

Typed errors raised by the services and authorization layer. The API
boundary maps each class to its HTTP status code through a single
exception handler registered in ``main.py``.

Error Categories:
    - ValidationError: malformed or missing input (400)
    - UnauthorizedError: missing or invalid credential (401)
    - ForbiddenError: authenticated but not allowed (403)
    - NotFoundError: referenced entity absent (404)
    - ConflictError: duplicate unique field or occupied slot (409)
    - RateLimitedError: lockout or abuse threshold reached (429)
    - InternalError: store or transport failure (500)
"""

from typing import Any, Dict, Optional


class ThreatCombatError(Exception):
    """
    Base exception for all Threat Combat API errors.

    Attributes:
        message: Human-readable error description
        code: Error code for programmatic handling
        details: Optional dict with additional context
        status_code: HTTP status the boundary responds with
    """

    status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        return body


# =============================================================================
# 400 - BAD REQUEST
# =============================================================================


class ValidationError(ThreatCombatError):
    """Malformed or missing input."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class MissingFieldError(ValidationError):
    """A required field was not supplied."""

    default_code = "MISSING_FIELD"

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(
            message or f"{field} is required",
            details={"field": field},
        )
        self.field = field


# =============================================================================
# 401 - UNAUTHORIZED
# =============================================================================


class UnauthorizedError(ThreatCombatError):
    """Missing, invalid or expired credential."""

    status_code = 401
    default_code = "UNAUTHORIZED"


class InvalidCredentialsError(UnauthorizedError):
    """Unknown email or wrong password. Both cases share one message."""

    default_code = "INVALID_CREDENTIALS"

    def __init__(self):
        super().__init__("Invalid credentials")


# =============================================================================
# 403 - FORBIDDEN
# =============================================================================


class ForbiddenError(ThreatCombatError):
    """Authenticated, but not allowed to perform the action."""

    status_code = 403
    default_code = "FORBIDDEN"


class InsufficientRoleError(ForbiddenError):
    """Principal's role is not in the allowed set."""

    default_code = "INSUFFICIENT_ROLE"


class CrossChapterError(ForbiddenError):
    """Target belongs to a chapter outside the principal's scope."""

    default_code = "CROSS_CHAPTER"


class SelfModificationError(ForbiddenError):
    """Principal attempted to change their own role or account."""

    default_code = "SELF_MODIFICATION"


class InvalidTargetRoleError(ForbiddenError):
    """Requested role cannot be granted by this principal or to this target."""

    default_code = "INVALID_TARGET_ROLE"


class EmailNotVerifiedError(ForbiddenError):
    default_code = "EMAIL_NOT_VERIFIED"

    def __init__(self):
        super().__init__("Please verify your email before logging in")


class MembershipInactiveError(ForbiddenError):
    default_code = "MEMBERSHIP_INACTIVE"

    def __init__(self, membership_status: str):
        messages = {
            "pending": "Your membership is pending approval",
            "suspended": "Your membership has been suspended",
            "inactive": "Your membership is inactive",
        }
        super().__init__(
            messages.get(membership_status, "Active membership required"),
            details={"membership_status": membership_status},
        )


# =============================================================================
# 404 / 409
# =============================================================================


class NotFoundError(ThreatCombatError):
    """Referenced entity does not exist."""

    status_code = 404
    default_code = "NOT_FOUND"

    def __init__(self, resource_type: str, resource_id: Any = None):
        message = f"{resource_type} not found"
        details = {"resource_type": resource_type}
        if resource_id is not None:
            details["resource_id"] = str(resource_id)
        super().__init__(message, code=f"{resource_type.upper()}_NOT_FOUND", details=details)
        self.resource_type = resource_type


class ConflictError(ThreatCombatError):
    """Duplicate unique field, occupied position, or similar state clash."""

    status_code = 409
    default_code = "CONFLICT"


# =============================================================================
# 429 / 500
# =============================================================================


class RateLimitedError(ThreatCombatError):
    status_code = 429
    default_code = "RATE_LIMITED"


class TooManyAttemptsError(RateLimitedError):
    """Failed-login threshold reached for the requesting IP address."""

    default_code = "TOO_MANY_ATTEMPTS"

    def __init__(self, attempts: int):
        super().__init__(
            "Too many failed login attempts. Please try again later.",
            details={"failed_attempts": attempts},
        )
        self.attempts = attempts


class InternalError(ThreatCombatError):
    """Store or transport failure. Never reported as an auth failure."""

    status_code = 500
    default_code = "INTERNAL_ERROR"
