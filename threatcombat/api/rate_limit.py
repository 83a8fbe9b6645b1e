"""
Rate Limiting

Per-address request limits using slowapi. Limits are kept in memory, so
they apply per process.

Every route shares the default limit. Credential routes carry tighter
limits of their own:
- /auth/login: brute force protection
- /auth/register: account farming
- /auth/forgot-password: reset mail flooding
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from threatcombat.api.access.audit import AuditAction, RequestInfo
from threatcombat.api.config import settings
from threatcombat.api.dependencies import get_audit_recorder

logger = logging.getLogger(__name__)


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.RATE_LIMIT_PER_MINUTE}/minute"],
    enabled=settings.RATE_LIMIT_ENABLED,
    strategy="fixed-window",
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Reject the request and record a security event."""
    info = RequestInfo.from_request(request)
    logger.warning("Rate limit exceeded for %s: %s", info.ip_address, exc.detail)

    await get_audit_recorder().record_security_event(
        AuditAction.RATE_LIMIT_EXCEEDED,
        request_info=info,
        details={"limit": str(exc.detail)},
        status_code=429,
    )

    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "code": "RATE_LIMITED",
            "message": "Too many requests from this IP, please try again later.",
        },
        headers={"Retry-After": "60"},
    )
