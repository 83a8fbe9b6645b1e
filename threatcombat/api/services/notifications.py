"""
Notification Service
====================
Best-effort email delivery for account lifecycle events:
- Email verification on signup
- Password reset links
- Welcome, activation and suspension notices
- Role assignment notices

Delivery failures are reported in the result and logged, never raised.
Requests queue their notifications through the outbox so SMTP never
holds up a response.
"""

import logging
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import aiosmtplib
from fastapi import BackgroundTasks

from threatcombat.api.config import settings

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"
    WELCOME = "welcome"
    ACCOUNT_ACTIVATION = "account_activation"
    ACCOUNT_SUSPENSION = "account_suspension"
    ROLE_ASSIGNMENT = "role_assignment"


@dataclass
class NotificationResult:
    success: bool
    error: Optional[str] = None


ROLE_TITLES = {
    "super_admin": "Super Administrator",
    "chapter_admin": "Chapter Administrator",
    "executive": "Chapter Executive",
}


def render(kind: NotificationKind, payload: Dict[str, Any]) -> Tuple[str, str]:
    """Build (subject, plain text body) for a notification."""
    name = payload.get("name", "there")
    frontend = settings.FRONTEND_URL.rstrip("/")

    if kind == NotificationKind.EMAIL_VERIFICATION:
        link = f"{frontend}/verify-email?token={payload['token']}"
        return (
            "Verify Your Email - Threat Combat",
            f"Hi {name},\n\nConfirm your email address to finish joining "
            f"Threat Combat:\n{link}\n\nThis link expires in "
            f"{settings.EMAIL_VERIFICATION_EXPIRE_HOURS} hours.",
        )

    if kind == NotificationKind.PASSWORD_RESET:
        link = f"{frontend}/reset-password?token={payload['token']}"
        return (
            "Reset Your Password - Threat Combat",
            f"Hi {name},\n\nUse this link to choose a new password:\n{link}\n\n"
            f"It expires in {settings.PASSWORD_RESET_EXPIRE_HOURS} hour(s). "
            "If you did not ask for a reset, ignore this email.",
        )

    if kind == NotificationKind.WELCOME:
        chapter = payload.get("chapter") or "your chapter"
        return (
            "Welcome to Threat Combat!",
            f"Hi {name},\n\nYour email is verified. Welcome to {chapter}. "
            "A chapter administrator will activate your membership shortly.",
        )

    if kind == NotificationKind.ACCOUNT_ACTIVATION:
        return (
            "Account Activated - Threat Combat",
            f"Hi {name},\n\nYour membership was activated by "
            f"{payload.get('activated_by', 'an administrator')}. You can now log in.",
        )

    if kind == NotificationKind.ACCOUNT_SUSPENSION:
        reason = payload.get("reason") or "No reason given"
        return (
            "Account Suspended - Threat Combat",
            f"Hi {name},\n\nYour membership has been suspended.\nReason: {reason}",
        )

    if kind == NotificationKind.ROLE_ASSIGNMENT:
        title = ROLE_TITLES.get(payload.get("role", ""), payload.get("role", ""))
        chapter = payload.get("chapter")
        where = f" for {chapter}" if chapter else ""
        return (
            f"Role Assignment - {title}",
            f"Hi {name},\n\nYou have been assigned the role of {title}{where}.",
        )

    raise ValueError(f"Unknown notification kind: {kind}")


class Notifier:
    """Async email notifier over SMTP."""

    def __init__(self):
        self.smtp_host = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_user = settings.SMTP_USER
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.EMAIL_FROM
        self.from_name = settings.EMAIL_FROM_NAME

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_user and self.smtp_password)

    async def notify(
        self,
        kind: NotificationKind,
        recipient: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> NotificationResult:
        """Send one notification. Never raises."""
        kind = NotificationKind(kind)

        if not self.is_configured:
            logger.warning("Email not configured, skipping %s to %s", kind.value, recipient)
            return NotificationResult(success=False, error="Email service not configured")

        try:
            subject, text = render(kind, payload or {})

            message = MIMEMultipart("alternative")
            message["From"] = f"{self.from_name} <{self.from_email}>"
            message["To"] = recipient
            message["Subject"] = subject
            message.attach(MIMEText(text, "plain"))

            await aiosmtplib.send(
                message,
                hostname=self.smtp_host,
                port=self.smtp_port,
                username=self.smtp_user,
                password=self.smtp_password,
                start_tls=True,
            )

            logger.info("Sent %s email to %s", kind.value, recipient)
            return NotificationResult(success=True)

        except Exception as e:
            logger.error("Failed to send %s email to %s: %s", kind.value, recipient, e)
            return NotificationResult(success=False, error=str(e))


class NotificationOutbox:
    """
    Queues notifications to go out after the response is sent.

    Requests hand their notifications to FastAPI's BackgroundTasks. Without
    a task queue (scripts, direct service use) they are delivered inline.
    """

    def __init__(self, notifier: Notifier, background_tasks: Optional[BackgroundTasks] = None):
        self.notifier = notifier
        self.background_tasks = background_tasks

    async def send(self, kind: NotificationKind, recipient: str, payload: Dict[str, Any]) -> None:
        if self.background_tasks is not None:
            self.background_tasks.add_task(self.deliver, kind, recipient, payload)
        else:
            await self.deliver(kind, recipient, payload)

    async def deliver(
        self,
        kind: NotificationKind,
        recipient: str,
        payload: Dict[str, Any],
    ) -> NotificationResult:
        result = await self.notifier.notify(kind, recipient, payload)
        if not result.success:
            logger.warning(
                "%s notification to %s not delivered: %s",
                NotificationKind(kind).value, recipient, result.error,
            )
        return result
