"""Outbound services."""

from threatcombat.api.services.notifications import (
    NotificationKind,
    NotificationOutbox,
    NotificationResult,
    Notifier,
)

__all__ = ["NotificationKind", "NotificationOutbox", "NotificationResult", "Notifier"]
