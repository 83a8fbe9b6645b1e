"""Database module."""

from threatcombat.api.db.session import get_db, init_db, close_db
from threatcombat.api.db.models import (
    AuditLog,
    Base,
    Chapter,
    Course,
    Event,
    ExecutiveTerm,
    Research,
    User,
)

__all__ = [
    "get_db", "init_db", "close_db",
    "Base", "User", "Chapter", "ExecutiveTerm", "Research", "Event", "Course", "AuditLog",
]
