"""
SQLAlchemy ORM Models

Database models for the Threat Combat membership platform.
"""

import enum
import re
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
    inspect,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from threatcombat.api.access import rbac
from threatcombat.api.access.rbac import Role
from threatcombat.api.errors import ValidationError


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def _enum_column(enum_cls: type, length: int = 32) -> Enum:
    # Persist enum values ("super_admin"), not member names
    return Enum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
    )


JSONType = JSON().with_variant(JSONB(), "postgresql")


class MembershipStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class ChapterStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"


class ExecutivePosition(str, enum.Enum):
    PRESIDENT = "President"
    VICE_PRESIDENT = "Vice President"
    SECRETARY = "Secretary"
    TREASURER = "Treasurer"
    PUBLIC_RELATIONS_OFFICER = "Public Relations Officer"
    TECHNICAL_LEAD = "Technical Lead"
    RESEARCH_COORDINATOR = "Research Coordinator"


def normalize_university(name: str) -> str:
    """Key used to match free-text university names exactly."""
    return re.sub(r"\s+", " ", name).strip().casefold()


class Chapter(Base):
    """University chapter (club) model."""

    __tablename__ = "chapters"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    university: Mapped[str] = mapped_column(String(200), nullable=False)
    university_key: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    location: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[ChapterStatus] = mapped_column(
        _enum_column(ChapterStatus), default=ChapterStatus.PENDING, nullable=False
    )
    member_count: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    # Relationships
    executive_team: Mapped[list["ExecutiveTerm"]] = relationship(
        "ExecutiveTerm",
        back_populates="chapter",
        cascade="all, delete-orphan",
        order_by="ExecutiveTerm.id",
        lazy="selectin",
    )

    __table_args__ = (Index("ix_chapters_university_status", "university_key", "status"),)

    @property
    def current_executives(self) -> list["ExecutiveTerm"]:
        """Roster entries without an end date."""
        return [term for term in self.executive_team if term.is_open]

    def open_term_for_position(self, position: ExecutivePosition) -> Optional["ExecutiveTerm"]:
        for term in self.executive_team:
            if term.is_open and term.position == position:
                return term
        return None

    def open_term_for_user(self, user_id: uuid.UUID) -> Optional["ExecutiveTerm"]:
        for term in self.executive_team:
            if term.is_open and str(term.user_id) == str(user_id):
                return term
        return None

    def __repr__(self) -> str:
        return f"<Chapter {self.name} ({self.university})>"


@event.listens_for(Chapter.university, "set", retval=True)
def _sync_university_key(target: Chapter, value: str, oldvalue, initiator) -> str:
    if value is not None:
        target.university_key = normalize_university(value)
    return value


class ExecutiveTerm(Base):
    """One seat on a chapter's executive roster."""

    __tablename__ = "executive_terms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chapter_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[ExecutivePosition] = mapped_column(
        _enum_column(ExecutivePosition, length=40), nullable=False
    )
    term: Mapped[str] = mapped_column(String(20), nullable=False, default="2024-2025")
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    chapter: Mapped["Chapter"] = relationship("Chapter", back_populates="executive_team")

    @property
    def is_open(self) -> bool:
        return self.end_date is None

    def close(self, when: Optional[datetime] = None) -> None:
        if self.end_date is None:
            self.end_date = when or utcnow()

    def __repr__(self) -> str:
        return f"<ExecutiveTerm {self.position} user={self.user_id} open={self.is_open}>"


class User(Base):
    """Member account model."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[Role] = mapped_column(
        _enum_column(Role), default=Role.MEMBER, nullable=False
    )
    chapter_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("chapters.id"), index=True
    )
    university: Mapped[Optional[str]] = mapped_column(String(200))
    phone: Mapped[Optional[str]] = mapped_column(String(30))
    bio: Mapped[Optional[str]] = mapped_column(Text)

    membership_status: Mapped[MembershipStatus] = mapped_column(
        _enum_column(MembershipStatus), default=MembershipStatus.PENDING, nullable=False
    )

    # Executive position (closed by demotion)
    executive_position: Mapped[Optional[ExecutivePosition]] = mapped_column(
        _enum_column(ExecutivePosition, length=40)
    )
    executive_term: Mapped[Optional[str]] = mapped_column(String(20))
    executive_start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    executive_end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Verification and reset
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    email_verification_token: Mapped[Optional[str]] = mapped_column(String(128), index=True)
    email_verification_expires: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    password_reset_token: Mapped[Optional[str]] = mapped_column(String(128), index=True)
    password_reset_expires: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Activity
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    login_count: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (Index("ix_users_role_chapter", "role", "chapter_id"),)

    # Derived permissions
    @property
    def can_manage_chapter(self) -> bool:
        return rbac.can_manage_chapter(self.role)

    @property
    def can_manage_users(self) -> bool:
        return rbac.can_manage_users(self.role)

    @property
    def can_manage_research(self) -> bool:
        return rbac.can_manage_research(self.role)

    @property
    def can_manage_events(self) -> bool:
        return rbac.can_manage_events(self.role)

    @property
    def can_access_global_features(self) -> bool:
        return rbac.has_global_access(self.role)

    @property
    def is_active_member(self) -> bool:
        return self.membership_status == MembershipStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


@event.listens_for(User, "before_insert")
@event.listens_for(User, "before_update")
def _check_user_chapter(mapper, connection, target: User) -> None:
    role = Role(target.role or Role.MEMBER)
    if rbac.requires_chapter(role) and target.chapter_id is None:
        raise ValidationError(f"A chapter is required for role {role.value}")


# ============================================================
# Content: research, events, courses
# ============================================================


class ResearchStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


class CourseStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class CourseLevel(str, enum.Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class CourseCategory(str, enum.Enum):
    DFIR = "DFIR"
    MALWARE_ANALYSIS = "Malware Analysis"
    INCIDENT_RESPONSE = "Incident Response"
    MEMORY_FORENSICS = "Memory Forensics"
    NETWORK_FORENSICS = "Network Forensics"
    DIGITAL_FORENSICS = "Digital Forensics"
    THREAT_INTELLIGENCE = "Threat Intelligence"
    AI_IN_DFIR = "AI in DFIR"
    MOBILE_FORENSICS = "Mobile Forensics"
    CLOUD_FORENSICS = "Cloud Forensics"


class Research(Base):
    """Research paper written by community members."""

    __tablename__ = "research"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    abstract: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    references: Mapped[list] = mapped_column(JSONType, default=list)
    status: Mapped[ResearchStatus] = mapped_column(
        _enum_column(ResearchStatus), default=ResearchStatus.DRAFT, nullable=False
    )
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    author_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), index=True
    )
    # Author's chapter at the time of writing; None for global roles
    chapter_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("chapters.id", ondelete="SET NULL"), index=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (Index("ix_research_status_published", "status", "published_at"),)

    def __repr__(self) -> str:
        return f"<Research {self.title!r} ({self.status})>"


class Event(Base):
    """Chapter event."""

    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    location: Mapped[str] = mapped_column(String(300), nullable=False)
    capacity: Mapped[Optional[int]] = mapped_column(Integer)

    chapter_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL")
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    registrations: Mapped[list["EventRegistration"]] = relationship(
        "EventRegistration",
        cascade="all, delete-orphan",
        order_by="EventRegistration.id",
        lazy="selectin",
    )

    __table_args__ = (Index("ix_events_chapter_starts", "chapter_id", "starts_at"),)

    @property
    def registered_count(self) -> int:
        return len(self.registrations)

    @property
    def is_full(self) -> bool:
        return self.capacity is not None and self.registered_count >= self.capacity

    def is_registered(self, user_id: uuid.UUID) -> bool:
        return any(str(r.user_id) == str(user_id) for r in self.registrations)

    def __repr__(self) -> str:
        return f"<Event {self.title!r} at {self.starts_at}>"


class EventRegistration(Base):
    __tablename__ = "event_registrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_event_registration"),)


class Course(Base):
    """Training course."""

    __tablename__ = "courses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[CourseCategory] = mapped_column(
        _enum_column(CourseCategory, length=40), nullable=False
    )
    level: Mapped[CourseLevel] = mapped_column(_enum_column(CourseLevel), nullable=False)
    duration_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    status: Mapped[CourseStatus] = mapped_column(
        _enum_column(CourseStatus), default=CourseStatus.DRAFT, nullable=False
    )
    max_enrollment: Mapped[Optional[int]] = mapped_column(Integer)

    instructor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), index=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    enrollments: Mapped[list["CourseEnrollment"]] = relationship(
        "CourseEnrollment",
        cascade="all, delete-orphan",
        order_by="CourseEnrollment.id",
        lazy="selectin",
    )

    __table_args__ = (Index("ix_courses_category_level", "category", "level"),)

    @property
    def enrollment_count(self) -> int:
        return len(self.enrollments)

    @property
    def is_full(self) -> bool:
        return self.max_enrollment is not None and self.enrollment_count >= self.max_enrollment

    def is_enrolled(self, user_id: uuid.UUID) -> bool:
        return any(str(e.user_id) == str(user_id) for e in self.enrollments)

    def __repr__(self) -> str:
        return f"<Course {self.title!r} ({self.status})>"


class CourseEnrollment(Base):
    __tablename__ = "course_enrollments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint("course_id", "user_id", name="uq_course_enrollment"),)


class AuditLog(Base):
    """Append-only audit trail entry."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Actor at the time of the action (nullable for anonymous requests)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    user_role: Mapped[Optional[str]] = mapped_column(String(32))
    user_chapter_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)

    action: Mapped[str] = mapped_column(String(40), nullable=False)
    resource: Mapped[str] = mapped_column(String(20), nullable=False)
    resource_id: Mapped[Optional[str]] = mapped_column(String(64))
    details: Mapped[dict] = mapped_column(JSONType, default=dict)

    # Request
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False, default="unknown")
    user_agent: Mapped[Optional[str]] = mapped_column(String(512))
    method: Mapped[Optional[str]] = mapped_column(String(10))
    url: Mapped[Optional[str]] = mapped_column(String(2048))
    status_code: Mapped[Optional[int]] = mapped_column(Integer)
    success: Mapped[bool] = mapped_column(Boolean, default=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer)

    # Triage
    risk_level: Mapped[str] = mapped_column(String(10), default="LOW", nullable=False)
    requires_review: Mapped[bool] = mapped_column(Boolean, default=False)
    review_status: Mapped[str] = mapped_column(String(12), default="PENDING", nullable=False)
    reviewer_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    review_notes: Mapped[Optional[str]] = mapped_column(Text)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )

    __table_args__ = (
        Index("ix_audit_user_created", "user_id", "created_at"),
        Index("ix_audit_action_created", "action", "created_at"),
        Index("ix_audit_resource", "resource", "resource_id"),
        Index("ix_audit_ip_created", "ip_address", "created_at"),
        Index("ix_audit_risk_review", "risk_level", "requires_review"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} {self.risk_level} ok={self.success}>"


REVIEW_COLUMNS = frozenset({"review_status", "reviewer_id", "review_notes", "reviewed_at"})


@event.listens_for(AuditLog, "before_update")
def _audit_log_is_append_only(mapper, connection, target: AuditLog) -> None:
    state = inspect(target)
    for attr in mapper.column_attrs:
        if attr.key in REVIEW_COLUMNS:
            continue
        if state.attrs[attr.key].history.has_changes():
            raise ValidationError(f"Audit entries are immutable: {attr.key} cannot change")
