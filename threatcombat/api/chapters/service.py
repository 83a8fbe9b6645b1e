"""
Chapter Service

Business logic for chapters and their executive rosters.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from threatcombat.api.access.rbac import (
    Principal,
    Role,
    can_manage_chapter,
    ensure_chapter_scope,
    same_chapter,
)
from threatcombat.api.chapters.schemas import ChapterCreateRequest, ChapterUpdateRequest
from threatcombat.api.db.models import (
    Chapter,
    ChapterStatus,
    ExecutivePosition,
    ExecutiveTerm,
    MembershipStatus,
    User,
    normalize_university,
)
from threatcombat.api.errors import (
    ConflictError,
    InsufficientRoleError,
    InvalidTargetRoleError,
    NotFoundError,
    SelfModificationError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def open_executive_term(
    chapter: Chapter,
    user_id: UUID,
    position: ExecutivePosition,
    term: str,
) -> ExecutiveTerm:
    """
    Seat a user on the chapter roster.

    Raises:
        ConflictError: position already has an open entry
    """
    if chapter.open_term_for_position(position) is not None:
        raise ConflictError(
            "Position already occupied",
            details={"position": ExecutivePosition(position).value},
        )

    now = datetime.now(timezone.utc)
    current = chapter.open_term_for_user(user_id)
    if current is not None:
        current.close(now)

    entry = ExecutiveTerm(
        user_id=user_id,
        position=position,
        term=term,
        start_date=now,
    )
    chapter.executive_team.append(entry)
    return entry


def close_executive_terms(chapter: Chapter, user_id: UUID) -> int:
    """Close every open roster entry a user holds. Returns how many were closed."""
    closed = 0
    now = datetime.now(timezone.utc)
    for entry in chapter.executive_team:
        if entry.is_open and str(entry.user_id) == str(user_id):
            entry.close(now)
            closed += 1
    return closed


def seat_executive(
    chapter: Chapter,
    user: User,
    position: ExecutivePosition,
    term: str,
) -> ExecutiveTerm:
    """
    Give a member an executive seat, on the roster and on their record.

    Raises:
        InvalidTargetRoleError: user is neither member nor executive
        ConflictError: position already occupied
    """
    if user.role not in (Role.MEMBER, Role.EXECUTIVE):
        raise InvalidTargetRoleError("Only members can be promoted to executive")

    entry = open_executive_term(chapter, user.id, position, term)

    user.role = Role.EXECUTIVE
    user.executive_position = position
    user.executive_term = entry.term
    user.executive_start_date = entry.start_date
    user.executive_end_date = None
    return entry


def unseat_executive(chapter: Optional[Chapter], user: User) -> None:
    """End a user's executive seat and return them to member."""
    if chapter is not None:
        close_executive_terms(chapter, user.id)

    if user.role == Role.EXECUTIVE:
        user.role = Role.MEMBER
    if user.executive_position is not None and user.executive_end_date is None:
        user.executive_end_date = datetime.now(timezone.utc)


class ChapterService:
    """Chapter management service."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_chapter(self, chapter_id: UUID) -> Chapter:
        chapter = await self.db.get(Chapter, chapter_id)
        if not chapter:
            raise NotFoundError("Chapter", chapter_id)
        return chapter

    async def create_chapter(self, data: ChapterCreateRequest) -> Chapter:
        """
        Create a chapter.

        Raises:
            ConflictError: name already taken
        """
        existing = await self.db.execute(select(Chapter).where(Chapter.name == data.name))
        if existing.scalar_one_or_none():
            raise ConflictError("Chapter with this name already exists")

        chapter = Chapter(
            name=data.name,
            university=data.university,
            location=data.location,
            description=data.description,
            status=data.status,
        )
        self.db.add(chapter)
        await self.db.commit()
        await self.db.refresh(chapter)

        logger.info("Created chapter %s (%s)", chapter.name, chapter.id)
        return chapter

    async def list_chapters(
        self,
        status: Optional[ChapterStatus] = None,
        location: Optional[str] = None,
        university: Optional[str] = None,
    ) -> List[Chapter]:
        query = select(Chapter)
        if status:
            query = query.where(Chapter.status == status)
        if location:
            query = query.where(Chapter.location.ilike(f"%{location}%"))
        if university:
            query = query.where(Chapter.university.ilike(f"%{university}%"))

        result = await self.db.execute(query.order_by(Chapter.created_at.desc()))
        return list(result.scalars().all())

    async def active_chapters(self) -> List[Chapter]:
        result = await self.db.execute(
            select(Chapter)
            .where(Chapter.status == ChapterStatus.ACTIVE)
            .order_by(Chapter.name)
        )
        return list(result.scalars().all())

    async def chapters_by_location(self, location: str) -> List[Chapter]:
        result = await self.db.execute(
            select(Chapter)
            .where(
                Chapter.location.ilike(f"%{location}%"),
                Chapter.status == ChapterStatus.ACTIVE,
            )
            .order_by(Chapter.name)
        )
        return list(result.scalars().all())

    async def find_or_create_for_university(self, university: str, location: str) -> Chapter:
        """
        Chapter a new registrant joins.

        Matches the normalized university name exactly, preferring an active
        chapter over a pending one. Otherwise a pending chapter is created.
        """
        key = normalize_university(university)

        for status in (ChapterStatus.ACTIVE, ChapterStatus.PENDING):
            result = await self.db.execute(
                select(Chapter)
                .where(Chapter.university_key == key, Chapter.status == status)
                .order_by(Chapter.created_at)
                .limit(1)
            )
            chapter = result.scalar_one_or_none()
            if chapter:
                return chapter

        name = f"{university.strip()} Chapter"
        result = await self.db.execute(select(Chapter).where(Chapter.name == name))
        chapter = result.scalar_one_or_none()
        if chapter:
            return chapter

        chapter = Chapter(
            name=name,
            university=university.strip(),
            location=location.strip(),
            status=ChapterStatus.PENDING,
        )
        self.db.add(chapter)
        await self.db.flush()

        logger.info("Created pending chapter %s for new registrant", name)
        return chapter

    async def refresh_member_count(self, chapter_id: Optional[UUID]) -> None:
        if chapter_id is None:
            return
        chapter = await self.db.get(Chapter, chapter_id)
        if chapter is None:
            return
        result = await self.db.execute(
            select(func.count(User.id)).where(User.chapter_id == chapter_id)
        )
        chapter.member_count = result.scalar() or 0

    async def chapter_stats(self, chapter_id: UUID) -> dict:
        chapter = await self.get_chapter(chapter_id)

        result = await self.db.execute(
            select(User.membership_status, func.count(User.id))
            .where(User.chapter_id == chapter_id)
            .group_by(User.membership_status)
        )
        by_status = {status: count for status, count in result.all()}

        return {
            "chapter_id": chapter.id,
            "total_members": sum(by_status.values()),
            "active_members": by_status.get(MembershipStatus.ACTIVE, 0),
            "pending_members": by_status.get(MembershipStatus.PENDING, 0),
            "current_executives": len(chapter.current_executives),
            "total_executives": len(chapter.executive_team),
        }

    async def update_chapter(
        self,
        actor: Principal,
        chapter_id: UUID,
        data: ChapterUpdateRequest,
    ) -> Chapter:
        """
        Update a chapter inside the actor's scope.

        Raises:
            CrossChapterError: chapter outside the actor's scope
            InsufficientRoleError: non-admin tried to change the status
        """
        chapter = await self.get_chapter(chapter_id)
        ensure_chapter_scope(actor, chapter.id)

        update_data = data.model_dump(exclude_unset=True)
        if "status" in update_data and not can_manage_chapter(actor.role):
            raise InsufficientRoleError("Only administrators can change chapter status")

        if "name" in update_data and update_data["name"] != chapter.name:
            existing = await self.db.execute(
                select(Chapter).where(Chapter.name == update_data["name"])
            )
            if existing.scalar_one_or_none():
                raise ConflictError("Chapter with this name already exists")

        for field, value in update_data.items():
            setattr(chapter, field, value)

        await self.db.commit()
        await self.db.refresh(chapter)
        return chapter

    async def delete_chapter(self, chapter_id: UUID) -> Chapter:
        """
        Delete a chapter and its roster.

        Raises:
            ConflictError: chapter still has members
        """
        chapter = await self.get_chapter(chapter_id)

        result = await self.db.execute(
            select(func.count(User.id)).where(User.chapter_id == chapter_id)
        )
        if result.scalar():
            raise ConflictError("Chapter still has members; move or remove them first")

        await self.db.delete(chapter)
        await self.db.commit()

        logger.warning("Deleted chapter %s (%s)", chapter.name, chapter.id)
        return chapter

    async def add_executive(
        self,
        actor: Principal,
        chapter_id: UUID,
        user_id: UUID,
        position: ExecutivePosition,
        term: str,
    ) -> Chapter:
        """
        Seat a chapter member on the executive roster.

        The member becomes an executive, exactly as through promotion.

        Raises:
            CrossChapterError: chapter outside the actor's scope
            NotFoundError: chapter or user missing
            SelfModificationError: actor seated themselves
            ValidationError: user belongs to a different chapter
            InvalidTargetRoleError: user is an administrator or partner
            ConflictError: position occupied
        """
        chapter = await self.get_chapter(chapter_id)
        ensure_chapter_scope(actor, chapter.id)

        user = await self.db.get(User, user_id)
        if not user:
            raise NotFoundError("User", user_id)
        if str(user.id) == str(actor.id):
            raise SelfModificationError("You cannot change your own role")
        if not same_chapter(user.chapter_id, chapter.id):
            raise ValidationError("User is not a member of this chapter")

        seat_executive(chapter, user, position, term)
        await self.db.commit()
        await self.db.refresh(chapter)

        logger.info("User %s seated as %s in %s", user.id, position.value, chapter.id)
        return chapter

    async def remove_executive(
        self,
        actor: Principal,
        chapter_id: UUID,
        term_id: int,
    ) -> Chapter:
        """End a roster entry's term. Its holder goes back to member."""
        chapter = await self.get_chapter(chapter_id)
        ensure_chapter_scope(actor, chapter.id)

        entry = next((e for e in chapter.executive_team if e.id == term_id), None)
        if entry is None:
            raise NotFoundError("Executive", term_id)

        if entry.is_open:
            holder = await self.db.get(User, entry.user_id)
            if holder is not None:
                unseat_executive(chapter, holder)
            else:
                entry.close()

        await self.db.commit()
        await self.db.refresh(chapter)
        return chapter
