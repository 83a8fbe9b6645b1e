"""
User Management Service

Business logic for member administration: listing, profile updates,
membership status, executive promotion and role assignment.

Every operation takes the acting principal explicitly and checks chapter
scope before touching the target.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from threatcombat.api.access.rbac import (
    VOUCHED_ROLES,
    Principal,
    Role,
    can_assign_role,
    ensure_chapter_scope,
    ensure_user_management_scope,
    has_cross_chapter_access,
    is_executive_or_higher,
    same_chapter,
)
from threatcombat.api.chapters.service import (
    ChapterService,
    seat_executive,
    unseat_executive,
)
from threatcombat.api.db.models import (
    Chapter,
    ExecutivePosition,
    ExecutiveTerm,
    MembershipStatus,
    User,
)
from threatcombat.api.errors import (
    ConflictError,
    CrossChapterError,
    InsufficientRoleError,
    InvalidTargetRoleError,
    MissingFieldError,
    NotFoundError,
    SelfModificationError,
    ValidationError,
)
from threatcombat.api.services.notifications import NotificationKind, NotificationOutbox
from threatcombat.api.users.schemas import ProfileUpdateRequest, UserUpdateRequest

logger = logging.getLogger(__name__)


PROFILE_FIELDS = ("name", "bio", "phone")


def _is_self(actor: Principal, target: User) -> bool:
    return str(actor.id) == str(target.id)


class UserService:
    """User administration service."""

    def __init__(self, db: AsyncSession, outbox: Optional[NotificationOutbox] = None):
        self.db = db
        self.outbox = outbox

    # ==================== LOOKUPS ====================

    async def get_by_id(self, user_id: UUID) -> User:
        user = await self.db.get(User, user_id)
        if not user:
            raise NotFoundError("User", user_id)
        return user

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.email == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def list_users(
        self,
        actor: Principal,
        role: Optional[Role] = None,
        chapter_id: Optional[UUID] = None,
        status: Optional[MembershipStatus] = None,
        search: Optional[str] = None,
    ) -> List[User]:
        """List users. Chapter admins only ever see their own chapter."""
        query = select(User)

        if actor.role == Role.SUPER_ADMIN:
            if chapter_id:
                query = query.where(User.chapter_id == chapter_id)
        else:
            query = query.where(User.chapter_id == actor.chapter_id)

        if role:
            query = query.where(User.role == role)
        if status:
            query = query.where(User.membership_status == status)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

        result = await self.db.execute(query.order_by(User.created_at.desc()))
        return list(result.scalars().all())

    async def user_stats(self, actor: Principal, chapter_id: Optional[UUID] = None) -> dict:
        """
        Counts by status and role.

        Raises:
            CrossChapterError: chapter admin asked for another chapter
        """
        query = select(User.membership_status, User.role, func.count(User.id))

        if actor.role == Role.CHAPTER_ADMIN:
            if chapter_id and not same_chapter(chapter_id, actor.chapter_id):
                raise CrossChapterError("Not authorized to view stats for other chapters")
            query = query.where(User.chapter_id == actor.chapter_id)
        elif chapter_id:
            query = query.where(User.chapter_id == chapter_id)

        result = await self.db.execute(query.group_by(User.membership_status, User.role))

        stats = {
            "total_users": 0,
            "active_users": 0,
            "pending_users": 0,
            "suspended_users": 0,
            "executives": 0,
            "chapter_admins": 0,
            "industry_partners": 0,
        }
        for status, role, count in result.all():
            stats["total_users"] += count
            if status == MembershipStatus.ACTIVE:
                stats["active_users"] += count
            elif status == MembershipStatus.PENDING:
                stats["pending_users"] += count
            elif status == MembershipStatus.SUSPENDED:
                stats["suspended_users"] += count

            if role == Role.EXECUTIVE:
                stats["executives"] += count
            elif role == Role.CHAPTER_ADMIN:
                stats["chapter_admins"] += count
            elif role == Role.INDUSTRY_PARTNER:
                stats["industry_partners"] += count

        return stats

    async def get_user(self, actor: Principal, user_id: UUID) -> User:
        """A user may view themselves; admins may view users in scope."""
        user = await self.get_by_id(user_id)
        if not _is_self(actor, user):
            ensure_user_management_scope(actor, user)
        return user

    async def chapter_members(self, actor: Principal, chapter_id: UUID) -> List[User]:
        if not has_cross_chapter_access(actor.role):
            ensure_chapter_scope(actor, chapter_id)

        chapter = await self.db.get(Chapter, chapter_id)
        if not chapter:
            raise NotFoundError("Chapter", chapter_id)

        result = await self.db.execute(
            select(User).where(User.chapter_id == chapter_id).order_by(User.name)
        )
        return list(result.scalars().all())

    async def directory(
        self,
        chapter_id: Optional[UUID] = None,
        search: Optional[str] = None,
    ) -> List[User]:
        """Active members of every chapter, for partners and global staff."""
        query = select(User).where(
            User.membership_status == MembershipStatus.ACTIVE,
            User.chapter_id.is_not(None),
        )
        if chapter_id:
            query = query.where(User.chapter_id == chapter_id)
        if search:
            query = query.where(User.name.ilike(f"%{search}%"))

        result = await self.db.execute(query.order_by(User.name))
        return list(result.scalars().all())

    # ==================== PROFILE ====================

    async def update_profile(self, user: User, data: ProfileUpdateRequest) -> User:
        update_data = data.model_dump(exclude_unset=True)
        for field in PROFILE_FIELDS:
            if field in update_data:
                setattr(user, field, update_data[field])

        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def update_user(self, actor: Principal, user_id: UUID, data: UserUpdateRequest) -> User:
        """
        Update a user.

        Users may change their own profile fields. Administrators in scope
        may also change the membership status of other users.
        """
        user = await self.get_by_id(user_id)
        update_data = data.model_dump(exclude_unset=True)

        if _is_self(actor, user):
            if "membership_status" in update_data:
                raise SelfModificationError("You cannot change your own membership status")
        else:
            ensure_user_management_scope(actor, user)
            if "membership_status" in update_data:
                user.membership_status = update_data["membership_status"]

        for field in PROFILE_FIELDS:
            if field in update_data:
                setattr(user, field, update_data[field])

        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def delete_user(self, actor: Principal, user_id: UUID) -> User:
        user = await self.get_by_id(user_id)
        if _is_self(actor, user):
            raise SelfModificationError("You cannot delete your own account")
        ensure_user_management_scope(actor, user)

        chapter_id = user.chapter_id
        await self.db.execute(delete(ExecutiveTerm).where(ExecutiveTerm.user_id == user.id))
        await self.db.delete(user)
        await self.db.flush()
        await ChapterService(self.db).refresh_member_count(chapter_id)
        await self.db.commit()

        logger.warning("User %s deleted by %s", user.id, actor.id)
        return user

    # ==================== MEMBERSHIP ====================

    async def activate(self, actor: Principal, user_id: UUID) -> User:
        user = await self.get_by_id(user_id)
        if _is_self(actor, user):
            raise SelfModificationError("You cannot change your own membership status")
        ensure_user_management_scope(actor, user)

        user.membership_status = MembershipStatus.ACTIVE
        await self.db.commit()
        await self.db.refresh(user)

        await self._notify(
            NotificationKind.ACCOUNT_ACTIVATION,
            user,
            activated_by=getattr(actor, "name", None),
        )
        return user

    async def suspend(self, actor: Principal, user_id: UUID, reason: Optional[str] = None) -> User:
        user = await self.get_by_id(user_id)
        if _is_self(actor, user):
            raise SelfModificationError("You cannot suspend your own account")
        ensure_user_management_scope(actor, user)

        user.membership_status = MembershipStatus.SUSPENDED
        await self.db.commit()
        await self.db.refresh(user)

        await self._notify(NotificationKind.ACCOUNT_SUSPENSION, user, reason=reason)
        return user

    # ==================== EXECUTIVES ====================

    async def promote_to_executive(
        self,
        actor: Principal,
        user_id: UUID,
        position: Optional[ExecutivePosition],
        term: Optional[str],
    ) -> User:
        """
        Promote a member to an executive position.

        Raises:
            MissingFieldError: position or term absent
            CrossChapterError: target outside the actor's chapter
            InvalidTargetRoleError: target is an administrator
            ConflictError: position already occupied
        """
        if not position:
            raise MissingFieldError("position", "Position and term are required")
        if not term or not term.strip():
            raise MissingFieldError("term", "Position and term are required")

        user = await self.get_by_id(user_id)
        if _is_self(actor, user):
            raise SelfModificationError("You cannot change your own role")
        ensure_user_management_scope(actor, user)

        if user.role not in (Role.MEMBER, Role.EXECUTIVE):
            raise InvalidTargetRoleError("Only members can be promoted to executive")
        if user.chapter_id is None:
            raise ValidationError("User must belong to a chapter")

        chapter = await self.db.get(Chapter, user.chapter_id)
        if not chapter:
            raise NotFoundError("Chapter", user.chapter_id)

        seat_executive(chapter, user, position, term.strip())

        await self.db.commit()
        await self.db.refresh(user)

        logger.info("User %s promoted to %s by %s", user.id, position.value, actor.id)
        return user

    async def demote_from_executive(self, actor: Principal, user_id: UUID) -> User:
        user = await self.get_by_id(user_id)
        if _is_self(actor, user):
            raise SelfModificationError("You cannot change your own role")
        ensure_user_management_scope(actor, user)

        if user.role != Role.EXECUTIVE:
            raise InvalidTargetRoleError("User is not an executive")

        chapter = None
        if user.chapter_id is not None:
            chapter = await self.db.get(Chapter, user.chapter_id)
        unseat_executive(chapter, user)

        await self.db.commit()
        await self.db.refresh(user)

        logger.info("User %s demoted to member by %s", user.id, actor.id)
        return user

    # ==================== ROLE ASSIGNMENT ====================

    async def assign_admin_role(
        self,
        actor: Principal,
        email: str,
        new_role: Role,
        chapter_id: Optional[UUID] = None,
    ) -> User:
        """
        Assign an administrative or executive role to a user.

        super_admin may grant chapter_admin, super_admin or executive;
        chapter_admin may grant executive inside their own chapter. Only an
        industry partner can become a super admin.

        Raises:
            InsufficientRoleError: actor is not an administrator
            InvalidTargetRoleError: role not grantable here
            NotFoundError: target or chapter missing
            SelfModificationError: actor targeted themselves
            MissingFieldError: chapter_id absent for chapter_admin
            CrossChapterError: target outside the required chapter
            ValidationError: executive target has no chapter
        """
        new_role = Role(new_role)
        actor_role = Role(actor.role)

        if actor_role not in (Role.SUPER_ADMIN, Role.CHAPTER_ADMIN):
            raise InsufficientRoleError("Access denied. Admin privileges required.")

        if not can_assign_role(actor_role, new_role):
            raise InvalidTargetRoleError(
                f"{actor_role.value} cannot assign the {new_role.value} role"
            )

        user = await self.get_by_email(email)
        if not user:
            raise NotFoundError("User")

        if _is_self(actor, user):
            raise SelfModificationError("You cannot change your own role")

        if new_role == Role.SUPER_ADMIN:
            if user.role != Role.INDUSTRY_PARTNER:
                raise InvalidTargetRoleError(
                    "Only industry partners can be promoted to super admin"
                )

        elif new_role == Role.CHAPTER_ADMIN:
            if not chapter_id:
                raise MissingFieldError("chapter_id", "Chapter is required for chapter admin role")
            if not same_chapter(user.chapter_id, chapter_id):
                raise CrossChapterError("User must belong to the chapter they will administer")
            chapter = await self.db.get(Chapter, chapter_id)
            if not chapter:
                raise NotFoundError("Chapter", chapter_id)

        elif new_role == Role.EXECUTIVE:
            if user.chapter_id is None:
                raise ValidationError("User must belong to a chapter to become an executive")
            if actor_role == Role.CHAPTER_ADMIN:
                if not same_chapter(actor.chapter_id, user.chapter_id):
                    raise CrossChapterError(
                        "You can only assign roles to users in your chapter"
                    )
                if user.role in (Role.CHAPTER_ADMIN, Role.SUPER_ADMIN):
                    raise InvalidTargetRoleError("You cannot change another administrator's role")

        previous_role = user.role
        user.role = new_role
        if new_role in VOUCHED_ROLES:
            user.membership_status = MembershipStatus.ACTIVE
            user.email_verified = True

        await self.db.commit()
        await self.db.refresh(user)

        logger.info(
            "Role of %s changed %s -> %s by %s",
            user.id, Role(previous_role).value, new_role.value, actor.id,
        )
        await self._notify_role(user, new_role)
        return user

    async def assign_executive_role(self, actor: Principal, user_id: UUID) -> User:
        """
        Chapter admin grants the executive role inside their chapter.

        Raises:
            InsufficientRoleError: actor is not a chapter admin
            NotFoundError: target missing
            SelfModificationError: actor targeted themselves
            CrossChapterError: target in another chapter
            ConflictError: target already executive or higher
        """
        if Role(actor.role) != Role.CHAPTER_ADMIN:
            raise InsufficientRoleError("Access denied. Chapter admin privileges required.")

        user = await self.get_by_id(user_id)
        if _is_self(actor, user):
            raise SelfModificationError("You cannot change your own role")
        if not same_chapter(actor.chapter_id, user.chapter_id):
            raise CrossChapterError("You can only assign roles to users in your chapter")
        if is_executive_or_higher(user.role):
            raise ConflictError("User already holds executive or higher role")

        user.role = Role.EXECUTIVE
        user.membership_status = MembershipStatus.ACTIVE
        user.email_verified = True

        await self.db.commit()
        await self.db.refresh(user)

        await self._notify_role(user, Role.EXECUTIVE)
        return user

    # ==================== NOTIFICATIONS ====================

    async def _notify(self, kind: NotificationKind, user: User, **payload) -> None:
        if self.outbox is None:
            return
        await self.outbox.send(kind, user.email, {"name": user.name, **payload})

    async def _notify_role(self, user: User, role: Role) -> None:
        chapter_name = None
        if user.chapter_id is not None:
            chapter = await self.db.get(Chapter, user.chapter_id)
            chapter_name = chapter.name if chapter else None
        await self._notify(
            NotificationKind.ROLE_ASSIGNMENT,
            user,
            role=role.value,
            chapter=chapter_name,
        )
