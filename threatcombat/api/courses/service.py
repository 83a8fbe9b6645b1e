"""
Course Service

Business logic for the training catalogue and member enrollment.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from threatcombat.api.access.rbac import Role
from threatcombat.api.courses.schemas import CourseCreateRequest, CourseUpdateRequest
from threatcombat.api.db.models import (
    Course,
    CourseCategory,
    CourseEnrollment,
    CourseLevel,
    CourseStatus,
    User,
)
from threatcombat.api.errors import ConflictError, InsufficientRoleError, NotFoundError

logger = logging.getLogger(__name__)


class CourseService:
    """Training course service."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get(self, course_id: UUID) -> Course:
        course = await self.db.get(Course, course_id)
        if not course:
            raise NotFoundError("Course", course_id)
        return course

    async def list_published(
        self,
        category: Optional[CourseCategory] = None,
        level: Optional[CourseLevel] = None,
    ) -> List[Course]:
        query = select(Course).where(Course.status == CourseStatus.PUBLISHED)
        if category:
            query = query.where(Course.category == category)
        if level:
            query = query.where(Course.level == level)

        result = await self.db.execute(query.order_by(Course.title))
        return list(result.scalars().all())

    async def get_published(self, course_id: UUID) -> Course:
        course = await self._get(course_id)
        if course.status != CourseStatus.PUBLISHED:
            raise NotFoundError("Course", course_id)
        return course

    async def list_managed(self, actor: User) -> List[Course]:
        """Super admins see the whole catalogue; instructors see their own courses."""
        query = select(Course)
        if actor.role != Role.SUPER_ADMIN:
            query = query.where(Course.instructor_id == actor.id)

        result = await self.db.execute(query.order_by(Course.created_at.desc()))
        return list(result.scalars().all())

    def _ensure_can_edit(self, actor: User, course: Course) -> None:
        if actor.role == Role.SUPER_ADMIN:
            return
        if course.instructor_id is None or str(course.instructor_id) != str(actor.id):
            raise InsufficientRoleError("Only the course instructor can change this course")

    async def create_course(self, actor: User, data: CourseCreateRequest) -> Course:
        course = Course(
            title=data.title.strip(),
            description=data.description,
            category=data.category,
            level=data.level,
            duration_hours=data.duration_hours,
            price=data.price,
            max_enrollment=data.max_enrollment,
            status=data.status,
            instructor_id=actor.id,
        )
        self.db.add(course)
        await self.db.commit()
        await self.db.refresh(course)

        logger.info("Course %s created by %s", course.id, actor.id)
        return course

    async def update_course(
        self,
        actor: User,
        course_id: UUID,
        data: CourseUpdateRequest,
    ) -> Course:
        course = await self._get(course_id)
        self._ensure_can_edit(actor, course)

        for field, value in data.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(course, field, value)

        await self.db.commit()
        await self.db.refresh(course)
        return course

    async def delete_course(self, actor: User, course_id: UUID) -> None:
        course = await self._get(course_id)
        self._ensure_can_edit(actor, course)

        await self.db.delete(course)
        await self.db.commit()
        logger.warning("Course %s deleted by %s", course_id, actor.id)

    async def enroll(self, user: User, course_id: UUID) -> Course:
        """
        Enroll a member in a published course.

        Raises:
            NotFoundError: course missing or not published
            ConflictError: already enrolled, or the course is full
        """
        course = await self.get_published(course_id)

        if course.is_enrolled(user.id):
            raise ConflictError("Already enrolled in this course")
        if course.is_full:
            raise ConflictError(
                "Course is full",
                details={"max_enrollment": course.max_enrollment},
            )

        course.enrollments.append(CourseEnrollment(user_id=user.id))
        await self.db.commit()
        await self.db.refresh(course)

        logger.info("User %s enrolled in course %s", user.id, course.id)
        return course
