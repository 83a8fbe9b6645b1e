"""
Course Routes

API endpoints for the training catalogue.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from threatcombat.api.access.audit import AuditAction, AuditRecorder, AuditResource, audit_log
from threatcombat.api.auth.schemas import MessageResponse
from threatcombat.api.courses.schemas import (
    CourseCreateRequest,
    CourseListResponse,
    CourseResponse,
    CourseUpdateRequest,
)
from threatcombat.api.courses.service import CourseService
from threatcombat.api.db.models import Course, CourseCategory, CourseLevel, User
from threatcombat.api.db.session import get_db
from threatcombat.api.dependencies import (
    get_audit_recorder,
    require_active_membership,
    require_course_access,
)


router = APIRouter()


def get_course_service(db: AsyncSession = Depends(get_db)) -> CourseService:
    """Dependency to get course service."""
    return CourseService(db)


def _list(courses: List[Course]) -> CourseListResponse:
    return CourseListResponse(
        count=len(courses),
        courses=[CourseResponse.model_validate(c) for c in courses],
    )


@router.get("/", response_model=CourseListResponse, summary="Course catalogue")
async def list_courses(
    category: Optional[CourseCategory] = None,
    level: Optional[CourseLevel] = None,
    service: CourseService = Depends(get_course_service),
) -> CourseListResponse:
    return _list(await service.list_published(category, level))


@router.get("/manage", response_model=CourseListResponse, summary="Courses I manage")
async def list_managed_courses(
    current_user: User = Depends(require_course_access),
    service: CourseService = Depends(get_course_service),
) -> CourseListResponse:
    return _list(await service.list_managed(current_user))


@router.get("/{course_id}", response_model=CourseResponse, summary="Get course")
async def get_course(
    course_id: UUID,
    service: CourseService = Depends(get_course_service),
) -> CourseResponse:
    course = await service.get_published(course_id)
    return CourseResponse.model_validate(course)


@router.post("/{course_id}/enroll", response_model=CourseResponse, summary="Enroll in course")
@audit_log(AuditAction.COURSE_ENROLL, AuditResource.COURSE, "course_id")
async def enroll_in_course(
    course_id: UUID,
    request: Request,
    current_user: User = Depends(require_active_membership),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: CourseService = Depends(get_course_service),
) -> CourseResponse:
    course = await service.enroll(current_user, course_id)
    return CourseResponse.model_validate(course)


@router.post(
    "/",
    response_model=CourseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create course",
)
@audit_log(AuditAction.COURSE_CREATE, AuditResource.COURSE, success_status=201)
async def create_course(
    data: CourseCreateRequest,
    request: Request,
    current_user: User = Depends(require_course_access),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: CourseService = Depends(get_course_service),
) -> CourseResponse:
    """The creator becomes the course instructor."""
    course = await service.create_course(current_user, data)
    return CourseResponse.model_validate(course)


@router.patch("/{course_id}", response_model=CourseResponse, summary="Update course")
@audit_log(AuditAction.COURSE_UPDATE, AuditResource.COURSE, "course_id")
async def update_course(
    course_id: UUID,
    data: CourseUpdateRequest,
    request: Request,
    current_user: User = Depends(require_course_access),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: CourseService = Depends(get_course_service),
) -> CourseResponse:
    course = await service.update_course(current_user, course_id, data)
    return CourseResponse.model_validate(course)


@router.delete("/{course_id}", response_model=MessageResponse, summary="Delete course")
@audit_log(AuditAction.COURSE_DELETE, AuditResource.COURSE, "course_id")
async def delete_course(
    course_id: UUID,
    request: Request,
    current_user: User = Depends(require_course_access),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: CourseService = Depends(get_course_service),
) -> MessageResponse:
    await service.delete_course(current_user, course_id)
    return MessageResponse(message="Course deleted")
