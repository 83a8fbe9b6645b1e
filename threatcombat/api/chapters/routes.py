"""
Chapter Routes

API endpoints for chapters and their executive rosters.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from threatcombat.api.access.audit import AuditAction, AuditRecorder, AuditResource, audit_log
from threatcombat.api.auth.schemas import MessageResponse
from threatcombat.api.chapters.schemas import (
    AddExecutiveRequest,
    ChapterCreateRequest,
    ChapterResponse,
    ChapterStatsResponse,
    ChapterUpdateRequest,
)
from threatcombat.api.chapters.service import ChapterService
from threatcombat.api.db.models import ChapterStatus, User
from threatcombat.api.db.session import get_db
from threatcombat.api.dependencies import (
    get_audit_recorder,
    get_current_user,
    require_executive,
    require_super_admin,
)


router = APIRouter()


def get_chapter_service(db: AsyncSession = Depends(get_db)) -> ChapterService:
    """Dependency to get chapter service."""
    return ChapterService(db)


# ==================== PUBLIC ====================


@router.get("/", response_model=List[ChapterResponse], summary="List chapters")
async def list_chapters(
    chapter_status: Optional[ChapterStatus] = Query(None, alias="status"),
    location: Optional[str] = None,
    university: Optional[str] = None,
    service: ChapterService = Depends(get_chapter_service),
) -> List[ChapterResponse]:
    chapters = await service.list_chapters(chapter_status, location, university)
    return [ChapterResponse.model_validate(c) for c in chapters]


@router.get("/active", response_model=List[ChapterResponse], summary="Active chapters")
async def active_chapters(
    service: ChapterService = Depends(get_chapter_service),
) -> List[ChapterResponse]:
    chapters = await service.active_chapters()
    return [ChapterResponse.model_validate(c) for c in chapters]


@router.get(
    "/location/{location}",
    response_model=List[ChapterResponse],
    summary="Active chapters by location",
)
async def chapters_by_location(
    location: str,
    service: ChapterService = Depends(get_chapter_service),
) -> List[ChapterResponse]:
    chapters = await service.chapters_by_location(location)
    return [ChapterResponse.model_validate(c) for c in chapters]


@router.get("/{chapter_id}", response_model=ChapterResponse, summary="Get chapter")
async def get_chapter(
    chapter_id: UUID,
    service: ChapterService = Depends(get_chapter_service),
) -> ChapterResponse:
    chapter = await service.get_chapter(chapter_id)
    return ChapterResponse.model_validate(chapter)


@router.get(
    "/{chapter_id}/stats",
    response_model=ChapterStatsResponse,
    summary="Chapter statistics",
)
async def chapter_stats(
    chapter_id: UUID,
    current_user: User = Depends(get_current_user),
    service: ChapterService = Depends(get_chapter_service),
) -> ChapterStatsResponse:
    stats = await service.chapter_stats(chapter_id)
    return ChapterStatsResponse(**stats)


# ==================== ADMINISTRATION ====================


@router.post(
    "/",
    response_model=ChapterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create chapter",
)
@audit_log(AuditAction.CHAPTER_CREATE, AuditResource.CHAPTER, success_status=201)
async def create_chapter(
    data: ChapterCreateRequest,
    request: Request,
    current_user: User = Depends(require_super_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: ChapterService = Depends(get_chapter_service),
) -> ChapterResponse:
    chapter = await service.create_chapter(data)
    return ChapterResponse.model_validate(chapter)


@router.patch("/{chapter_id}", response_model=ChapterResponse, summary="Update chapter")
@audit_log(AuditAction.CHAPTER_UPDATE, AuditResource.CHAPTER, "chapter_id")
async def update_chapter(
    chapter_id: UUID,
    data: ChapterUpdateRequest,
    request: Request,
    current_user: User = Depends(require_executive),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: ChapterService = Depends(get_chapter_service),
) -> ChapterResponse:
    """Executives and admins may update their own chapter."""
    chapter = await service.update_chapter(current_user, chapter_id, data)
    return ChapterResponse.model_validate(chapter)


@router.delete("/{chapter_id}", response_model=MessageResponse, summary="Delete chapter")
@audit_log(AuditAction.CHAPTER_DELETE, AuditResource.CHAPTER, "chapter_id")
async def delete_chapter(
    chapter_id: UUID,
    request: Request,
    current_user: User = Depends(require_super_admin),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: ChapterService = Depends(get_chapter_service),
) -> MessageResponse:
    await service.delete_chapter(chapter_id)
    return MessageResponse(message="Chapter deleted")


@router.post(
    "/{chapter_id}/executives",
    response_model=ChapterResponse,
    summary="Add executive member",
)
@audit_log(AuditAction.CHAPTER_UPDATE, AuditResource.CHAPTER, "chapter_id")
async def add_executive(
    chapter_id: UUID,
    data: AddExecutiveRequest,
    request: Request,
    current_user: User = Depends(require_executive),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: ChapterService = Depends(get_chapter_service),
) -> ChapterResponse:
    chapter = await service.add_executive(
        current_user, chapter_id, data.user_id, data.position, data.term
    )
    return ChapterResponse.model_validate(chapter)


@router.delete(
    "/{chapter_id}/executives/{term_id}",
    response_model=ChapterResponse,
    summary="Remove executive member",
)
@audit_log(AuditAction.CHAPTER_UPDATE, AuditResource.CHAPTER, "chapter_id")
async def remove_executive(
    chapter_id: UUID,
    term_id: int,
    request: Request,
    current_user: User = Depends(require_executive),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: ChapterService = Depends(get_chapter_service),
) -> ChapterResponse:
    chapter = await service.remove_executive(current_user, chapter_id, term_id)
    return ChapterResponse.model_validate(chapter)
