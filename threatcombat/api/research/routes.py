"""
Research Routes

API endpoints for research papers. Published papers are public; drafting
and publishing require research management rights.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from threatcombat.api.access.audit import AuditAction, AuditRecorder, AuditResource, audit_log
from threatcombat.api.auth.schemas import MessageResponse
from threatcombat.api.db.models import Research, User
from threatcombat.api.db.session import get_db
from threatcombat.api.dependencies import (
    get_audit_recorder,
    require_global_access,
    require_research_access,
)
from threatcombat.api.research.schemas import (
    ResearchCreateRequest,
    ResearchListResponse,
    ResearchResponse,
    ResearchUpdateRequest,
)
from threatcombat.api.research.service import ResearchService


router = APIRouter()


def get_research_service(db: AsyncSession = Depends(get_db)) -> ResearchService:
    """Dependency to get research service."""
    return ResearchService(db)


def _list(papers: List[Research]) -> ResearchListResponse:
    return ResearchListResponse(
        count=len(papers),
        research=[ResearchResponse.model_validate(r) for r in papers],
    )


# ==================== PUBLIC ====================


@router.get("/", response_model=ResearchListResponse, summary="Published research")
async def list_research(
    chapter_id: Optional[UUID] = None,
    search: Optional[str] = Query(None, max_length=100),
    service: ResearchService = Depends(get_research_service),
) -> ResearchListResponse:
    return _list(await service.list_published(chapter_id, search))


# ==================== AUTHORING ====================


@router.get("/drafts", response_model=ResearchListResponse, summary="Drafts awaiting review")
async def list_drafts(
    current_user: User = Depends(require_global_access),
    service: ResearchService = Depends(get_research_service),
) -> ResearchListResponse:
    """Every unpublished paper, across chapters."""
    return _list(await service.list_drafts())


@router.get("/mine", response_model=ResearchListResponse, summary="My research")
async def list_my_research(
    current_user: User = Depends(require_research_access),
    service: ResearchService = Depends(get_research_service),
) -> ResearchListResponse:
    return _list(await service.list_mine(current_user))


@router.get("/{research_id}", response_model=ResearchResponse, summary="Get research")
async def get_research(
    research_id: UUID,
    service: ResearchService = Depends(get_research_service),
) -> ResearchResponse:
    research = await service.get_published(research_id)
    return ResearchResponse.model_validate(research)


@router.post(
    "/",
    response_model=ResearchResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Draft research",
)
@audit_log(AuditAction.RESEARCH_CREATE, AuditResource.RESEARCH, success_status=201)
async def create_research(
    data: ResearchCreateRequest,
    request: Request,
    current_user: User = Depends(require_research_access),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: ResearchService = Depends(get_research_service),
) -> ResearchResponse:
    research = await service.create(current_user, data)
    return ResearchResponse.model_validate(research)


@router.patch("/{research_id}", response_model=ResearchResponse, summary="Update research")
@audit_log(AuditAction.RESEARCH_UPDATE, AuditResource.RESEARCH, "research_id")
async def update_research(
    research_id: UUID,
    data: ResearchUpdateRequest,
    request: Request,
    current_user: User = Depends(require_research_access),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: ResearchService = Depends(get_research_service),
) -> ResearchResponse:
    """Authors edit their own papers; chapter officers edit their chapter's."""
    research = await service.update(current_user, research_id, data)
    return ResearchResponse.model_validate(research)


@router.post(
    "/{research_id}/publish",
    response_model=ResearchResponse,
    summary="Publish research",
)
@audit_log(AuditAction.RESEARCH_PUBLISH, AuditResource.RESEARCH, "research_id")
async def publish_research(
    research_id: UUID,
    request: Request,
    current_user: User = Depends(require_research_access),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: ResearchService = Depends(get_research_service),
) -> ResearchResponse:
    research = await service.publish(current_user, research_id)
    return ResearchResponse.model_validate(research)


@router.delete("/{research_id}", response_model=MessageResponse, summary="Delete research")
@audit_log(AuditAction.RESEARCH_DELETE, AuditResource.RESEARCH, "research_id")
async def delete_research(
    research_id: UUID,
    request: Request,
    current_user: User = Depends(require_research_access),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: ResearchService = Depends(get_research_service),
) -> MessageResponse:
    await service.delete(current_user, research_id)
    return MessageResponse(message="Research deleted")
