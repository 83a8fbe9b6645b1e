"""
Event Routes

API endpoints for chapter events. Listing is public; chapter officers
manage their own chapter's events and active members register.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from threatcombat.api.access.audit import AuditAction, AuditRecorder, AuditResource, audit_log
from threatcombat.api.auth.schemas import MessageResponse
from threatcombat.api.db.models import User
from threatcombat.api.db.session import get_db
from threatcombat.api.dependencies import (
    get_audit_recorder,
    require_active_membership,
    require_event_access,
)
from threatcombat.api.events.schemas import (
    EventCreateRequest,
    EventListResponse,
    EventResponse,
    EventUpdateRequest,
    RegistrationResponse,
)
from threatcombat.api.events.service import EventService


router = APIRouter()


def get_event_service(db: AsyncSession = Depends(get_db)) -> EventService:
    """Dependency to get event service."""
    return EventService(db)


# ==================== PUBLIC ====================


@router.get("/", response_model=EventListResponse, summary="List events")
async def list_events(
    chapter_id: Optional[UUID] = None,
    upcoming: bool = False,
    service: EventService = Depends(get_event_service),
) -> EventListResponse:
    events = await service.list_events(chapter_id, upcoming)
    return EventListResponse(
        count=len(events),
        events=[EventResponse.model_validate(e) for e in events],
    )


@router.get("/{event_id}", response_model=EventResponse, summary="Get event")
async def get_event(
    event_id: UUID,
    service: EventService = Depends(get_event_service),
) -> EventResponse:
    event = await service.get_event(event_id)
    return EventResponse.model_validate(event)


# ==================== MEMBERS ====================


@router.post("/{event_id}/register", response_model=EventResponse, summary="Register for event")
@audit_log(AuditAction.EVENT_REGISTER, AuditResource.EVENT, "event_id")
async def register_for_event(
    event_id: UUID,
    request: Request,
    current_user: User = Depends(require_active_membership),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: EventService = Depends(get_event_service),
) -> EventResponse:
    event = await service.register(current_user, event_id)
    return EventResponse.model_validate(event)


# ==================== MANAGEMENT ====================


@router.get(
    "/{event_id}/registrations",
    response_model=List[RegistrationResponse],
    summary="Event registrations",
)
async def event_registrations(
    event_id: UUID,
    current_user: User = Depends(require_event_access),
    service: EventService = Depends(get_event_service),
) -> List[RegistrationResponse]:
    registrations = await service.registrations(current_user, event_id)
    return [RegistrationResponse.model_validate(r) for r in registrations]


@router.post(
    "/",
    response_model=EventResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create event",
)
@audit_log(AuditAction.EVENT_CREATE, AuditResource.EVENT, success_status=201)
async def create_event(
    data: EventCreateRequest,
    request: Request,
    current_user: User = Depends(require_event_access),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: EventService = Depends(get_event_service),
) -> EventResponse:
    event = await service.create_event(current_user, data)
    return EventResponse.model_validate(event)


@router.patch("/{event_id}", response_model=EventResponse, summary="Update event")
@audit_log(AuditAction.EVENT_UPDATE, AuditResource.EVENT, "event_id")
async def update_event(
    event_id: UUID,
    data: EventUpdateRequest,
    request: Request,
    current_user: User = Depends(require_event_access),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: EventService = Depends(get_event_service),
) -> EventResponse:
    event = await service.update_event(current_user, event_id, data)
    return EventResponse.model_validate(event)


@router.delete("/{event_id}", response_model=MessageResponse, summary="Delete event")
@audit_log(AuditAction.EVENT_DELETE, AuditResource.EVENT, "event_id")
async def delete_event(
    event_id: UUID,
    request: Request,
    current_user: User = Depends(require_event_access),
    audit: AuditRecorder = Depends(get_audit_recorder),
    service: EventService = Depends(get_event_service),
) -> MessageResponse:
    await service.delete_event(current_user, event_id)
    return MessageResponse(message="Event deleted")
