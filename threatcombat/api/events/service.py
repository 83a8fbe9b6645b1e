"""
Event Service

Business logic for chapter events and member registration.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from threatcombat.api.access.rbac import ensure_chapter_scope
from threatcombat.api.db.models import Chapter, Event, EventRegistration, User
from threatcombat.api.errors import (
    ConflictError,
    MissingFieldError,
    NotFoundError,
    ValidationError,
)
from threatcombat.api.events.schemas import EventCreateRequest, EventUpdateRequest

logger = logging.getLogger(__name__)


def _utc(moment: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored value is UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class EventService:
    """Chapter event service."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_event(self, event_id: UUID) -> Event:
        event = await self.db.get(Event, event_id)
        if not event:
            raise NotFoundError("Event", event_id)
        return event

    async def list_events(
        self,
        chapter_id: Optional[UUID] = None,
        upcoming: bool = False,
    ) -> List[Event]:
        query = select(Event)
        if chapter_id:
            query = query.where(Event.chapter_id == chapter_id)
        if upcoming:
            query = query.where(Event.starts_at >= datetime.now(timezone.utc))

        result = await self.db.execute(query.order_by(Event.starts_at))
        return list(result.scalars().all())

    async def create_event(self, actor: User, data: EventCreateRequest) -> Event:
        """
        Create an event for a chapter.

        Raises:
            MissingFieldError: no chapter given and the actor has none
            CrossChapterError: chapter is not the actor's own
            NotFoundError: chapter does not exist
        """
        chapter_id = data.chapter_id or actor.chapter_id
        if chapter_id is None:
            raise MissingFieldError("chapter_id")

        ensure_chapter_scope(actor, chapter_id)
        if await self.db.get(Chapter, chapter_id) is None:
            raise NotFoundError("Chapter", chapter_id)

        event = Event(
            title=data.title.strip(),
            description=data.description,
            starts_at=data.starts_at,
            location=data.location.strip(),
            capacity=data.capacity,
            chapter_id=chapter_id,
            created_by=actor.id,
        )
        self.db.add(event)
        await self.db.commit()
        await self.db.refresh(event)

        logger.info("Event %s created in %s by %s", event.id, chapter_id, actor.id)
        return event

    async def update_event(
        self,
        actor: User,
        event_id: UUID,
        data: EventUpdateRequest,
    ) -> Event:
        event = await self.get_event(event_id)
        ensure_chapter_scope(actor, event.chapter_id)

        updates = data.model_dump(exclude_unset=True)
        capacity = updates.get("capacity")
        if capacity is not None and capacity < event.registered_count:
            raise ValidationError(
                "Capacity cannot drop below the number of registrations",
                details={"registered": event.registered_count},
            )

        for field, value in updates.items():
            if value is not None or field == "capacity":
                setattr(event, field, value)

        await self.db.commit()
        await self.db.refresh(event)
        return event

    async def delete_event(self, actor: User, event_id: UUID) -> None:
        event = await self.get_event(event_id)
        ensure_chapter_scope(actor, event.chapter_id)

        await self.db.delete(event)
        await self.db.commit()
        logger.warning("Event %s deleted by %s", event_id, actor.id)

    async def register(self, user: User, event_id: UUID) -> Event:
        """
        Register a member for an event.

        Raises:
            ValidationError: event already started
            ConflictError: already registered, or the event is full
        """
        event = await self.get_event(event_id)

        if _utc(event.starts_at) <= datetime.now(timezone.utc):
            raise ValidationError("Registration is closed for past events")
        if event.is_registered(user.id):
            raise ConflictError("Already registered for this event")
        if event.is_full:
            raise ConflictError("Event is full", details={"capacity": event.capacity})

        event.registrations.append(EventRegistration(user_id=user.id))
        await self.db.commit()
        await self.db.refresh(event)

        logger.info("User %s registered for event %s", user.id, event.id)
        return event

    async def registrations(self, actor: User, event_id: UUID) -> List[EventRegistration]:
        event = await self.get_event(event_id)
        ensure_chapter_scope(actor, event.chapter_id)
        return list(event.registrations)
