"""
Research Service

Business logic for research papers: drafting, review and publishing.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from threatcombat.api.access.rbac import Principal, ensure_chapter_scope
from threatcombat.api.db.models import Research, ResearchStatus, User
from threatcombat.api.errors import ConflictError, NotFoundError
from threatcombat.api.research.schemas import ResearchCreateRequest, ResearchUpdateRequest

logger = logging.getLogger(__name__)


class ResearchService:
    """Research publishing service."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get(self, research_id: UUID) -> Research:
        research = await self.db.get(Research, research_id)
        if not research:
            raise NotFoundError("Research", research_id)
        return research

    async def list_published(
        self,
        chapter_id: Optional[UUID] = None,
        search: Optional[str] = None,
    ) -> List[Research]:
        query = select(Research).where(Research.status == ResearchStatus.PUBLISHED)
        if chapter_id:
            query = query.where(Research.chapter_id == chapter_id)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(Research.title.ilike(pattern), Research.abstract.ilike(pattern))
            )

        result = await self.db.execute(query.order_by(Research.published_at.desc()))
        return list(result.scalars().all())

    async def get_published(self, research_id: UUID) -> Research:
        """Drafts are invisible to the public and look like missing papers."""
        research = await self._get(research_id)
        if research.status != ResearchStatus.PUBLISHED:
            raise NotFoundError("Research", research_id)
        return research

    async def list_drafts(self) -> List[Research]:
        result = await self.db.execute(
            select(Research)
            .where(Research.status == ResearchStatus.DRAFT)
            .order_by(Research.created_at)
        )
        return list(result.scalars().all())

    async def list_mine(self, author: User) -> List[Research]:
        result = await self.db.execute(
            select(Research)
            .where(Research.author_id == author.id)
            .order_by(Research.created_at.desc())
        )
        return list(result.scalars().all())

    def _ensure_can_edit(self, actor: Principal, research: Research) -> None:
        """
        Authors edit their own papers; chapter officers edit their chapter's.

        Raises:
            CrossChapterError: paper belongs to another chapter
            InsufficientRoleError: actor is neither author nor chapter officer
        """
        if research.author_id is not None and str(research.author_id) == str(actor.id):
            return
        ensure_chapter_scope(actor, research.chapter_id)

    async def create(self, author: User, data: ResearchCreateRequest) -> Research:
        research = Research(
            title=data.title.strip(),
            abstract=data.abstract.strip(),
            content=data.content,
            references=list(data.references),
            status=ResearchStatus.DRAFT,
            author_id=author.id,
            chapter_id=author.chapter_id,
        )
        self.db.add(research)
        await self.db.commit()
        await self.db.refresh(research)

        logger.info("Research %s drafted by %s", research.id, author.id)
        return research

    async def update(
        self,
        actor: User,
        research_id: UUID,
        data: ResearchUpdateRequest,
    ) -> Research:
        research = await self._get(research_id)
        self._ensure_can_edit(actor, research)

        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None:
                continue
            setattr(research, field, value.strip() if field in ("title", "abstract") else value)

        await self.db.commit()
        await self.db.refresh(research)
        return research

    async def publish(self, actor: User, research_id: UUID) -> Research:
        """
        Publish a draft.

        Raises:
            ConflictError: already published
        """
        research = await self._get(research_id)
        self._ensure_can_edit(actor, research)

        if research.status == ResearchStatus.PUBLISHED:
            raise ConflictError("Research is already published")

        research.status = ResearchStatus.PUBLISHED
        research.published_at = datetime.now(timezone.utc)
        await self.db.commit()
        await self.db.refresh(research)

        logger.info("Research %s published by %s", research.id, actor.id)
        return research

    async def delete(self, actor: User, research_id: UUID) -> None:
        research = await self._get(research_id)
        self._ensure_can_edit(actor, research)

        await self.db.delete(research)
        await self.db.commit()
        logger.warning("Research %s deleted by %s", research_id, actor.id)
