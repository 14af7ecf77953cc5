"""
Reading position per (reader, story).

Authenticated readers get one ``ReadingProgress`` row per story; guests keep
their position in a ``GuestCache`` held by the client. Server state always
wins over a guest cache once a row exists.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storybot.database.models import ReadingProgress, StoryPage, UserChoice
from storybot.services.errors import AuthenticationRequired, PageNotFound
from storybot.services.guest_cache import GuestCache
from storybot.services.story_graph import Position, StoryGraphService

logger = logging.getLogger(__name__)


@dataclass
class ReaderIdentity:
    user_id: Optional[int] = None
    guest_cache: GuestCache = field(default_factory=GuestCache)

    @property
    def is_guest(self) -> bool:
        return self.user_id is None


class ProgressStore:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.graph = StoryGraphService(session)

    async def get_progress(self, user_id: int, story_id: str) -> Optional[ReadingProgress]:
        stmt = select(ReadingProgress).where(
            ReadingProgress.user_id == user_id,
            ReadingProgress.story_id == story_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_or_create_progress(self, user_id: int, story_id: str, page: StoryPage) -> ReadingProgress:
        """Return the unique row, creating it at ``page`` if missing."""
        progress = await self.get_progress(user_id, story_id)
        if progress:
            return progress

        progress = ReadingProgress(
            user_id=user_id,
            story_id=story_id,
            current_ordinal=page.ordinal,
            current_page_id=page.id,
            pages_read=0,
            choices_made=0,
        )
        self.session.add(progress)
        try:
            await self.session.commit()
        except IntegrityError:
            # A concurrent request created the row first
            await self.session.rollback()
            await self.session.refresh(page)
            progress = await self.get_progress(user_id, story_id)
            if progress is None:
                raise
            return progress
        await self.session.refresh(progress)
        logger.info(f"Reading progress created for user {user_id} in story {story_id}")
        return progress

    async def get_or_init_position(self, identity: ReaderIdentity, story_id: str) -> int:
        if identity.is_guest:
            cached = identity.guest_cache.get_position(story_id)
            if cached is not None:
                try:
                    page = await self.graph.get_page(story_id, cached)
                    return page.ordinal
                except PageNotFound:
                    logger.warning(f"Guest cache for story {story_id} points to missing page {cached}")
                    identity.guest_cache.discard(story_id)
            start = await self.graph.get_start_page(story_id)
            return start.ordinal

        progress = await self.get_progress(identity.user_id, story_id)
        if progress:
            return progress.current_ordinal
        start = await self.graph.get_start_page(story_id)
        progress = await self._get_or_create_progress(identity.user_id, story_id, start)
        return progress.current_ordinal

    async def save_position(self, identity: ReaderIdentity, story_id: str, position: Position) -> StoryPage:
        page = await self.graph.get_page(story_id, position)
        if identity.is_guest:
            identity.guest_cache.save(story_id, page.ordinal)
            return page

        progress = await self._get_or_create_progress(identity.user_id, story_id, page)
        progress.current_ordinal = page.ordinal
        progress.current_page_id = page.id
        progress.last_read_at = datetime.utcnow()
        await self.session.commit()
        return page

    async def advance(
        self,
        identity: ReaderIdentity,
        story_id: str,
        page: StoryPage,
        *,
        choice_id: str | None = None,
    ) -> Optional[ReadingProgress]:
        """Move the reader to ``page`` after a choice or an auto-advance."""
        if identity.is_guest:
            identity.guest_cache.save(story_id, page.ordinal)
            return None

        progress = await self._get_or_create_progress(identity.user_id, story_id, page)
        progress.current_ordinal = page.ordinal
        progress.current_page_id = page.id
        progress.last_read_at = datetime.utcnow()
        progress.pages_read = ReadingProgress.pages_read + 1
        if choice_id:
            progress.choices_made = ReadingProgress.choices_made + 1
            self.session.add(UserChoice(user_id=identity.user_id, story_id=story_id, choice_id=choice_id))
        if page.is_ending and not progress.is_completed:
            progress.is_completed = True
            progress.completed_at = datetime.utcnow()
            logger.info(f"User {identity.user_id} completed story {story_id}")
        await self.session.commit()
        await self.session.refresh(progress)
        return progress

    async def reset_to_start(self, identity: ReaderIdentity, story_id: str) -> StoryPage:
        """Send the reader back to the first page. Ownership is not touched."""
        start = await self.graph.get_start_page(story_id)
        if identity.is_guest:
            identity.guest_cache.save(story_id, start.ordinal)
            return start

        progress = await self._get_or_create_progress(identity.user_id, story_id, start)
        progress.current_ordinal = start.ordinal
        progress.current_page_id = start.id
        progress.is_completed = False
        progress.completed_at = None
        progress.last_read_at = datetime.utcnow()
        await self.session.commit()
        logger.info(f"User {identity.user_id} restarted story {story_id}")
        return start

    async def toggle_bookmark(self, identity: ReaderIdentity, story_id: str) -> bool:
        if identity.is_guest:
            raise AuthenticationRequired("bookmark stories")
        progress = await self.get_progress(identity.user_id, story_id)
        if progress is None:
            start = await self.graph.get_start_page(story_id)
            progress = await self._get_or_create_progress(identity.user_id, story_id, start)
        progress.is_bookmarked = not progress.is_bookmarked
        await self.session.commit()
        return progress.is_bookmarked

    async def bridge_guest_to_user(self, guest_cache: GuestCache, user_id: int, story_id: str) -> Optional[int]:
        """Seed the server row from a fresh guest entry unless a row already exists.

        Returns the reader's position after bridging, or None when there was
        nothing to carry over and no row exists yet.
        """
        existing = await self.get_progress(user_id, story_id)
        cached = guest_cache.get_position(story_id)
        guest_cache.discard(story_id)

        if existing:
            if cached is not None and cached != existing.current_ordinal:
                logger.info(
                    f"Keeping server position {existing.current_ordinal} over guest position "
                    f"{cached} for user {user_id} in story {story_id}"
                )
            return existing.current_ordinal

        if cached is None:
            return None

        try:
            page = await self.graph.get_page(story_id, cached)
        except PageNotFound:
            logger.warning(f"Discarding guest position {cached} for missing page in story {story_id}")
            return None

        progress = await self._get_or_create_progress(user_id, story_id, page)
        logger.info(f"Guest progress for story {story_id} carried over to user {user_id} at page {page.ordinal}")
        return progress.current_ordinal

    async def list_progress(self, user_id: int, *, bookmarked_only: bool = False) -> List[ReadingProgress]:
        stmt = select(ReadingProgress).where(ReadingProgress.user_id == user_id)
        if bookmarked_only:
            stmt = stmt.where(ReadingProgress.is_bookmarked.is_(True))
        stmt = stmt.order_by(ReadingProgress.last_read_at.desc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
