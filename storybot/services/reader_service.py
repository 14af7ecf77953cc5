"""
Request surface of the reading engine.

Each method corresponds to one client request and returns data ready to be
rendered, so a reader never needs a second round trip after a call.
"""
import logging
from typing import Any, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from storybot.services.choice_service import ChoiceResolutionService
from storybot.services.errors import AuthenticationRequired, ChoiceNotFound
from storybot.services.ledger_service import BalanceLedger
from storybot.services.progress_service import ProgressStore, ReaderIdentity
from storybot.services.story_graph import Position, StoryGraphService
from storybot.services.views import PageView, progress_to_dict, story_to_dict

logger = logging.getLogger(__name__)


class ReaderService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.graph = StoryGraphService(session)
        self.progress = ProgressStore(session)
        self.choices = ChoiceResolutionService(session)
        self.ledger = BalanceLedger(session)

    async def list_stories(self) -> List[Dict[str, Any]]:
        return [story_to_dict(story) for story in await self.graph.list_published_stories()]

    async def open_start(self, identity: ReaderIdentity, story_id: str) -> PageView:
        await self.graph.get_story(story_id)
        start = await self.graph.get_start_page(story_id)
        return await self.choices.build_view(identity, story_id, start)

    async def current_position(self, identity: ReaderIdentity, story_id: str) -> PageView:
        await self.graph.get_story(story_id)
        position = await self.progress.get_or_init_position(identity, story_id)
        page = await self.graph.get_page(story_id, position)
        progress = None
        if not identity.is_guest:
            progress = await self.progress.get_progress(identity.user_id, story_id)
        return await self.choices.build_view(identity, story_id, page, progress=progress)

    async def choose(
        self,
        identity: ReaderIdentity,
        story_id: str,
        choice_id: str,
        current_position: Position,
    ) -> PageView:
        return await self.choices.resolve_choice(identity, story_id, current_position, choice_id)

    async def take_choice(self, identity: ReaderIdentity, choice_id: str, current_position: Position) -> PageView:
        """Like :meth:`choose`, with the story taken from the choice itself."""
        choice = await self.graph.get_choice(choice_id)
        return await self.choose(identity, choice.story_id, choice_id, current_position)

    async def continue_reading(
        self,
        identity: ReaderIdentity,
        story_id: str,
        current_position: Position,
    ) -> PageView:
        """Follow the auto-advance link of a page that has no choices."""
        await self.graph.get_story(story_id)
        page = await self.graph.get_page(story_id, current_position)
        await self.choices.check_position(identity, story_id, page, "continue")
        if page.is_ending or await self.graph.get_outgoing_choices(page.id):
            raise ChoiceNotFound("continue", f"is not available on page {page.ordinal}")
        following = await self.graph.get_auto_advance_target(page.id)
        if following is None:
            raise ChoiceNotFound("continue", f"is not available on page {page.ordinal}")
        progress = await self.progress.advance(identity, story_id, following)
        return await self.choices.build_view(identity, story_id, following, progress=progress)

    async def reset(self, identity: ReaderIdentity, story_id: str) -> PageView:
        await self.graph.get_story(story_id)
        start = await self.progress.reset_to_start(identity, story_id)
        progress = None
        if not identity.is_guest:
            progress = await self.progress.get_progress(identity.user_id, story_id)
        return await self.choices.build_view(identity, story_id, start, progress=progress)

    async def toggle_bookmark(self, identity: ReaderIdentity, story_id: str) -> bool:
        await self.graph.get_story(story_id)
        return await self.progress.toggle_bookmark(identity, story_id)

    async def library(self, identity: ReaderIdentity, *, bookmarked_only: bool = False) -> List[Dict[str, Any]]:
        if identity.is_guest:
            raise AuthenticationRequired("see your library")
        entries = []
        for progress in await self.progress.list_progress(identity.user_id, bookmarked_only=bookmarked_only):
            entry = progress_to_dict(progress)
            entry["title"] = progress.story.title if progress.story else None
            entries.append(entry)
        return entries

    async def reading_stats(self, identity: ReaderIdentity) -> Dict[str, Any]:
        if identity.is_guest:
            raise AuthenticationRequired("see your reading stats")
        rows = await self.progress.list_progress(identity.user_id)
        return {
            "storiesStarted": len(rows),
            "storiesCompleted": sum(1 for row in rows if row.is_completed),
            "storiesBookmarked": sum(1 for row in rows if row.is_bookmarked),
            "pagesRead": sum(row.pages_read for row in rows),
            "choicesMade": sum(row.choices_made for row in rows),
            "premiumPathsOwned": await self.choices.count_owned_paths(identity.user_id),
            "balance": await self.ledger.get_balance(identity.user_id),
        }
