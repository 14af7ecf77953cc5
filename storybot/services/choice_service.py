"""
Choice resolution: the single state transition of the reading engine.

A choice is validated against the reader's current page, paid for at most
once when premium, and only then is the reader's progress advanced. The
ledger commit always happens before the progress write, so a failure in
between leaves the reader "paid, not yet moved" and the same request can
simply be retried.
"""
import logging
from typing import Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storybot.database.models import ReadingProgress, StoryChoice, StoryPage
from storybot.services.errors import (
    AuthenticationRequired,
    ChoiceNotFound,
    ConcurrentPurchaseConflict,
    InsufficientBalance,
    InvariantViolation,
)
from storybot.services.ledger_service import BalanceLedger
from storybot.services.progress_service import ProgressStore, ReaderIdentity
from storybot.services.story_graph import Position, StoryGraphService
from storybot.services.views import PageView, progress_to_dict

logger = logging.getLogger(__name__)

MAX_PURCHASE_ATTEMPTS = 2
MAX_AUTO_ADVANCE_HOPS = 50


class ChoiceResolutionService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.graph = StoryGraphService(session)
        self.ledger = BalanceLedger(session)
        self.progress = ProgressStore(session)

    async def resolve_choice(
        self,
        identity: ReaderIdentity,
        story_id: str,
        current_position: Position,
        choice_id: str,
    ) -> PageView:
        await self.graph.get_story(story_id)
        page = await self.graph.get_page(story_id, current_position)
        await self.check_position(identity, story_id, page, choice_id)
        reachable = await self._pages_in_reach(page)
        choice = await self.graph.get_choice(choice_id)
        if choice.story_id != story_id or choice.from_page_id not in reachable:
            logger.warning(
                f"Choice {choice_id} rejected for story {story_id} at position {current_position!r}"
            )
            raise ChoiceNotFound(choice_id, f"is not available from page {current_position!r}")

        # Keep plain values: a rolled back purchase expires every loaded row
        is_premium = choice.is_premium
        cost = choice.cost or 0
        destination_id = choice.to_page_id

        purchase = None
        if is_premium:
            if identity.is_guest:
                raise AuthenticationRequired(choice_id=choice_id)
            already_owned = await self._ensure_owned(identity.user_id, story_id, choice_id, cost)
            purchase = {"cost": cost, "alreadyOwned": already_owned}

        destination = await self.graph.get_page(story_id, destination_id)
        progress = await self.progress.advance(identity, story_id, destination, choice_id=choice_id)

        reader = "guest" if identity.is_guest else f"user {identity.user_id}"
        logger.info(f"{reader} took choice {choice_id} in story {story_id} to page {destination.ordinal}")
        return await self.build_view(identity, story_id, destination, purchase=purchase, progress=progress)

    async def _ensure_owned(self, user_id: int, story_id: str, choice_id: str, cost: int) -> bool:
        """Make sure ``user_id`` owns the choice. Returns True if it was owned already."""
        for _ in range(MAX_PURCHASE_ATTEMPTS):
            if await self.ledger.has_purchased(user_id, choice_id):
                return True
            try:
                await self.ledger.purchase_path(user_id, story_id, choice_id, cost)
                return False
            except ConcurrentPurchaseConflict:
                logger.info(f"Concurrent purchase of {choice_id} by user {user_id}; re-reading ownership")
            except InsufficientBalance:
                # The balance may have gone to a concurrent purchase of this same path
                if await self.ledger.has_purchased(user_id, choice_id):
                    return True
                raise

        if await self.ledger.has_purchased(user_id, choice_id):
            return True
        logger.error(f"Purchase of {choice_id} by user {user_id} conflicted but no ownership row exists")
        raise InvariantViolation(f"Purchase conflict without ownership for choice {choice_id}")

    async def check_position(self, identity: ReaderIdentity, story_id: str, page: StoryPage, request: str) -> None:
        """Reject a position a signed-in reader's saved progress cannot be at.

        The saved page, or a page it auto-advances into, is accepted. So is the
        starting page, which a reader can always go back to. A reader without a
        saved row is on the starting page. Guests are not checked.
        """
        if identity.is_guest or page.is_starting:
            return
        saved = await self.progress.get_progress(identity.user_id, story_id)
        if saved is None:
            saved_page = await self.graph.get_start_page(story_id)
        elif saved.current_ordinal == page.ordinal:
            return
        else:
            saved_page = await self.graph.get_page(story_id, saved.current_ordinal)
        if page.id in await self._pages_in_reach(saved_page):
            return
        logger.warning(
            f"User {identity.user_id} sent page {page.ordinal} for story {story_id} "
            f"but is saved at page {saved_page.ordinal}"
        )
        raise ChoiceNotFound(request, f"is not available from page {page.ordinal}")

    async def _pages_in_reach(self, page: StoryPage) -> List[str]:
        """``page`` plus any pages it auto-advances through."""
        reachable = [page.id]
        for _ in range(MAX_AUTO_ADVANCE_HOPS):
            if page.is_ending or await self.graph.get_outgoing_choices(page.id):
                break
            page = await self.graph.get_auto_advance_target(page.id)
            if page is None:
                break
            reachable.append(page.id)
        return reachable

    async def owned_choice_ids(self, identity: ReaderIdentity, choices: Iterable[StoryChoice]) -> Optional[set]:
        if identity.is_guest:
            return None
        premium_ids = [choice.id for choice in choices if choice.is_premium]
        return await self.ledger.owned_choice_ids(identity.user_id, premium_ids)

    async def count_owned_paths(self, user_id: int) -> int:
        return await self.ledger.count_purchases(user_id)

    async def build_view(
        self,
        identity: ReaderIdentity,
        story_id: str,
        page: StoryPage,
        *,
        purchase: Optional[dict] = None,
        progress: Optional[ReadingProgress] = None,
    ) -> PageView:
        choices = await self.graph.get_outgoing_choices(page.id)
        has_next = False
        if not choices and not page.is_ending:
            has_next = await self.graph.get_auto_advance_target(page.id) is not None
        return PageView(
            story_id=story_id,
            page=page,
            choices=choices,
            owned_choice_ids=await self.owned_choice_ids(identity, choices),
            purchase=purchase,
            progress=progress_to_dict(progress) if progress else None,
            has_next=has_next,
        )
