"""
Read-only view over a story's pages and choices.

Pages are addressed canonically by ordinal; the stable page id is accepted
wherever a position is expected. Graph validation runs once, when a story is
published, never on the read path.
"""
import logging
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storybot.database.models import PAGE_TYPES, Story, StoryChoice, StoryPage
from storybot.services.errors import (
    ChoiceNotFound,
    InvariantViolation,
    PageNotFound,
    StoryNotFound,
)

logger = logging.getLogger(__name__)

Position = Union[int, str]


def build_graph(pages: Iterable[StoryPage], choices: Iterable[StoryChoice]) -> Dict[str, List[str]]:
    """Adjacency by page id: choice edges, or the auto-advance edge when a page has none."""
    pages = list(pages)
    by_ordinal = {page.ordinal: page for page in pages}
    graph: Dict[str, List[str]] = {page.id: [] for page in pages}
    for choice in choices:
        if choice.from_page_id in graph:
            graph[choice.from_page_id].append(choice.to_page_id)
    for page in pages:
        if not graph[page.id] and not page.is_ending:
            following = by_ordinal.get(page.ordinal + 1)
            if following is not None:
                graph[page.id].append(following.id)
    return graph


def traverse_from(start_page_id: str, graph: Dict[str, List[str]]) -> set:
    if start_page_id not in graph:
        return set()
    visited = set()
    stack = [start_page_id]
    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        stack.extend(graph.get(current, []))
    return visited


def find_graph_problems(pages: Iterable[StoryPage], choices: Iterable[StoryChoice]) -> List[str]:
    """Return every publish-time problem found in a story graph (empty when valid)."""
    pages = list(pages)
    choices = list(choices)
    problems: List[str] = []
    pages_by_id = {page.id: page for page in pages}
    by_ordinal = {page.ordinal: page for page in pages}

    if not pages:
        return ["story has no pages"]

    starts = [page for page in pages if page.is_starting]
    if not starts:
        problems.append("no starting page")
    elif len(starts) > 1:
        ordinals = ", ".join(str(page.ordinal) for page in starts)
        problems.append(f"multiple starting pages: {ordinals}")

    if len(by_ordinal) != len(pages):
        problems.append("duplicate page ordinals")

    outgoing: Dict[str, int] = {page.id: 0 for page in pages}
    for choice in choices:
        if choice.from_page_id not in pages_by_id:
            problems.append(f"choice {choice.id} leaves a page outside the story")
            continue
        outgoing[choice.from_page_id] += 1
        destination = pages_by_id.get(choice.to_page_id)
        if destination is None:
            problems.append(f"choice {choice.id} points to missing page {choice.to_page_id}")
        elif destination.ordinal != choice.target_ordinal:
            problems.append(
                f"choice {choice.id} targets page {choice.to_page_id} (ordinal {destination.ordinal}) "
                f"but records ordinal {choice.target_ordinal}"
            )
        if (choice.cost or 0) < 0:
            problems.append(f"choice {choice.id} has negative cost")
        if (choice.cost or 0) > 0 and not choice.is_premium:
            problems.append(f"choice {choice.id} has a cost but is not premium")

    for page in pages:
        if page.page_type not in PAGE_TYPES:
            problems.append(f"page {page.ordinal} has unknown type {page.page_type!r}")
        if page.is_ending and outgoing[page.id]:
            problems.append(f"ending page {page.ordinal} has outgoing choices")
        if not page.is_ending and not outgoing[page.id] and page.ordinal + 1 not in by_ordinal:
            problems.append(f"page {page.ordinal} is a dead end: no choices, no next page, not an ending")

    if len(starts) == 1:
        reached = traverse_from(starts[0].id, build_graph(pages, choices))
        unreachable = sorted(page.ordinal for page in pages if page.id not in reached)
        if unreachable:
            problems.append(f"pages unreachable from the start: {unreachable}")

    return problems


class StoryGraphService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_story(self, story_id: str, *, published_only: bool = True) -> Story:
        story = await self.session.get(Story, story_id)
        if not story or (published_only and not story.is_published):
            raise StoryNotFound(story_id)
        return story

    async def list_published_stories(self) -> List[Story]:
        stmt = select(Story).where(Story.is_published.is_(True)).order_by(Story.title)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_start_page(self, story_id: str) -> StoryPage:
        stmt = select(StoryPage).where(
            StoryPage.story_id == story_id,
            StoryPage.is_starting.is_(True),
        )
        result = await self.session.execute(stmt)
        starts = result.scalars().all()
        if not starts:
            raise PageNotFound(story_id, "start")
        if len(starts) > 1:
            logger.error(f"Story {story_id} has {len(starts)} starting pages")
            raise InvariantViolation(f"Story {story_id} has more than one starting page")
        return starts[0]

    async def get_page(self, story_id: str, position: Position) -> StoryPage:
        """Resolve a page by ordinal (int) or by stable id (str)."""
        if isinstance(position, bool) or not isinstance(position, (int, str)):
            raise PageNotFound(story_id, position)
        if isinstance(position, int):
            stmt = select(StoryPage).where(
                StoryPage.story_id == story_id,
                StoryPage.ordinal == position,
            )
        else:
            stmt = select(StoryPage).where(
                StoryPage.story_id == story_id,
                StoryPage.id == position,
            )
        result = await self.session.execute(stmt)
        page = result.scalar_one_or_none()
        if not page:
            raise PageNotFound(story_id, position)
        return page

    async def get_choice(self, choice_id: str) -> StoryChoice:
        choice = await self.session.get(StoryChoice, choice_id)
        if not choice:
            raise ChoiceNotFound(choice_id)
        return choice

    async def get_outgoing_choices(self, page_id: str) -> List[StoryChoice]:
        stmt = (
            select(StoryChoice)
            .where(StoryChoice.from_page_id == page_id)
            .order_by(StoryChoice.position, StoryChoice.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_auto_advance_target(self, page_id: str) -> Optional[StoryPage]:
        page = await self.session.get(StoryPage, page_id)
        if not page:
            raise PageNotFound(None, page_id)
        stmt = select(StoryPage).where(
            StoryPage.story_id == page.story_id,
            StoryPage.ordinal == page.ordinal + 1,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def validate_story(self, story_id: str) -> List[str]:
        await self.get_story(story_id, published_only=False)
        pages = (
            await self.session.execute(select(StoryPage).where(StoryPage.story_id == story_id))
        ).scalars().all()
        choices = (
            await self.session.execute(select(StoryChoice).where(StoryChoice.story_id == story_id))
        ).scalars().all()
        return find_graph_problems(pages, choices)

    async def publish_story(self, story_id: str) -> Story:
        """Validate the graph and mark the story readable. Raises ``InvariantViolation``."""
        story = await self.get_story(story_id, published_only=False)
        problems = await self.validate_story(story_id)
        if problems:
            logger.error(f"Story {story_id} failed validation: {'; '.join(problems)}")
            raise InvariantViolation(f"Story {story_id} failed validation", problems)
        story.is_published = True
        await self.session.commit()
        logger.info(f"Story {story_id} published")
        return story
