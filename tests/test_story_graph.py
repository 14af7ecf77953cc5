"""Tests for the read-only story graph and its publish-time validation."""

from __future__ import annotations

import pytest

from storybot.database.models import Story, StoryChoice, StoryPage
from storybot.services.errors import (
    ChoiceNotFound,
    InvariantViolation,
    PageNotFound,
    StoryNotFound,
)
from storybot.services.story_graph import (
    StoryGraphService,
    build_graph,
    find_graph_problems,
    traverse_from,
)
from tests.fixtures.story_fixtures import (
    CELLAR,
    CLIMB,
    CELLAR_DOOR,
    DOOR,
    HALL,
    KNOCK,
    PICK_LOCK,
    STAIRS,
    STORY_ID,
)


def _page(ordinal: int, *, starting: bool = False, ending: bool = False, page_type: str = "story") -> StoryPage:
    return StoryPage(
        id=f"p{ordinal}",
        story_id="s",
        ordinal=ordinal,
        content=f"page {ordinal}",
        page_type=page_type,
        is_starting=starting,
        is_ending=ending,
    )


def _choice(source: int, target: int, *, premium: bool = False, cost: int = 0, target_ordinal: int | None = None) -> StoryChoice:
    return StoryChoice(
        id=f"c{source}-{target}",
        story_id="s",
        from_page_id=f"p{source}",
        to_page_id=f"p{target}",
        target_ordinal=target if target_ordinal is None else target_ordinal,
        text="go",
        is_premium=premium,
        cost=cost,
        position=0,
    )


class TestGraphValidation:
    def test_valid_graph_has_no_problems(self) -> None:
        pages = [_page(1, starting=True), _page(2, page_type="choice"), _page(3, ending=True), _page(4, ending=True)]
        choices = [_choice(2, 3), _choice(2, 4, premium=True, cost=3)]

        assert find_graph_problems(pages, choices) == []

    def test_empty_story(self) -> None:
        assert find_graph_problems([], []) == ["story has no pages"]

    def test_missing_start_page(self) -> None:
        problems = find_graph_problems([_page(1, ending=True)], [])

        assert "no starting page" in problems

    def test_multiple_start_pages(self) -> None:
        pages = [_page(1, starting=True), _page(2, starting=True, ending=True)]

        problems = find_graph_problems(pages, [])

        assert any("multiple starting pages" in problem for problem in problems)

    def test_ending_with_choices(self) -> None:
        pages = [_page(1, starting=True, ending=True), _page(2, ending=True)]

        problems = find_graph_problems(pages, [_choice(1, 2)])

        assert "ending page 1 has outgoing choices" in problems

    def test_dead_end(self) -> None:
        """A page with no choices, no next page and no ending flag."""
        pages = [_page(1, starting=True), _page(2)]

        problems = find_graph_problems(pages, [])

        assert any("page 2 is a dead end" in problem for problem in problems)

    def test_unreachable_page(self) -> None:
        pages = [_page(1, starting=True, page_type="choice"), _page(2, ending=True), _page(3, ending=True)]

        problems = find_graph_problems(pages, [_choice(1, 2)])

        assert "pages unreachable from the start: [3]" in problems

    def test_dangling_destination(self) -> None:
        pages = [_page(1, starting=True, page_type="choice"), _page(2, ending=True)]

        problems = find_graph_problems(pages, [_choice(1, 2), _choice(1, 9)])

        assert any("points to missing page p9" in problem for problem in problems)

    def test_ordinal_and_id_must_agree(self) -> None:
        pages = [_page(1, starting=True, page_type="choice"), _page(2, ending=True)]

        problems = find_graph_problems(pages, [_choice(1, 2, target_ordinal=5)])

        assert any("records ordinal 5" in problem for problem in problems)

    def test_cost_requires_premium(self) -> None:
        pages = [_page(1, starting=True, page_type="choice"), _page(2, ending=True)]

        problems = find_graph_problems(pages, [_choice(1, 2, cost=4)])

        assert any("has a cost but is not premium" in problem for problem in problems)

    def test_unknown_page_type(self) -> None:
        pages = [_page(1, starting=True, ending=True, page_type="video")]

        problems = find_graph_problems(pages, [])

        assert "page 1 has unknown type 'video'" in problems

    def test_auto_advance_edges(self) -> None:
        """Pages without choices link to the next ordinal unless they end the story."""
        pages = [_page(1, starting=True), _page(2, ending=True), _page(3, ending=True)]

        graph = build_graph(pages, [])

        assert graph == {"p1": ["p2"], "p2": [], "p3": []}
        assert traverse_from("p1", graph) == {"p1", "p2"}
        assert traverse_from("missing", graph) == set()


class TestStoryGraphService:
    async def test_start_page(self, session, story) -> None:
        page = await StoryGraphService(session).get_start_page(STORY_ID)

        assert page.id == DOOR
        assert page.ordinal == 1

    async def test_get_page_by_ordinal_or_id(self, session, story) -> None:
        graph = StoryGraphService(session)

        by_ordinal = await graph.get_page(STORY_ID, 3)
        by_id = await graph.get_page(STORY_ID, STAIRS)

        assert by_ordinal.id == by_id.id == STAIRS

    @pytest.mark.parametrize("position", [0, 99, "lighthouse-nowhere", True, 1.5, None])
    async def test_get_page_not_found(self, session, story, position) -> None:
        with pytest.raises(PageNotFound):
            await StoryGraphService(session).get_page(STORY_ID, position)

    async def test_outgoing_choices_in_authoring_order(self, session, story) -> None:
        graph = StoryGraphService(session)

        choices = await graph.get_outgoing_choices(DOOR)

        assert [choice.id for choice in choices] == [KNOCK, PICK_LOCK]
        assert [choice.id for choice in await graph.get_outgoing_choices(STAIRS)] == [CLIMB, CELLAR_DOOR]
        assert await graph.get_outgoing_choices(HALL) == []

    async def test_auto_advance_target(self, session, story) -> None:
        graph = StoryGraphService(session)

        following = await graph.get_auto_advance_target(HALL)

        assert following.id == STAIRS
        assert await graph.get_auto_advance_target(CELLAR) is None

    async def test_auto_advance_target_unknown_page(self, session, story) -> None:
        with pytest.raises(PageNotFound):
            await StoryGraphService(session).get_auto_advance_target("nope")

    async def test_unknown_choice(self, session, story) -> None:
        with pytest.raises(ChoiceNotFound):
            await StoryGraphService(session).get_choice("nope")

    async def test_unknown_story(self, session) -> None:
        with pytest.raises(StoryNotFound):
            await StoryGraphService(session).get_story("nope")

    async def test_published_story_listed(self, session, story) -> None:
        stories = await StoryGraphService(session).list_published_stories()

        assert [listed.id for listed in stories] == [STORY_ID]
        assert stories[0].path_count == 3


class TestPublishing:
    async def _add_story(self, session, *, ending: bool) -> None:
        session.add(Story(id="draft", title="Draft"))
        session.add(
            StoryPage(id="draft-1", story_id="draft", ordinal=1, content="Once", page_type="story", is_starting=True, is_ending=False)
        )
        session.add(
            StoryPage(id="draft-2", story_id="draft", ordinal=2, content="Twice", page_type="story", is_starting=False, is_ending=ending)
        )
        await session.commit()

    async def test_unpublished_story_is_hidden(self, session) -> None:
        await self._add_story(session, ending=True)
        graph = StoryGraphService(session)

        with pytest.raises(StoryNotFound):
            await graph.get_story("draft")
        assert (await graph.get_story("draft", published_only=False)).id == "draft"

    async def test_publish_valid_story(self, session) -> None:
        await self._add_story(session, ending=True)
        graph = StoryGraphService(session)

        published = await graph.publish_story("draft")

        assert published.is_published is True
        assert (await graph.get_story("draft")).id == "draft"

    async def test_publish_rejects_broken_graph(self, session) -> None:
        await self._add_story(session, ending=False)
        graph = StoryGraphService(session)

        with pytest.raises(InvariantViolation) as exc_info:
            await graph.publish_story("draft")

        assert any("dead end" in problem for problem in exc_info.value.problems)
        with pytest.raises(StoryNotFound):
            await graph.get_story("draft")

    async def test_multiple_start_pages_at_read_time(self, session) -> None:
        """A corrupted dataset surfaces as an invariant violation, not a random page."""
        session.add(Story(id="twin", title="Twin", is_published=True))
        for ordinal in (1, 2):
            session.add(
                StoryPage(id=f"twin-{ordinal}", story_id="twin", ordinal=ordinal, content="x", page_type="story", is_starting=True, is_ending=True)
            )
        await session.commit()

        with pytest.raises(InvariantViolation):
            await StoryGraphService(session).get_start_page("twin")

    async def test_missing_start_page_at_read_time(self, session) -> None:
        session.add(Story(id="headless", title="Headless", is_published=True))
        session.add(
            StoryPage(id="headless-1", story_id="headless", ordinal=1, content="x", page_type="story", is_starting=False, is_ending=True)
        )
        await session.commit()

        with pytest.raises(PageNotFound):
            await StoryGraphService(session).get_start_page("headless")
