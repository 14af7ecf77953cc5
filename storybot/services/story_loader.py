"""
Loads authored stories from JSON files and publishes them.

File format::

    {
      "story": {"id": "...", "title": "...", "category": "...", "spice_level": 1},
      "pages": [
        {"key": "start", "content": "...", "is_starting": true,
         "choices": [{"text": "...", "target": "next", "is_premium": false, "cost": 0}]},
        ...
      ]
    }

Pages get ordinals from their order in the file unless one is given.
"""
import json
import logging
import os
from typing import Any, Dict, List

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storybot.database.models import Story, StoryChoice, StoryPage
from storybot.services.errors import InvariantViolation
from storybot.services.story_graph import StoryGraphService

logger = logging.getLogger(__name__)

# Story ids and ordinals end up in inline button data, which Telegram caps at 64 bytes
MAX_STORY_ID_LENGTH = 32
MAX_ORDINAL = 9999


class StoryLoader:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.graph = StoryGraphService(session)

    async def load_directory(self, directory_path: str) -> List[str]:
        """Load every ``*.json`` file in a directory. Broken files are logged and skipped."""
        if not os.path.isdir(directory_path):
            logger.warning(f"Stories directory not found: {directory_path}")
            return []

        loaded = []
        for filename in sorted(os.listdir(directory_path)):
            if not filename.endswith(".json"):
                continue
            filepath = os.path.join(directory_path, filename)
            try:
                story = await self.load_file(filepath)
                loaded.append(story.id)
            except InvariantViolation as e:
                await self.session.rollback()
                logger.error(f"Story in {filepath} is invalid: {'; '.join(e.problems) or e}")
            except (OSError, ValueError, KeyError, SQLAlchemyError) as e:
                await self.session.rollback()
                logger.error(f"Error loading {filepath}: {e}")

        logger.info(f"Loaded {len(loaded)} stories from {directory_path}")
        return loaded

    async def load_file(self, filepath: str) -> Story:
        with open(filepath, "r", encoding="utf-8") as file:
            data = json.load(file)
        if not isinstance(data, dict) or "story" not in data or "pages" not in data:
            raise ValueError(f"Invalid story file format in {filepath}")
        return await self.load_story(data)

    async def load_story(self, data: Dict[str, Any]) -> Story:
        """Insert (or rebuild, while unpublished) a story and publish it."""
        story_data = data["story"]
        pages_data = data["pages"]
        story_id = story_data.get("id")
        if not story_id:
            raise ValueError("Story without id")
        if ":" in story_id or any(":" in str(page.get("key", "")) for page in pages_data):
            raise ValueError(f"Story {story_id}: ids and page keys must not contain ':'")
        if len(story_id) > MAX_STORY_ID_LENGTH:
            raise ValueError(f"Story id {story_id!r} is longer than {MAX_STORY_ID_LENGTH} characters")

        story = await self.session.get(Story, story_id)
        if story and story.is_published:
            logger.info(f"Story {story_id} is already published, skipping")
            return story

        problems = self._check_references(pages_data)
        if problems:
            raise InvariantViolation(f"Story {story_id} has broken references", problems)

        if story:
            await self.session.execute(delete(StoryChoice).where(StoryChoice.story_id == story_id))
            await self.session.execute(delete(StoryPage).where(StoryPage.story_id == story_id))
        else:
            story = Story(id=story_id)
            self.session.add(story)

        story.title = story_data.get("title", story_id)
        story.description = story_data.get("description")
        story.category = story_data.get("category", "all")
        story.spice_level = story_data.get("spice_level", 1)
        story.word_count = story_data.get("word_count") or sum(
            len(page.get("content", "").split()) for page in pages_data
        )
        story.path_count = story_data.get("path_count") or sum(
            1 for page in pages_data if page.get("is_ending")
        )
        story.is_published = False

        pages_by_key: Dict[str, StoryPage] = {}
        for index, page_data in enumerate(pages_data, start=1):
            key = page_data["key"]
            page = StoryPage(
                id=f"{story_id}-{key}",
                story_id=story_id,
                ordinal=page_data.get("ordinal", index),
                title=page_data.get("title"),
                content=page_data.get("content", ""),
                page_type=page_data.get("page_type", "choice" if page_data.get("choices") else "story"),
                is_starting=bool(page_data.get("is_starting", False)),
                is_ending=bool(page_data.get("is_ending", False)),
            )
            self.session.add(page)
            pages_by_key[key] = page
        await self.session.flush()

        for page_data in pages_data:
            source = pages_by_key[page_data["key"]]
            for position, choice_data in enumerate(page_data.get("choices", [])):
                target = pages_by_key[choice_data["target"]]
                self.session.add(
                    StoryChoice(
                        id=f"{story_id}-{source.ordinal}-{position}",
                        story_id=story_id,
                        from_page_id=source.id,
                        to_page_id=target.id,
                        target_ordinal=target.ordinal,
                        text=choice_data.get("text", ""),
                        is_premium=bool(choice_data.get("is_premium", False)),
                        cost=choice_data.get("cost", 0),
                        position=position,
                    )
                )
        await self.session.commit()
        logger.info(f"Story {story_id} stored with {len(pages_by_key)} pages")

        return await self.graph.publish_story(story_id)

    def _check_references(self, pages_data: List[Dict[str, Any]]) -> List[str]:
        problems = []
        keys = [page.get("key") for page in pages_data]
        if any(not key for key in keys):
            problems.append("page without key")
        if len(set(keys)) != len(keys):
            problems.append("duplicate page keys")
        ordinals = [page.get("ordinal", index) for index, page in enumerate(pages_data, start=1)]
        if len(set(ordinals)) != len(ordinals):
            problems.append("duplicate page ordinals")
        for ordinal in ordinals:
            if not isinstance(ordinal, int) or isinstance(ordinal, bool) or not 0 < ordinal <= MAX_ORDINAL:
                problems.append(f"invalid page ordinal {ordinal!r}")
        known = set(keys)
        for page in pages_data:
            for choice in page.get("choices", []):
                if choice.get("target") not in known:
                    problems.append(f"choice on page {page.get('key')} targets unknown page {choice.get('target')!r}")
                cost = choice.get("cost", 0)
                if not isinstance(cost, int) or cost < 0:
                    problems.append(f"choice on page {page.get('key')} has invalid cost {cost!r}")
                elif cost > 0 and not choice.get("is_premium"):
                    problems.append(f"choice on page {page.get('key')} has a cost but is not premium")
        return problems
