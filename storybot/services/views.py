from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from storybot.database.models import ReadingProgress, Story, StoryChoice, StoryPage


def page_to_dict(page: StoryPage) -> Dict[str, Any]:
    return {
        "id": page.id,
        "ordinal": page.ordinal,
        "title": page.title,
        "content": page.content,
        "pageType": page.page_type,
        "isStarting": page.is_starting,
        "isEnding": page.is_ending,
    }


def choice_to_dict(choice: StoryChoice, owned: Optional[bool] = None) -> Dict[str, Any]:
    data = {
        "id": choice.id,
        "text": choice.text,
        "isPremium": choice.is_premium,
        "cost": choice.cost,
        "targetOrdinal": choice.target_ordinal,
        "targetPageId": choice.to_page_id,
    }
    if owned is not None:
        data["owned"] = owned
    return data


def story_to_dict(story: Story) -> Dict[str, Any]:
    return {
        "id": story.id,
        "title": story.title,
        "description": story.description,
        "category": story.category,
        "spiceLevel": story.spice_level,
        "wordCount": story.word_count,
        "pathCount": story.path_count,
    }


def progress_to_dict(progress: ReadingProgress) -> Dict[str, Any]:
    return {
        "storyId": progress.story_id,
        "position": progress.current_ordinal,
        "pageId": progress.current_page_id,
        "isBookmarked": progress.is_bookmarked,
        "isCompleted": progress.is_completed,
        "completedAt": progress.completed_at.isoformat() if progress.completed_at else None,
        "pagesRead": progress.pages_read,
        "choicesMade": progress.choices_made,
    }


@dataclass
class PageView:
    """A page plus everything the client needs to render it in one round trip."""

    story_id: str
    page: StoryPage
    choices: List[StoryChoice]
    # None for guests: ownership is only known for signed-in readers
    owned_choice_ids: Optional[set] = None
    purchase: Optional[Dict[str, Any]] = None
    progress: Optional[Dict[str, Any]] = None
    has_next: bool = False

    @property
    def is_ending(self) -> bool:
        return bool(self.page.is_ending)

    @property
    def can_continue(self) -> bool:
        """True when the page waits for a "continue" rather than a decision."""
        return not self.choices and not self.is_ending and self.has_next

    def is_owned(self, choice: StoryChoice) -> Optional[bool]:
        if self.owned_choice_ids is None or not choice.is_premium:
            return None
        return choice.id in self.owned_choice_ids

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "storyId": self.story_id,
            "destinationPage": page_to_dict(self.page),
            "choices": [choice_to_dict(choice, self.is_owned(choice)) for choice in self.choices],
            "isEnding": self.is_ending,
            "canContinue": self.can_continue,
        }
        if self.purchase is not None:
            data["purchase"] = dict(self.purchase)
        if self.progress is not None:
            data["progress"] = dict(self.progress)
        return data
