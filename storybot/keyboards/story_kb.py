"""
Inline keyboards for the story reader.
"""
from typing import Any, Dict, List

from aiogram.types import InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from storybot.services.views import PageView
from storybot.utils.text_utils import spice_label, truncate

BUTTON_TEXT_LIMIT = 60


def choice_button_text(view: PageView, choice) -> str:
    text = truncate(choice.text, BUTTON_TEXT_LIMIT)
    if not choice.is_premium:
        return text
    owned = view.is_owned(choice)
    if owned:
        return f"🔓 {text}"
    if owned is None:
        # Guests must sign in before buying
        return f"🔒 {text} · 💎 {choice.cost}"
    return f"💎 {choice.cost} · {text}"


def get_page_keyboard(view: PageView) -> InlineKeyboardMarkup:
    """Decision buttons for a page, plus reader navigation."""
    builder = InlineKeyboardBuilder()
    ordinal = view.page.ordinal

    for choice in view.choices:
        builder.button(
            text=choice_button_text(view, choice),
            callback_data=f"story_choice:{choice.id}:{ordinal}",
        )

    if view.can_continue:
        builder.button(text="➡️ Continue", callback_data=f"story_next:{view.story_id}:{ordinal}")

    if view.is_ending:
        builder.button(text="🔁 Read again", callback_data=f"story_reset:{view.story_id}")

    if view.owned_choice_ids is not None:
        bookmarked = bool(view.progress and view.progress.get("isBookmarked"))
        builder.button(
            text="🔖 Remove bookmark" if bookmarked else "🔖 Bookmark",
            callback_data=f"story_bookmark:{view.story_id}",
        )
    if not view.is_ending:
        builder.button(text="⏮ Start over", callback_data=f"story_reset:{view.story_id}")
    builder.button(text="📚 Stories", callback_data="story_list")

    builder.adjust(1)
    return builder.as_markup()


def get_story_list_keyboard(stories: List[Dict[str, Any]]) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    for story in stories:
        builder.button(
            text=f"{spice_label(story['spiceLevel'])} {truncate(story['title'], BUTTON_TEXT_LIMIT)}",
            callback_data=f"story_open:{story['id']}",
        )
    builder.adjust(1)
    return builder.as_markup()


def get_sign_in_keyboard() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.button(text="🔑 Sign in", callback_data="story_signin")
    builder.button(text="📚 Stories", callback_data="story_list")
    builder.adjust(1)
    return builder.as_markup()
